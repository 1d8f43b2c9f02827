from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.repositories.mentors import get_product


@dataclass(frozen=True, slots=True)
class ProductTerms:
    product_id: str
    mentor_id: str
    sessions_per_pack: int
    validity_days: int


class ProductCatalog(Protocol):
    async def get_product(self, db: AsyncSession, product_id: str) -> ProductTerms | None: ...


class DatabaseProductCatalog:
    """Reads pack terms from ``mentorship_products``, including inactive rows.

    A product retired after checkout must still provision what was paid for.
    """

    async def get_product(self, db: AsyncSession, product_id: str) -> ProductTerms | None:
        row = await get_product(db, product_id)
        if row is None:
            return None
        return ProductTerms(
            product_id=row.id,
            mentor_id=row.mentor_id,
            sessions_per_pack=row.sessions_per_pack,
            validity_days=row.validity_days,
        )
