"""Fact emission towards downstream collaborators.

Facts are fire-and-forget: the emitting workflow only needs the fact queued.
Each fact becomes an arq job named ``<fact>_job``; the dedupe key is used as
the arq job id so a re-run step does not queue the same fact twice while the
first one is still known to Redis.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from arq.connections import ArqRedis

logger = logging.getLogger(__name__)

ONBOARDING_ELIGIBLE = "onboarding_eligible"
RENEWAL_REMINDER = "renewal_reminder"
FINAL_GRACE_WARNING = "final_grace_warning"

FACT_NAMES = (ONBOARDING_ELIGIBLE, RENEWAL_REMINDER, FINAL_GRACE_WARNING)


class FactSink(Protocol):
    async def emit(self, name: str, payload: dict[str, Any], *, dedupe_key: str | None = None) -> None: ...


class ArqFactSink:
    def __init__(self, redis: ArqRedis) -> None:
        self._redis = redis

    async def emit(self, name: str, payload: dict[str, Any], *, dedupe_key: str | None = None) -> None:
        if name not in FACT_NAMES:
            raise ValueError(f"Unknown fact {name!r}")
        job = await self._redis.enqueue_job(f"{name}_job", payload, _job_id=dedupe_key)
        if job is None:
            logger.info("Fact %s already queued (dedupe_key=%s)", name, dedupe_key)
