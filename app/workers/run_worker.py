from __future__ import annotations

import asyncio

from arq.worker import run_worker

from app.core.config import settings
from app.core.logging import configure_logging
from app.workers.arq_worker import WorkerSettings


def main() -> None:
    configure_logging(settings.log_level)
    # arq looks the loop up with asyncio.get_event_loop(), which no longer creates one.
    asyncio.set_event_loop(asyncio.new_event_loop())
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
