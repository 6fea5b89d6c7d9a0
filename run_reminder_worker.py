#!/usr/bin/env python3
"""
Reminder worker: sends appointment reminders as they come due.

Polls `appointment_reminders` every REMINDER_POLL_INTERVAL_SECONDS. Run one
instance per deployment alongside the API; `--once` does a single pass
(cron / scheduled task style).
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent))
load_dotenv()

from sqlalchemy.exc import SQLAlchemyError  # noqa: E402

from mindfulcare.core.config import get_settings  # noqa: E402
from mindfulcare.core.logging import get_logger, setup_logging  # noqa: E402
from mindfulcare.db.session import AsyncSessionLocal  # noqa: E402
from mindfulcare.main import build_dispatcher, build_scheduler  # noqa: E402

logger = get_logger("reminder_worker")


async def run_once(scheduler, dispatcher, batch_size: int) -> int:
    async with AsyncSessionLocal() as db:
        summary = await scheduler.dispatch_due(db, dispatcher, limit=batch_size)
    return summary.sent


async def run_forever(interval: float, batch_size: int, once: bool = False) -> None:
    settings = get_settings()
    scheduler = build_scheduler(settings)
    dispatcher = build_dispatcher(settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows

    logger.info("reminder_worker_started", interval=interval, batch_size=batch_size,
                provider=dispatcher.provider.name)

    while not stop.is_set():
        try:
            await run_once(scheduler, dispatcher, batch_size)
        except SQLAlchemyError as e:
            logger.error("reminder_pass_failed", error=str(e))

        if once:
            break
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    logger.info("reminder_worker_stopped")


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Send due appointment reminders")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    parser.add_argument("--interval", type=float, default=settings.REMINDER_POLL_INTERVAL_SECONDS)
    parser.add_argument("--batch-size", type=int, default=settings.REMINDER_BATCH_SIZE)
    args = parser.parse_args()

    setup_logging(debug=settings.is_development, max_log_length=settings.MAX_LOG_LENGTH, level=settings.LOG_LEVEL)
    asyncio.run(run_forever(args.interval, args.batch_size, once=args.once))


if __name__ == "__main__":
    main()
