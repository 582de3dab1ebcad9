"""
Reminder Delivery Worker

Polls for due reminders and hands each one to the channel outbox.
A reminder is marked sent once queued and failed if queueing raised;
failed reminders are not retried. Every reminder commits on its own.

Usage:
    python -m app.workers.reminder_worker           # poll forever
    python -m app.workers.reminder_worker --once    # one pass, then exit
"""

import argparse
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.calendar.errors import CalendarError
from app.core.calendar.reminders import ReminderScheduler
from app.core.calendar.repository import ReminderRepository
from app.core.calendar.types import Reminder
from app.infra.database import close_db, get_db_context
from app.infra.notifications import DeliveryError, ReminderDispatcher
from app.infra.redis import RedisClient

logger = logging.getLogger(__name__)


def _scheduler_for(session: AsyncSession) -> ReminderScheduler:
    return ReminderScheduler(ReminderRepository(session))


class ReminderWorker:
    """Background job that drains due reminders in batches."""

    def __init__(
        self,
        dispatcher: ReminderDispatcher,
        session_factory: Callable = get_db_context,
        scheduler_factory: Callable[[AsyncSession], ReminderScheduler] = _scheduler_for,
        batch_size: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.scheduler_factory = scheduler_factory
        self.batch_size = batch_size or settings.reminder_batch_size
        self.poll_interval = poll_interval or settings.reminder_poll_interval
        self.is_running = False
        self._stop = asyncio.Event()

    async def run_once(self, now: Optional[datetime] = None) -> dict:
        """
        Process one batch of due reminders.

        Each reminder is delivered and marked in its own transaction, so a
        failure on one reminder never rolls back the status of the others.

        Returns:
            Counts of sent and failed reminders
        """
        if self.is_running:
            logger.warning("Reminder pass already running, skipping this iteration")
            return {"skipped": True}

        self.is_running = True
        sent = failed = 0
        try:
            async with self.session_factory() as session:
                scheduler = self.scheduler_factory(session)
                due = await scheduler.due_now(now or datetime.now(timezone.utc), limit=self.batch_size)

            for reminder in due:
                try:
                    delivered = await self._deliver(reminder)
                except (CalendarError, SQLAlchemyError, RedisError) as e:
                    logger.error(f"Reminder {reminder.id} left unresolved: {e}")
                    continue

                if delivered:
                    sent += 1
                else:
                    failed += 1
        finally:
            self.is_running = False

        if sent or failed:
            logger.info(f"Reminder pass done: {sent} sent, {failed} failed")
        return {"sent": sent, "failed": failed}

    async def _deliver(self, reminder: Reminder) -> bool:
        """Queue one reminder and commit its new status. Returns False if queueing failed."""
        async with self.session_factory() as session:
            scheduler = self.scheduler_factory(session)
            try:
                await self.dispatcher.dispatch(reminder)
            except DeliveryError as e:
                logger.error(f"Reminder {reminder.id} failed: {e}")
                await scheduler.mark_failed(reminder.id)
                return False

            await scheduler.mark_sent(reminder.id)
            return True

    async def run_forever(self) -> None:
        """Poll until stop() is called. Database and Redis outages are logged and retried."""
        logger.info(
            f"Reminder worker started (interval {self.poll_interval}s, batch {self.batch_size})"
        )
        while not self._stop.is_set():
            try:
                await self.run_once()
            except (CalendarError, SQLAlchemyError, RedisError, OSError) as e:
                logger.error(f"Reminder pass aborted: {e}")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Reminder worker stopped")

    def stop(self) -> None:
        self._stop.set()


async def main(once: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    redis = await RedisClient.get_client()
    worker = ReminderWorker(ReminderDispatcher(redis))
    try:
        if once:
            await worker.run_once()
        else:
            await worker.run_forever()
    finally:
        await RedisClient.close()
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Deliver due calendar reminders")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    try:
        asyncio.run(main(once=args.once))
    except KeyboardInterrupt:
        pass
