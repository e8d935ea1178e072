"""Periodic expiry of completed tasks and archived sessions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from .notify import ChangeNotifier
from .store import SessionStore

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(
        self,
        store: SessionStore,
        notifier: ChangeNotifier,
        interval: float = 60.0,
        task_ttl: timedelta = timedelta(minutes=5),
        session_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.interval = interval
        self.task_ttl = task_ttl
        self.session_ttl = session_ttl
        self._task: asyncio.Task | None = None

    def sweep(self, now: datetime | None = None) -> bool:
        """Run both purges; publish once if either removed anything."""
        tasks_changed = self.store.purge_expired_tasks(self.task_ttl, now)
        sessions_changed = self.store.purge_expired_sessions(self.session_ttl, now)
        if tasks_changed:
            logger.info("Purged expired completed tasks")
        if sessions_changed:
            logger.info("Purged expired archived sessions")
        if tasks_changed or sessions_changed:
            self.notifier.publish()
            return True
        return False

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Expiry sweep failed")

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
