"""Change fan-out to connected dashboard viewers.

Every observable change is pushed as the full session list; there is no delta
protocol. Each observer owns a one-slot mailbox: publishing never waits on a
socket, and a slow viewer simply skips intermediate states and receives the
latest one.
"""

from __future__ import annotations

import asyncio
import itertools
import logging

from .persistence import DebouncedSnapshot
from .store import SessionStore

logger = logging.getLogger(__name__)

_observer_ids = itertools.count(1)


class Observer:
    """Handle for one connected viewer."""

    def __init__(self) -> None:
        self.id = next(_observer_ids)
        self._mailbox: asyncio.Queue[list[dict]] = asyncio.Queue(maxsize=1)
        self.closed = False

    def deliver(self, payload: list[dict]) -> None:
        """Replace any undelivered state with ``payload``. Never blocks."""
        if self.closed:
            return
        if self._mailbox.full():
            self._mailbox.get_nowait()
        self._mailbox.put_nowait(payload)

    async def next_message(self) -> list[dict]:
        return await self._mailbox.get()

    def close(self) -> None:
        self.closed = True


class ChangeNotifier:
    """Persists and broadcasts after store mutations that changed something."""

    def __init__(self, store: SessionStore, snapshot: DebouncedSnapshot | None = None) -> None:
        self.store = store
        self.snapshot = snapshot
        self._observers: dict[int, Observer] = {}
        self.published = 0

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self) -> Observer:
        """Register a viewer and hand it the current state straight away."""
        observer = Observer()
        self._observers[observer.id] = observer
        observer.deliver(self.store.to_list())
        logger.info("Observer %d connected (total: %d)", observer.id, len(self._observers))
        return observer

    def unsubscribe(self, observer: Observer) -> None:
        observer.close()
        if self._observers.pop(observer.id, None) is not None:
            logger.info(
                "Observer %d disconnected (total: %d)", observer.id, len(self._observers)
            )

    def publish(self) -> None:
        """Schedule a snapshot and push the full state to every observer."""
        self.published += 1
        if self.snapshot is not None:
            self.snapshot.schedule()
        payload = self.store.to_list()
        for observer in list(self._observers.values()):
            try:
                observer.deliver(payload)
            except Exception as exc:
                logger.debug("Dropping observer %d: %s", observer.id, exc)
                self.unsubscribe(observer)
