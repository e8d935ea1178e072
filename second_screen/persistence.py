"""Snapshot persistence — the whole session list as one JSON array.

Writes are atomic (temp file + os.replace) so a crash mid-write never leaves
a truncated snapshot behind. Loading never raises: a missing file is a fresh
start, anything unreadable is logged and treated as empty.
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from pathlib import Path

from .errors import PersistenceError
from .models import Session

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_SIZE = 10 * 1024 * 1024  # 10 MB


def _atomic_write(path: Path, data: list) -> None:
    """Write JSON atomically via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _safe_read_json(path: Path):
    """Read and parse a JSON file with size limit and symlink rejection.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if file is a symlink or exceeds size limit.
        json.JSONDecodeError: if file contains invalid JSON.
    """
    try:
        fd = os.open(path, os.O_RDONLY | os.O_NOFOLLOW)
    except OSError as e:
        if e.errno in (errno.ELOOP, errno.EMLINK):
            raise ValueError(f"Refusing to read symlink: {path.name}") from e
        raise
    size = os.fstat(fd).st_size
    if size > MAX_SNAPSHOT_SIZE:
        os.close(fd)
        raise ValueError(f"File too large: {path.name} ({size} bytes, max {MAX_SNAPSHOT_SIZE})")
    with os.fdopen(fd, encoding="utf-8") as f:
        return json.load(f)


def save_snapshot(path: Path, sessions: Iterable[Session]) -> int:
    """Write all sessions to ``path``. Returns the number written.

    Raises:
        PersistenceError: if the snapshot could not be written.
    """
    data = [s.to_dict() for s in sessions]
    try:
        _atomic_write(Path(path), data)
    except (OSError, TypeError, ValueError) as e:
        raise PersistenceError(f"Failed to save snapshot to {path}: {e}") from e
    return len(data)


def load_snapshot(path: Path) -> list[Session]:
    """Load sessions from ``path``; empty list when absent or unreadable."""
    path = Path(path)
    try:
        data = _safe_read_json(path)
    except FileNotFoundError:
        logger.info("No snapshot at %s, starting fresh", path)
        return []
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read snapshot %s, starting fresh: %s", path, exc)
        return []

    if not isinstance(data, list):
        logger.warning("Snapshot %s is not a JSON array, starting fresh", path)
        return []

    try:
        sessions = [Session.from_dict(entry) for entry in data]
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.warning("Snapshot %s contains malformed sessions, starting fresh: %s", path, exc)
        return []

    logger.info("Loaded %d session(s) from %s", len(sessions), path)
    return sessions


class DebouncedSnapshot:
    """Coalesce bursts of changes into one snapshot write.

    ``schedule()`` (re)starts a delay window; the write happens once the
    window elapses without another ``schedule()``. ``flush()`` writes a
    pending snapshot immediately and is what shutdown calls.
    """

    def __init__(
        self,
        path: Path,
        source: Callable[[], Iterable[Session]],
        delay: float = 1.0,
    ) -> None:
        self.path = Path(path)
        self._source = source
        self.delay = delay
        self._task: asyncio.Task | None = None
        self.writes = 0

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        """Start or reset the delay window. Must be called on the event loop."""
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._save_later())

    async def _save_later(self) -> None:
        await asyncio.sleep(self.delay)
        self._task = None
        self.save_now()

    def save_now(self) -> bool:
        """Write the snapshot synchronously. Returns False if the write failed."""
        try:
            count = save_snapshot(self.path, self._source())
        except PersistenceError as exc:
            logger.error("%s", exc)
            return False
        self.writes += 1
        logger.debug("Saved %d session(s) to %s", count, self.path)
        return True

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def flush(self) -> bool:
        """Write now if a save is pending. Returns True if a write happened."""
        if not self.pending:
            return False
        self.cancel()
        logger.info("Flushing pending snapshot to %s", self.path)
        return self.save_now()
