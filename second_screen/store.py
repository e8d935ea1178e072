"""Session store — in-memory map from directory to Session.

The store is the single source of truth while the server runs. Every
operation runs to completion without awaiting, so on the single asyncio loop
no two mutations can interleave and no locking is needed. Operations report
whether they changed observable state; callers use that to decide whether to
persist and push.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .attribution import find_parent_directory, resolve_status
from .errors import NotFoundError
from .models import (
    CONTINUATION_SOURCES,
    GitHubIssue,
    Session,
    SessionStatus,
    Task,
    directory_display_name,
    generate_task_id,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class UpdateResult:
    session: Session
    changed: bool
    attributed: bool = False


class SessionStore:
    """Owns all sessions for one dashboard instance."""

    def __init__(
        self,
        sessions: Iterable[Session] = (),
        clock: Callable[[], datetime] = _utcnow,
        auto_create: bool = False,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._clock = clock
        self.auto_create = auto_create
        self.replace_all(sessions)

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    # -----------------------------------------------------------------------
    # Basic map operations
    # -----------------------------------------------------------------------

    def get(self, directory: str) -> Session | None:
        return self._sessions.get(directory)

    def upsert(self, session: Session) -> None:
        self._sessions[session.directory] = session

    def remove(self, directory: str) -> bool:
        return self._sessions.pop(directory, None) is not None

    def list(self) -> list[Session]:
        return list(self._sessions.values())

    def directories(self) -> list[str]:
        return list(self._sessions)

    def replace_all(self, sessions: Iterable[Session]) -> None:
        self._sessions = {s.directory: s for s in sessions}

    def to_list(self) -> list[dict]:
        """Full state in wire format, as pushed to observers."""
        return [s.to_dict() for s in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, directory: object) -> bool:
        return directory in self._sessions

    def _require(self, directory: str) -> Session:
        session = self._sessions.get(directory)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    def register(self, directory: str, source: str | None = None) -> tuple[Session, bool]:
        """Register a session start. Returns (session, created).

        Re-registering resets status to idle. Unless the source continues the
        previous conversation (resume/compact), the summary and issues are
        cleared and completed tasks dropped; open tasks always survive.
        """
        source = source or "startup"
        now = self._now_iso()
        existing = self._sessions.get(directory)

        if existing is None:
            session = Session(
                directory=directory,
                directory_name=directory_display_name(directory),
                status=SessionStatus.IDLE,
                created_at=now,
                last_updated=now,
            )
            self._sessions[directory] = session
            logger.info("Registered new session %s (source=%s)", directory, source)
            return session, True

        existing.status = SessionStatus.IDLE
        if source in CONTINUATION_SOURCES:
            logger.info("Resuming session %s (source=%s), keeping summary", directory, source)
        else:
            logger.info("Re-registering session %s (source=%s), resetting summary", directory, source)
            existing.summary = ""
            existing.github_issues = []
            existing.tasks = [t for t in existing.tasks if not t.completed]
        existing.last_updated = now
        return existing, False

    def resolve(self, directory: str) -> tuple[Session | None, bool]:
        """Find the session for ``directory``. Returns (session, attributed)."""
        session = self._sessions.get(directory)
        if session is not None:
            return session, False
        parent = find_parent_directory(self._sessions, directory)
        if parent is None:
            return None, False
        logger.info("Attributing %s to parent session %s", directory, parent)
        return self._sessions[parent], True

    def update_session(
        self,
        directory: str,
        summary: str | None = None,
        status: SessionStatus | None = None,
        github_issues: list[GitHubIssue] | None = None,
    ) -> UpdateResult:
        """Apply a status/summary/issues update.

        Exact matches overwrite the status; updates attributed to a parent
        directory only raise it (see ``resolve_status``). A call that changes
        nothing leaves the session untouched and reports ``changed=False``,
        unless the session was just auto-created for this update.

        Raises:
            NotFoundError: if no session matches or contains ``directory``
                and the store does not auto-create.
        """
        session, attributed = self.resolve(directory)
        created = False
        if session is None:
            if not self.auto_create:
                logger.info("No session for %s, ignoring update", directory)
                raise NotFoundError("Session not found")
            session, created = self.register(directory)

        prev_status = session.status
        new_status = resolve_status(prev_status, status, attributed)
        if status is not None and new_status != status:
            logger.debug(
                "Dropped status %s for %s: %s outranks it", status, session.directory, prev_status
            )

        changed = new_status != prev_status
        if summary is not None and summary != session.summary:
            changed = True
        if github_issues is not None and github_issues != session.github_issues:
            changed = True

        if not changed:
            return UpdateResult(session, changed=created, attributed=attributed)

        session.status = new_status
        if summary is not None:
            session.summary = summary
        if github_issues is not None:
            session.github_issues = list(github_issues)
        session.last_updated = self._now_iso()

        if new_status != prev_status:
            logger.info("Session %s status %s -> %s", session.directory, prev_status, new_status)
        return UpdateResult(session, changed=True, attributed=attributed)

    def remove_session(self, directory: str) -> bool:
        """Remove a session. Idempotent; returns whether it existed."""
        existed = self.remove(directory)
        logger.info("Removed session %s (existed=%s)", directory, existed)
        return existed

    # -----------------------------------------------------------------------
    # Tasks
    # -----------------------------------------------------------------------

    def add_task(self, directory: str, text: str) -> Task:
        session = self._require(directory)
        task = Task(id=generate_task_id({t.id for t in session.tasks}), text=text)
        session.tasks.append(task)
        session.last_updated = self._now_iso()
        logger.info("Added task %s to %s", task.id, directory)
        return task

    def update_task(
        self,
        directory: str,
        task_id: str,
        text: str | None = None,
        completed: bool | None = None,
    ) -> tuple[Task, bool]:
        """Edit and/or toggle a task. Returns (task, changed).

        ``completed_at`` tracks ``completed``. Supplying the values the task
        already has is a no-op: neither the task nor the session is touched.

        Raises:
            NotFoundError: unknown directory or task.
        """
        session = self._require(directory)
        task = session.find_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")

        text_changed = text is not None and text != task.text
        completed_changed = completed is not None and completed != task.completed
        if not (text_changed or completed_changed):
            return task, False

        now = self._now_iso()
        if text_changed:
            task.text = text
        if completed_changed:
            task.completed = completed
            task.completed_at = now if completed else None
        session.last_updated = now
        logger.info("Updated task %s in %s (completed=%s)", task_id, directory, task.completed)
        return task, True

    def delete_task(self, directory: str, task_id: str) -> bool:
        """Delete a task. Returns False if the task was already gone.

        Raises:
            NotFoundError: unknown directory.
        """
        session = self._require(directory)
        before = len(session.tasks)
        session.tasks = [t for t in session.tasks if t.id != task_id]
        if len(session.tasks) == before:
            return False
        session.last_updated = self._now_iso()
        logger.info("Deleted task %s from %s", task_id, directory)
        return True

    # -----------------------------------------------------------------------
    # Expiry
    # -----------------------------------------------------------------------

    def purge_expired_tasks(self, ttl: timedelta, now: datetime | None = None) -> bool:
        """Drop completed tasks whose completion is at least ``ttl`` old."""
        now = now or self._clock()
        changed = False
        for session in self._sessions.values():
            kept = []
            for task in session.tasks:
                if task.completed and task.completed_at:
                    completed_at = _parse_iso(task.completed_at)
                    if completed_at is None:
                        logger.warning(
                            "Unparseable completedAt %r on task %s in %s",
                            task.completed_at, task.id, session.directory,
                        )
                    elif now - completed_at >= ttl:
                        continue
                kept.append(task)
            if len(kept) < len(session.tasks):
                session.tasks = kept
                changed = True
        return changed

    def purge_expired_sessions(self, ttl: timedelta, now: datetime | None = None) -> bool:
        """Drop archived sessions idle for ``ttl`` whose tasks are all done."""
        now = now or self._clock()
        expired = []
        for directory, session in self._sessions.items():
            if session.status != SessionStatus.STOPPED:
                continue
            if not all(t.completed for t in session.tasks):
                continue
            last_updated = _parse_iso(session.last_updated)
            if last_updated is None:
                logger.warning("Unparseable lastUpdated %r on %s", session.last_updated, directory)
                continue
            if now - last_updated >= ttl:
                expired.append(directory)

        for directory in expired:
            logger.info(
                "Removing archived session %s (since %s)",
                directory, self._sessions[directory].last_updated,
            )
            del self._sessions[directory]
        return bool(expired)
