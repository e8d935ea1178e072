"""Session and task models — pure stdlib, no external dependencies.

Python attributes are snake_case; the wire and snapshot format is camelCase
JSON, produced by ``to_dict`` and read back by ``from_dict``.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class SessionStatus(StrEnum):
    IDLE = "idle"
    BUSY = "busy"
    WAITING = "waiting"
    STOPPED = "stopped"  # archived by the operator


# Higher value = more urgent. Used when arbitrating attributed updates.
STATUS_PRIORITY: dict[SessionStatus, int] = {
    SessionStatus.STOPPED: -1,
    SessionStatus.IDLE: 0,
    SessionStatus.BUSY: 1,
    SessionStatus.WAITING: 2,
}

# Registration sources that continue an existing conversation.
CONTINUATION_SOURCES = frozenset({"resume", "compact"})


@dataclass
class GitHubIssue:
    number: int
    url: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"number": self.number}
        if self.url is not None:
            data["url"] = self.url
        return data

    @classmethod
    def from_dict(cls, data: dict) -> GitHubIssue:
        return cls(number=int(data["number"]), url=data.get("url"))


@dataclass
class Task:
    """One to-do item on a session card."""

    id: str
    text: str
    completed: bool = False
    completed_at: str | None = None  # ISO 8601, set iff completed

    def to_dict(self) -> dict:
        data: dict = {"id": self.id, "text": self.text, "completed": self.completed}
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Task:
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            completed=bool(data.get("completed", False)),
            completed_at=data.get("completedAt"),
        )


@dataclass
class Session:
    """One tracked working directory."""

    directory: str
    directory_name: str = ""
    summary: str = ""
    status: SessionStatus = SessionStatus.IDLE
    github_issues: list[GitHubIssue] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    created_at: str = ""
    last_updated: str = ""

    def find_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def to_dict(self) -> dict:
        return {
            "directory": self.directory,
            "directoryName": self.directory_name,
            "summary": self.summary,
            "status": str(self.status),
            "githubIssues": [issue.to_dict() for issue in self.github_issues],
            "tasks": [task.to_dict() for task in self.tasks],
            "createdAt": self.created_at,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Session:
        data = _migrate_session_data(data)
        directory = data["directory"]
        return cls(
            directory=directory,
            directory_name=data.get("directoryName") or directory_display_name(directory),
            summary=data.get("summary", ""),
            status=SessionStatus(data["status"]),
            github_issues=[GitHubIssue.from_dict(i) for i in data.get("githubIssues", [])],
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            created_at=data.get("createdAt", ""),
            last_updated=data.get("lastUpdated", ""),
        )


def _migrate_session_data(data: dict) -> dict:
    """Bring snapshots from older releases up to the current shape.

    The three-status release had no ``stopped`` state and never recorded
    ``completedAt``. Completed tasks inherit the session's ``lastUpdated`` so
    they age out like any other completed task, or the load time when the
    session has no ``lastUpdated`` either.
    """
    data = dict(data)
    if data.get("status") not in set(SessionStatus):
        data["status"] = SessionStatus.IDLE
    fallback = data.get("lastUpdated") or datetime.now(UTC).isoformat()
    tasks = []
    for task in data.get("tasks", []):
        task = dict(task)
        if task.get("completed") and not task.get("completedAt"):
            task["completedAt"] = fallback
        elif not task.get("completed"):
            task.pop("completedAt", None)
        tasks.append(task)
    data["tasks"] = tasks
    return data


def directory_display_name(directory: str) -> str:
    """Basename of a directory path, tolerating a trailing slash."""
    return os.path.basename(directory.rstrip("/")) or directory


def generate_task_id(existing: set[str] | frozenset[str] = frozenset()) -> str:
    """Generate a short task ID (8 hex chars) not present in ``existing``."""
    while True:
        task_id = secrets.token_hex(4)
        if task_id not in existing:
            return task_id
