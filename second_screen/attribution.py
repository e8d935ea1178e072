"""Attribution of subdirectory updates and status arbitration.

Hooks fire with the current working directory of the tool call, which can be
a nested path (a sub-agent working in ``/repo/pkg``). Such updates belong to
the session registered for the nearest ancestor directory, and must not
demote a session that is already waiting on the user.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import STATUS_PRIORITY, SessionStatus


def find_parent_directory(registered: Iterable[str], directory: str) -> str | None:
    """Return the registered directory that ``directory`` lives under.

    ``directory`` is attributed to ``parent`` iff it starts with
    ``parent + "/"``. When several registered directories qualify the longest
    one (most specific ancestor) wins.
    """
    best: str | None = None
    for parent in registered:
        if directory.startswith(parent.rstrip("/") + "/") and parent != directory:
            if best is None or len(parent) > len(best):
                best = parent
    return best


def status_outranks(incoming: SessionStatus, current: SessionStatus) -> bool:
    """True if ``incoming`` is strictly more urgent than ``current``."""
    return STATUS_PRIORITY.get(incoming, 0) > STATUS_PRIORITY.get(current, 0)


def resolve_status(
    current: SessionStatus, incoming: SessionStatus | None, attributed: bool
) -> SessionStatus:
    """Status a session ends up with after an update.

    Exact-match updates overwrite unconditionally; attributed updates only
    apply when they outrank the current status.
    """
    if incoming is None:
        return current
    if not attributed or status_outranks(incoming, current):
        return incoming
    return current
