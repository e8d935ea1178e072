"""Exception taxonomy shared by the store, persistence layer and web API."""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for all dashboard errors."""


class ValidationError(DashboardError, ValueError):
    """A request is missing a required field or carries an invalid value (400)."""


class NotFoundError(DashboardError, LookupError):
    """Unknown session directory or task ID (404)."""


class PersistenceError(DashboardError, OSError):
    """Snapshot could not be read or written. Logged, never fatal."""
