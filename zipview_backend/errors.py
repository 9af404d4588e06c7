"""Error taxonomy shared by the workspace layer and the HTTP handlers.

Messages are shown to clients as-is, so they must never carry absolute
filesystem paths.
"""

from __future__ import annotations


class WorkspaceError(Exception):
    """Base exception for all workspace errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidArgument(WorkspaceError, ValueError):
    """Malformed or traversal-attempting path, missing field, bad new name."""

    status_code = 400


class NotFound(WorkspaceError):
    """Path does not exist, or is the wrong type for the operation."""

    status_code = 404


class Conflict(WorkspaceError):
    """Rename target already exists."""

    status_code = 409


class Internal(WorkspaceError):
    """Unexpected filesystem failure or corrupt archive."""

    status_code = 500
