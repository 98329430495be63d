from __future__ import annotations


class WorkspaceError(RuntimeError):
    pass


class TransientIOError(WorkspaceError):
    """A backend fetch or save failed; the operation is abandoned."""


class MoveValidationError(WorkspaceError):
    """An illegal move (self target or cycle), rejected before any backend call."""


class ConfirmationDeclined(WorkspaceError):
    pass


class NotFoundError(WorkspaceError):
    pass
