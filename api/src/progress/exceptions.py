"""Progress reconciliation errors.

Every error carries a machine-readable ``code``; the router maps codes to
HTTP status codes in ``dependencies.handle_progress_error``.
"""


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(ProgressError):
    """Malformed tick (negative duration, non-positive total)."""

    def __init__(self, message: str = "Invalid progress update"):
        super().__init__(message, "invalid_progress")


class NotFoundError(ProgressError):
    """Unknown course, or video not part of the course."""

    def __init__(self, message: str = "Course or video not found"):
        super().__init__(message, "not_found")


class ConflictError(ProgressError):
    """A compare-and-set merge lost a race. Retried inside the store."""

    def __init__(self, message: str = "Concurrent progress write"):
        super().__init__(message, "merge_conflict")


class StoreUnavailable(ProgressError):
    """Transient backing-store failure; the client resends on its next tick."""

    def __init__(self, message: str = "Progress store temporarily unavailable"):
        super().__init__(message, "store_unavailable")
