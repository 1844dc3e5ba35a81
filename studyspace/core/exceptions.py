"""Error kinds raised by the study session core.

Every error carries a stable ``code`` and an HTTP status so the API layer can
render it without knowing the concrete class.
"""

from typing import Any


class StudySpaceError(Exception):
    """Base class for all domain errors."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for an API response."""
        body: dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.details:
            body["context"] = self.details
        return body


class ValidationError(StudySpaceError):
    """Malformed or missing input."""

    code = "validation_error"
    status_code = 400


class NoSession(StudySpaceError):
    """Operation on a user that has no session."""

    code = "no_session"
    status_code = 404


class SessionAlreadyExists(StudySpaceError):
    """Start called while a session already exists."""

    code = "session_already_exists"
    status_code = 409


class InvalidTransition(StudySpaceError):
    """Session status does not allow the requested operation."""

    code = "invalid_transition"
    status_code = 409


class AlreadyFinished(StudySpaceError):
    """Finish called on a finished session."""

    code = "already_finished"
    status_code = 409


class CapacityExceeded(StudySpaceError):
    """Goal list is full."""

    code = "capacity_exceeded"
    status_code = 422


class IndexOutOfRange(StudySpaceError):
    """Goal index does not exist."""

    code = "index_out_of_range"
    status_code = 400


class ConcurrentUpdate(StudySpaceError):
    """The session kept changing underneath an optimistic write."""

    code = "concurrent_update"
    status_code = 409


class PersistenceFailure(StudySpaceError):
    """A call to the persistence service failed."""

    code = "persistence_failure"
    status_code = 502


class SessionStoreUnavailable(PersistenceFailure):
    """The session store could not be reached."""

    code = "session_store_unavailable"
    status_code = 503


class PartialMaterializationFailure(StudySpaceError):
    """Materialization failed after writing rows; those rows were rolled back."""

    code = "partial_materialization_failure"
    status_code = 502


class CompensationFailure(PartialMaterializationFailure):
    """Rollback of a failed materialization did not complete.

    Rows may be left behind in persistent storage and need manual cleanup.
    """

    code = "compensation_failure"
    status_code = 500
