"""
Custom exceptions for planilla storage.

Local failures (validation, missing records, file system errors) propagate
to the caller. Mirror failures are caught by the record store and only
affect the record's sync status.
"""


class PlanillaStorageError(Exception):
    """Base exception for all planilla storage errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PlanillaStorageError):
    """Raised when an input payload or attachment reference is malformed."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class RecordNotFoundError(PlanillaStorageError):
    """Raised when a planilla id is not present in the local index."""

    def __init__(self, record_id: str):
        super().__init__(f"Planilla not found: {record_id}", {"record_id": record_id})
        self.record_id = record_id


class DuplicateIdError(PlanillaStorageError):
    """Raised when inserting a record whose id is already indexed."""

    def __init__(self, record_id: str):
        super().__init__(f"Planilla already exists: {record_id}", {"record_id": record_id})
        self.record_id = record_id


class StorageIOError(PlanillaStorageError):
    """Raised when a local file system operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class MirrorError(PlanillaStorageError):
    """Raised by mirror clients when a remote call fails or times out."""

    def __init__(
        self,
        operation: str,
        remote_id: str | None = None,
        cause: Exception | str | None = None,
    ):
        details: dict = {"operation": operation}
        if remote_id:
            details["remote_id"] = remote_id
        if cause:
            details["cause"] = str(cause)
        message = f"Mirror {operation} failed"
        if remote_id:
            message += f" for {remote_id}"
        if cause:
            message += f": {cause}"
        super().__init__(message, details)
        self.operation = operation
        self.remote_id = remote_id
        self.cause = cause


class PartialCleanupError(PlanillaStorageError):
    """Collects per-file failures while deleting a record's files.

    Logged by the record store; never raised out of a delete operation.
    """

    def __init__(self, record_id: str, failures: list[tuple[str, str]]):
        details = {
            "record_id": record_id,
            "failures": [{"filename": name, "reason": reason} for name, reason in failures],
        }
        super().__init__(
            f"Cleanup incomplete for planilla {record_id}: {len(failures)} file(s) not removed",
            details,
        )
        self.record_id = record_id
        self.failures = failures


class StorageConnectionError(PlanillaStorageError):
    """Raised when connection to the remote document store fails.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class AuthenticationError(PlanillaStorageError):
    """Raised when authentication to the remote document store fails."""

    def __init__(self, endpoint: str, reason: str | None = None):
        details = {"endpoint": endpoint}
        if reason:
            details["reason"] = reason
        super().__init__(f"Authentication failed for {endpoint}", details)
        self.endpoint = endpoint
        self.reason = reason


# Alias for callers that catch the generic "not found" case
NotFoundError = RecordNotFoundError
