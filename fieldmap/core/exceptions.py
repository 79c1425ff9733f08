"""Custom exception hierarchy."""


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class ValidationError(AppError):
    """Caller supplied something unusable: disallowed table, bad field name,
    instruction too long, missing request fields. Never retried."""
    pass


class ConfigurationError(AppError):
    """A requested field cannot be persisted because it was never declared
    and has no physical column."""
    pass


class ExtractionError(AppError):
    """Inference failed, timed out, or returned nothing usable."""
    pass


class PersistenceError(AppError):
    """Store-side failure. Fatal for an extraction batch."""
    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an organization-scoped row does not exist."""

    def __init__(self, entity: str, record_id, organization_id=None):
        message = f"{entity} record not found: ID {record_id}"
        if organization_id is not None:
            message += f" (organization {organization_id})"
        super().__init__(message)
        self.entity = entity
        self.record_id = record_id
        self.organization_id = organization_id


class SourceNotResolvedError(PersistenceError):
    """Raised when a work item has no resolvable source record."""
    pass


class ConcurrentUpdateError(PersistenceError):
    """Raised when a versioned write keeps losing to concurrent writers."""
    pass


class ExtractionCancelledError(AppError):
    """Raised when a batch is cancelled before its results are persisted."""
    pass
