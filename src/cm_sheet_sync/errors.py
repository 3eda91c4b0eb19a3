"""Exception hierarchy shared by the remote client, loaders and sync engine."""

from typing import Any


class SyncError(Exception):
    """Base exception for all sync errors."""


class RemoteServiceError(SyncError):
    """Error raised by a remote service adapter.

    The message is what the retry policy inspects, so adapters should put the
    server's own error text into it.
    """

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        full_message = message
        if response:
            text = str(response)
            full_message = f"{message} - Response: {text[:500]}"
        super().__init__(full_message)
        self.status_code = status_code
        self.response = response


class TransientRemoteError(RemoteServiceError):
    """A remote error that may succeed when retried (rate limits, 5xx...)."""


class FatalRemoteError(RemoteServiceError):
    """A remote error that retrying will not fix."""


class RetriesExhaustedError(TransientRemoteError):
    """Raised when a transient error persists after every retry."""

    def __init__(self, message: str, attempts: int, last_error: Exception | None = None):
        status_code = getattr(last_error, "status_code", None)
        super().__init__(message, status_code)
        self.attempts = attempts
        self.last_error = last_error


class RowValidationError(SyncError):
    """A row holds a value a mapping strategy cannot translate."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class ConfigurationError(SyncError):
    """Missing credentials, unknown entity kinds or missing tables."""


class IdentifierStoreError(SyncError):
    """The identifier mapping cannot be read or persisted."""


class EntityNotFoundError(SyncError):
    """An update targets an id the remote service does not know."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id
