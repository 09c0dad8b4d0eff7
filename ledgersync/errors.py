"""Error taxonomy for ledgersync.

Every error carries the HTTP status the service layer maps it to, so the
core library never imports the web framework but the API can still render
a consistent ``{"error": ...}`` payload.
"""

from typing import Any, Dict, Optional

# Upstream diagnostics are truncated before they reach a client.
MAX_DIAGNOSTIC_LENGTH = 200


class LedgerSyncError(Exception):
    """Base class for all ledgersync errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message}


class ConfigurationError(LedgerSyncError):
    """A required secret or backend is not configured (feature disabled)."""

    status_code = 503


class StorageNotConfiguredError(ConfigurationError):
    """The durable store has no URL or service key."""

    def __init__(self, message: str = "Supabase not configured"):
        super().__init__(message)


class AuthorizationError(LedgerSyncError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidInputError(LedgerSyncError):
    """The caller sent something we cannot accept; fix and resubmit."""

    status_code = 400


class MissingActorError(InvalidInputError):
    def __init__(self, message: str = "actor_device_id is required"):
        super().__init__(message)


class EmptyPatchError(InvalidInputError):
    def __init__(self, message: str = "No valid fields to update"):
        super().__init__(message)


class NotFoundError(LedgerSyncError):
    status_code = 404


class RevisionConflictError(LedgerSyncError):
    """The caller's expected revision is stale.

    The caller must re-fetch the stored state and retry with
    ``current_revision`` as its new base.
    """

    status_code = 409

    def __init__(
        self,
        current_revision: int,
        server_updated_at: Optional[str],
        message: str = "Revision conflict",
    ):
        super().__init__(message)
        self.current_revision = current_revision
        self.server_updated_at = server_updated_at

    def to_payload(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "currentRevision": self.current_revision,
            "serverUpdatedAt": self.server_updated_at,
        }


class StorageError(LedgerSyncError):
    """The store rejected a request or returned a non-2xx response."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(truncate_diagnostic(message))


class StorageTimeoutError(StorageError):
    def __init__(self, operation: str, timeout: float):
        super().__init__(f"storage timeout after {timeout:g}s during {operation}")
        self.operation = operation
        self.timeout = timeout


class DuplicateRowError(StorageError):
    """Unique constraint violation reported by the store."""


class AuditWriteError(StorageError):
    """The mutation is durable but its audit row could not be written."""


def truncate_diagnostic(message: str, limit: int = MAX_DIAGNOSTIC_LENGTH) -> str:
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."
