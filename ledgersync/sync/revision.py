"""Optimistic concurrency on the per-workspace revision counter."""

from typing import Optional

from ..errors import RevisionConflictError

# Revision of a workspace that has never synced.
INITIAL_REVISION = 0


def check_revision(
    stored_revision: int,
    requested_revision: Optional[int],
    *,
    server_updated_at: Optional[str] = None,
) -> None:
    """Reject a sync whose expected revision is stale.

    Callers that send no revision skip the check. A mismatch is never
    resolved by merging anyway; the caller has to re-fetch and retry.

    Raises:
        RevisionConflictError: carrying the stored revision and timestamp.
    """
    if requested_revision is None:
        return
    if requested_revision != stored_revision:
        raise RevisionConflictError(stored_revision, server_updated_at)


def next_revision(stored_revision: int) -> int:
    return stored_revision + 1
