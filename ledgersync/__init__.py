"""ledgersync - offline-first ledger state synchronization.

Core library: client state models, deterministic identity mapping, date
normalization, merge and projection, revision guard, audit trail and the
admin service. Storage is reached through the ``Store`` protocol.
"""

from .admin import TransactionAdmin, TransactionFilters, TransactionPage
from .audit import Actor, AuditAction, AuditEvent, AuditRecorder
from .errors import LedgerSyncError, RevisionConflictError
from .sync import SyncEngine, SyncOutcome
from .types import AppState

__version__ = "0.1.0"

__all__ = [
    "Actor",
    "AppState",
    "AuditAction",
    "AuditEvent",
    "AuditRecorder",
    "LedgerSyncError",
    "RevisionConflictError",
    "SyncEngine",
    "SyncOutcome",
    "TransactionAdmin",
    "TransactionFilters",
    "TransactionPage",
]
