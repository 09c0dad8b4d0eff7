"""State synchronization: merge, projection, revision guard and the engine."""

from .engine import StoredState, SyncEngine, SyncOutcome
from .merge import merge_states
from .revision import INITIAL_REVISION, check_revision, next_revision
from .transform import SyncRows, project_state

__all__ = [
    "INITIAL_REVISION",
    "StoredState",
    "SyncEngine",
    "SyncOutcome",
    "SyncRows",
    "check_revision",
    "merge_states",
    "next_revision",
    "project_state",
]
