"""setlist: orchestrate playlists of remote worker steps."""

from .engine import ExecutionEngine, SegueResult, TriggerResult, build_engine
from .errors import (
    ConflictError,
    DispatchError,
    NotFoundError,
    PersistenceError,
    SetlistError,
    ValidationError,
)
from .models import Playlist, PlaylistStatus, Plugin, RunContext, Step, Strategy
from .persistence import get_context_store, get_store
from .rpc import RpcClientPool

__version__ = "0.1.0"
__all__ = [
    "ExecutionEngine",
    "TriggerResult",
    "SegueResult",
    "build_engine",
    "SetlistError",
    "NotFoundError",
    "ValidationError",
    "DispatchError",
    "PersistenceError",
    "ConflictError",
    "Playlist",
    "PlaylistStatus",
    "Plugin",
    "RunContext",
    "Step",
    "Strategy",
    "RpcClientPool",
    "get_store",
    "get_context_store",
]
