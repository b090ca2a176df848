from .drive_client import DriveClient
from .pull import Puller
from .push import PushEngine, PushResult
from .state import OperationLog, PathIndex, StateStore, SyncState
from .vault import LocalVault

__all__ = [
    "DriveClient",
    "LocalVault",
    "OperationLog",
    "PathIndex",
    "Puller",
    "PushEngine",
    "PushResult",
    "StateStore",
    "SyncState",
]
