"""Vote tallying, conflict detection and DerbyNet publication."""

from .config import Settings
from .conflicts import ConflictDetector
from .derbynet import SyncClient
from .overrides import OverrideManager
from .push import PushCoordinator, PushSummary
from .results import ResultsEngine
from .store import DataStore
from .sync import RemoteSync

__all__ = [
    "ConflictDetector",
    "DataStore",
    "OverrideManager",
    "PushCoordinator",
    "PushSummary",
    "RemoteSync",
    "ResultsEngine",
    "Settings",
    "SyncClient",
]
