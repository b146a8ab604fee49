"""Dirty-tracked local persistence for small structured records.

- SaveRecord: dataclass base with automatic dirty tracking and load/save hooks
- LocalRecordStore: file-per-key storage with backup fallback and optional AES encryption
- SaveOrchestrator: registers records, flushes dirty ones on demand or on a host-driven timer
"""
from importlib.metadata import PackageNotFoundError, version

from .config import SaveConfig
from .errors import (
    ConfigError,
    CorruptionError,
    DuplicateRegistrationError,
    InvalidArgumentError,
    IOFailureError,
    OrchestratorStateError,
    SaveError,
)
from .orchestrator import OrchestratorState, SaveOrchestrator, SaveReport
from .record import DirtyListener, DirtyTracker, SaveRecord, Trackable
from .registry import DirtyRegistry
from .samples import GameSettingsSave, PlayerSave
from .store import LocalRecordStore, RecordStore

try:
    __version__ = version("savekeep")
except PackageNotFoundError:  # pragma: no cover - during tests without packaging
    __version__ = "0.0.0"

__all__ = [
    "__version__",
    "SaveConfig",
    "SaveError",
    "InvalidArgumentError",
    "IOFailureError",
    "CorruptionError",
    "DuplicateRegistrationError",
    "OrchestratorStateError",
    "ConfigError",
    "SaveOrchestrator",
    "OrchestratorState",
    "SaveReport",
    "SaveRecord",
    "DirtyTracker",
    "DirtyListener",
    "Trackable",
    "DirtyRegistry",
    "LocalRecordStore",
    "RecordStore",
    "PlayerSave",
    "GameSettingsSave",
]
