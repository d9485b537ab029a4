"""State snapshot models, stores and the serialized apply-time recorder."""

from .models import StateSnapshot, ResourceState
from .store import StateStore, MemoryStateStore
from .file_store import FileStateStore
from .recorder import StateRecorder

__all__ = [
    "StateSnapshot",
    "ResourceState",
    "StateStore",
    "MemoryStateStore",
    "FileStateStore",
    "StateRecorder",
]
