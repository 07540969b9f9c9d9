from .models import StateRecord
from .store import FileStateStore, InMemoryStateStore, StateStore

__all__ = ["StateRecord", "StateStore", "FileStateStore", "InMemoryStateStore"]
