from __future__ import annotations

from typing import Dict, List, Optional

from .errors import DuplicateRegistrationError, InvalidArgumentError
from .record import Trackable


class DirtyRegistry:
    """Registered records by key, and the subset of them with unsaved changes.

    No I/O and no logging; the orchestrator owns both. The dirty set only ever
    holds registered records. A record that turned dirty before registration is
    picked up when it is registered.
    """

    def __init__(self) -> None:
        self._registered: Dict[str, Trackable] = {}
        self._dirty: Dict[str, Trackable] = {}

    def register(self, record: Trackable) -> bool:
        """Add ``record``. False if this exact instance is already registered."""
        if record is None:
            raise InvalidArgumentError("Cannot register a missing record")
        key = record.key
        if not key:
            raise InvalidArgumentError("Cannot register a record with an empty key")
        existing = self._registered.get(key)
        if existing is record:
            return False
        if existing is not None:
            raise DuplicateRegistrationError(f"A record with key '{key}' is already registered")
        self._registered[key] = record
        if record.is_dirty:
            self._dirty[key] = record
        return True

    def unregister(self, record: Trackable) -> bool:
        """Remove ``record`` from both collections. False if it was not the registered instance."""
        if record is None or not self.is_registered(record):
            return False
        del self._registered[record.key]
        self._dirty.pop(record.key, None)
        return True

    def mark(self, record: Trackable) -> bool:
        """Add a registered record to the dirty set. False if unregistered or already present."""
        if not self.is_registered(record) or record.key in self._dirty:
            return False
        self._dirty[record.key] = record
        return True

    def discard(self, record: Trackable) -> None:
        if self._dirty.get(record.key) is record:
            del self._dirty[record.key]

    def is_registered(self, record: Trackable) -> bool:
        return self._registered.get(record.key) is record

    def get(self, key: str) -> Optional[Trackable]:
        return self._registered.get(key)

    def snapshot_dirty(self) -> List[Trackable]:
        """Copy of the dirty set, safe to iterate while the set changes."""
        return list(self._dirty.values())

    def registered(self) -> List[Trackable]:
        return list(self._registered.values())

    @property
    def dirty_count(self) -> int:
        return len(self._dirty)

    @property
    def registered_count(self) -> int:
        return len(self._registered)
