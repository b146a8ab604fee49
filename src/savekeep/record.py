from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Dict, Iterator, Optional, Protocol, Tuple, Type, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

R = TypeVar("R", bound="SaveRecord")

# Fields that live on the instance but are never written to disk
RUNTIME_FIELDS = frozenset({"key"})


class DirtyListener(Protocol):
    """Anything that wants to hear when a record first becomes dirty."""

    def register_dirty(self, record: "Trackable") -> None:
        ...


@runtime_checkable
class Trackable(Protocol):
    """The narrow capability the dirty registry needs from a record."""

    @property
    def key(self) -> str:
        ...

    @property
    def is_dirty(self) -> bool:
        ...

    def mark_dirty(self) -> None:
        ...

    def clear_dirty(self) -> None:
        ...

    def bind_listener(self, listener: Optional[DirtyListener]) -> None:
        ...


class DirtyTracker:
    """Dirty flag plus an optional listener, meant to be embedded in a record.

    Record types that cannot inherit from SaveRecord can hold one of these and
    delegate the Trackable methods to it.
    """

    __slots__ = ("owner", "dirty", "listener")

    def __init__(self, owner: Trackable) -> None:
        self.owner = owner
        self.dirty = False
        self.listener: Optional[DirtyListener] = None

    def mark(self) -> bool:
        """Flip the flag and notify the listener. Returns False if already dirty."""
        if self.dirty:
            return False
        self.dirty = True
        if self.listener is not None:
            self.listener.register_dirty(self.owner)
        return True

    def clear(self) -> None:
        self.dirty = False


@dataclass
class SaveRecord:
    """Base for persistable records with automatic dirty tracking.

    Subclasses are dataclasses whose extra fields all have defaults::

        @dataclass
        class PlayerSave(SaveRecord):
            SAVE_KEY: ClassVar[str] = "player_data"
            gold: int = 0

    Assigning a persisted field to a different value marks the record dirty.
    In-place mutation (``self.items.append(...)``) must call ``mark_dirty()``.
    ``key`` is runtime-only and immutable after construction.
    """

    SAVE_KEY: ClassVar[str] = ""

    key: str = field(default="")
    version: int = 1
    timestamp: int = 0

    def __post_init__(self) -> None:
        if not self.key:
            object.__setattr__(self, "key", type(self).SAVE_KEY)
        object.__setattr__(self, "_tracker", DirtyTracker(self))
        object.__setattr__(self, "_tracking", True)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "key" and "_tracker" in self.__dict__:
            raise AttributeError(f"{type(self).__name__}.key is immutable once constructed")
        if name.startswith("_") or not self.__dict__.get("_tracking", False):
            object.__setattr__(self, name, value)
            return
        if name in self.persisted_fields():
            self.set_field(name, value)
        else:
            object.__setattr__(self, name, value)

    # Dirty tracking

    @property
    def is_dirty(self) -> bool:
        return self._tracker.dirty

    def mark_dirty(self) -> None:
        """Mark as modified. No-op if already dirty."""
        if self._tracker.mark():
            self.on_marked_dirty()

    def force_dirty(self) -> None:
        """Mark dirty regardless of whether any field changed (e.g. first save)."""
        self.mark_dirty()

    def clear_dirty(self) -> None:
        self._tracker.clear()

    def bind_listener(self, listener: Optional[DirtyListener]) -> None:
        self._tracker.listener = listener

    def set_field(self, name: str, value: Any) -> bool:
        """Assign a persisted field; marks dirty only if the value changed."""
        if name not in self.persisted_fields():
            raise AttributeError(f"{type(self).__name__} has no persisted field '{name}'")
        if getattr(self, name) == value:
            return False
        object.__setattr__(self, name, value)
        if self.__dict__.get("_tracking", False):
            self.mark_dirty()
        return True

    @contextmanager
    def untracked(self) -> Iterator[None]:
        """Suspend dirty marking, e.g. while hooks stamp or migrate fields."""
        previous = self.__dict__.get("_tracking", False)
        object.__setattr__(self, "_tracking", False)
        try:
            yield
        finally:
            object.__setattr__(self, "_tracking", previous)

    # Hooks

    def on_marked_dirty(self) -> None:
        """Called once per modification episode when the record turns dirty."""

    def on_before_save(self) -> None:
        self.timestamp = int(time.time())

    def on_after_load(self) -> None:
        """Migration hook, run after deserialization. Changes here do not mark dirty."""

    # Serialization

    @classmethod
    def persisted_fields(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls) if f.name not in RUNTIME_FIELDS)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in RUNTIME_FIELDS:
            data.pop(name, None)
        return data

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any], *, key: Optional[str] = None) -> R:
        """Build a record from decoded JSON; unknown fields are dropped."""
        names = set(cls.persisted_fields())
        unknown = sorted(set(data) - names)
        if unknown:
            logger.debug("Ignoring unknown fields for %s: %s", cls.__name__, unknown)
        kwargs = {k: v for k, v in data.items() if k in names}
        if "version" in kwargs:
            kwargs["version"] = int(kwargs["version"])
        if "timestamp" in kwargs:
            kwargs["timestamp"] = int(kwargs["timestamp"])
        return cls(key=key or "", **kwargs)
