from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set, Type, TypeVar

from .config import SaveConfig
from .errors import DuplicateRegistrationError, InvalidArgumentError, OrchestratorStateError, SaveError
from .record import SaveRecord, Trackable
from .registry import DirtyRegistry
from .store import LocalRecordStore, RecordStore

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=SaveRecord)

DEFAULT_AUTO_SAVE_INTERVAL = 300.0  # 5 minutes


class OrchestratorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    SAVING = "saving"
    DISPOSED = "disposed"


@dataclass(frozen=True)
class SaveReport:
    """Outcome of a save-all pass. ``skipped`` means another pass was already running."""

    saved: int = 0
    failed: int = 0
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.skipped and self.failed == 0


class SaveOrchestrator:
    """Tracks dirty records and persists them through a record store.

    This is the single entry point for host code: register records, let them report
    changes, and call ``tick``/``on_quit``/``on_pause`` from the host loop. The
    orchestrator keeps no clock of its own.

    Records learn about the orchestrator when they are registered (it becomes their
    dirty listener). A record that was modified before registration is picked up at
    registration time.

    Lifecycle: uninitialized -> idle <-> saving -> disposed. Bookkeeping calls log
    and no-op outside idle/saving; save and load calls raise OrchestratorStateError.

    Async operations run their file I/O on the store's worker pool and resume on the
    calling event loop, so the registry is only ever mutated from that loop. They
    cannot be cancelled midway through a write.
    """

    def __init__(self) -> None:
        self._registry = DirtyRegistry()
        self._store: Optional[RecordStore] = None
        self._owns_store = False
        self.auto_save_enabled = True
        self.auto_save_interval = DEFAULT_AUTO_SAVE_INTERVAL
        self.save_on_quit = True
        self.save_on_pause = True
        self._time_since_last_save = 0.0
        self._is_saving = False
        self._initialized = False
        self._disposed = False
        self._background: Set[asyncio.Task] = set()

    # Lifecycle

    def initialize(
        self,
        store: Optional[RecordStore] = None,
        auto_save_enabled: bool = True,
        auto_save_interval: float = DEFAULT_AUTO_SAVE_INTERVAL,
        save_on_quit: bool = True,
        save_on_pause: bool = True,
    ) -> None:
        """One-time setup. A store is created with default settings if none is given."""
        if self._disposed:
            logger.warning("SaveOrchestrator was disposed; initialize() ignored.")
            return
        if self._initialized:
            logger.warning("SaveOrchestrator already initialized. Skipping.")
            return
        if auto_save_interval < 0:
            raise InvalidArgumentError(f"auto_save_interval must be >= 0, got {auto_save_interval}")

        if store is None:
            store = LocalRecordStore(encryption_enabled=False)
            self._owns_store = True
        self._store = store
        self.auto_save_enabled = auto_save_enabled
        self.auto_save_interval = float(auto_save_interval)
        self.save_on_quit = save_on_quit
        self.save_on_pause = save_on_pause
        self._initialized = True
        logger.info(
            "SaveOrchestrator initialized (auto_save=%s, interval=%.1fs, on_quit=%s, on_pause=%s)",
            auto_save_enabled,
            self.auto_save_interval,
            save_on_quit,
            save_on_pause,
        )

    def initialize_from_config(self, config: SaveConfig) -> None:
        if self._initialized or self._disposed:
            logger.warning("SaveOrchestrator already initialized or disposed; config ignored.")
            return
        self.initialize(
            store=config.build_store(),
            auto_save_enabled=config.auto_save_enabled,
            auto_save_interval=config.auto_save_interval,
            save_on_quit=config.save_on_quit,
            save_on_pause=config.save_on_pause,
        )
        self._owns_store = True

    def dispose(self) -> None:
        if self._disposed:
            logger.warning("SaveOrchestrator already disposed.")
            return
        if self.has_dirty_data:
            logger.warning("SaveOrchestrator disposed with %d unsaved record(s)!", self.dirty_count)
        if self._is_saving:
            logger.warning("SaveOrchestrator disposed while a save pass is running; the pass stops after its current write")
        for record in self._registry.registered():
            record.bind_listener(None)
        self._disposed = True
        if self._owns_store and self._store is not None:
            self._store.close()
        logger.info("SaveOrchestrator disposed")

    # Introspection

    @property
    def state(self) -> OrchestratorState:
        if self._disposed:
            return OrchestratorState.DISPOSED
        if not self._initialized:
            return OrchestratorState.UNINITIALIZED
        return OrchestratorState.SAVING if self._is_saving else OrchestratorState.IDLE

    @property
    def is_initialized(self) -> bool:
        return self._initialized and not self._disposed

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    @property
    def dirty_count(self) -> int:
        return self._registry.dirty_count

    @property
    def has_dirty_data(self) -> bool:
        return self._registry.dirty_count > 0

    @property
    def registered_count(self) -> int:
        return self._registry.registered_count

    @property
    def store(self) -> Optional[RecordStore]:
        return self._store

    def get(self, key: str) -> Optional[Trackable]:
        return self._registry.get(key)

    def debug_info(self) -> str:
        return f"Registered: {self.registered_count} | Dirty: {self.dirty_count} | Saving: {self._is_saving}"

    # Registration

    def register(self, record: Trackable) -> bool:
        """Start managing ``record``. Returns False if it was not added."""
        if not self._check_ready("register"):
            return False
        try:
            added = self._registry.register(record)
        except DuplicateRegistrationError as e:
            logger.warning("%s; ignoring registration", e)
            return False
        if not added:
            logger.debug("Record '%s' already registered", record.key)
            return False
        record.bind_listener(self)
        logger.info("Registered save data: %s (dirty=%s)", record.key, record.is_dirty)
        return True

    def unregister(self, record: Trackable) -> bool:
        if record is None or not self._check_ready("unregister"):
            return False
        if not self._registry.unregister(record):
            logger.debug("Record '%s' was not registered", record.key)
            return False
        record.bind_listener(None)
        logger.info("Unregistered save data: %s", record.key)
        return True

    def register_dirty(self, record: Trackable) -> None:
        """Dirty listener callback; records call this when they first become dirty."""
        if not self.is_initialized:
            logger.debug("Ignoring dirty notification for '%s': orchestrator not active", record.key)
            return
        if self._registry.mark(record):
            logger.debug("'%s' marked dirty (Total dirty: %d)", record.key, self.dirty_count)
        elif not self._registry.is_registered(record):
            logger.debug("'%s' is dirty but not registered; it will be tracked once registered", record.key)

    # Saving

    async def save_async(self, record: SaveRecord) -> None:
        """Save one record now, dirty or not. Errors are logged and re-raised."""
        self._require_ready("save")
        if record is None:
            logger.error("Cannot save a missing record")
            raise InvalidArgumentError("Cannot save a missing record")
        try:
            await self._store.save_async(record.key, record)
        except Exception as e:
            logger.error("Failed to save '%s': %s", record.key, e)
            raise
        self._mark_saved(record)
        logger.info("Saved: %s", record.key)

    def save(self, record: SaveRecord) -> None:
        """Blocking counterpart of :meth:`save_async`."""
        self._require_ready("save")
        if record is None:
            logger.error("Cannot save a missing record")
            raise InvalidArgumentError("Cannot save a missing record")
        try:
            self._store.save(record.key, record)
        except Exception as e:
            logger.error("Failed to save '%s': %s", record.key, e)
            raise
        self._mark_saved(record)
        logger.info("Saved: %s", record.key)

    async def save_all_dirty_async(self) -> SaveReport:
        """Save every dirty record, one at a time, without blocking the loop.

        Overlapping calls are skipped rather than queued. A failing record is logged
        and counted and the pass moves on; it stays dirty for the next pass.
        """
        pending = self._begin_pass("save_all_dirty_async")
        if pending is None:
            return SaveReport(skipped=True)
        if not pending:
            self._end_pass()
            return SaveReport()

        saved = failed = 0
        try:
            logger.info("Saving %d dirty save objects...", len(pending))
            for record in pending:
                if self._disposed:
                    logger.warning("Disposed during save pass; stopping before '%s'", record.key)
                    break
                try:
                    await self._store.save_async(record.key, record)
                except Exception as e:
                    self._log_pass_failure(record, e)
                    failed += 1
                    continue
                self._mark_saved(record)
                saved += 1
            logger.info("Save complete: %d saved, %d errors", saved, failed)
        finally:
            self._end_pass()
        return SaveReport(saved=saved, failed=failed)

    def save_all_dirty_sync(self) -> SaveReport:
        """Blocking save-all for shutdown paths that cannot wait on a loop."""
        pending = self._begin_pass("save_all_dirty_sync")
        if pending is None:
            return SaveReport(skipped=True)
        if not pending:
            self._end_pass()
            return SaveReport()

        saved = failed = 0
        try:
            logger.info("Sync saving %d dirty save objects...", len(pending))
            for record in pending:
                try:
                    self._store.save(record.key, record)
                except Exception as e:
                    self._log_pass_failure(record, e)
                    failed += 1
                    continue
                self._mark_saved(record)
                saved += 1
            logger.info("Sync save complete: %d saved, %d errors", saved, failed)
        finally:
            self._end_pass()
        return SaveReport(saved=saved, failed=failed)

    async def save_all_async(self) -> SaveReport:
        """Mark every registered record dirty, then save them all."""
        self._require_ready("save")
        for record in self._registry.registered():
            record.mark_dirty()
        return await self.save_all_dirty_async()

    def _begin_pass(self, operation: str) -> Optional[List[SaveRecord]]:
        self._require_ready("save")
        if self._is_saving:
            logger.warning("Save already in progress, skipping %s", operation)
            return None
        self._is_saving = True
        pending = self._registry.snapshot_dirty()
        if not pending:
            logger.debug("No dirty data to save")
        return pending

    def _end_pass(self) -> None:
        self._is_saving = False
        self._time_since_last_save = 0.0

    def _mark_saved(self, record: Trackable) -> None:
        record.clear_dirty()
        self._registry.discard(record)

    @staticmethod
    def _log_pass_failure(record: Trackable, exc: Exception) -> None:
        if isinstance(exc, SaveError):
            logger.error("Failed to save '%s': %s", record.key, exc)
        else:
            logger.exception("Unexpected error saving '%s'", record.key)

    # Loading

    async def load_async(self, key: str, record_type: Type[R]) -> Optional[R]:
        """Load and register the record stored under ``key``; None when nothing is stored."""
        self._require_ready("load")
        try:
            record = await self._store.load_async(key, record_type)
        except Exception as e:
            logger.error("Failed to load '%s': %s", key, e)
            raise
        return self._adopt_loaded(key, record)

    def load(self, key: str, record_type: Type[R]) -> Optional[R]:
        """Blocking counterpart of :meth:`load_async`."""
        self._require_ready("load")
        try:
            record = self._store.load(key, record_type)
        except Exception as e:
            logger.error("Failed to load '%s': %s", key, e)
            raise
        return self._adopt_loaded(key, record)

    def _adopt_loaded(self, key: str, record: Optional[R]) -> Optional[R]:
        if record is None:
            logger.warning("No save found for key: %s", key)
            return None
        if self.register(record):
            logger.info("Loaded and registered: %s", key)
        else:
            logger.warning("Loaded '%s' but it is not tracked; another record holds that key", key)
        return record

    # Store pass-throughs

    def delete_save(self, key: str) -> bool:
        """Delete stored files for ``key`` and stop tracking the registered record with that key."""
        self._require_ready("delete")
        deleted = self._store.delete_save(key)
        existing = self._registry.get(key)
        if existing is not None:
            self.unregister(existing)
        return deleted

    def has_save(self, key: str) -> bool:
        self._require_ready("query")
        return self._store.has_save(key)

    def list_keys(self) -> List[str]:
        self._require_ready("query")
        return self._store.list_keys()

    # Host hooks

    def tick(self, elapsed_seconds: float) -> Optional[asyncio.Task]:
        """Advance the auto-save timer. Call this from the host loop.

        Time only accumulates while auto-save is on, no pass is running and there is
        dirty data. Returns the scheduled save task, if one was started.
        """
        if not self._check_ready("tick"):
            return None
        if not (self.auto_save_enabled and not self._is_saving and self.has_dirty_data):
            return None

        self._time_since_last_save += elapsed_seconds
        if self._time_since_last_save < self.auto_save_interval:
            return None
        self._time_since_last_save = 0.0
        logger.info("Auto-save interval reached - saving %d dirty record(s)", self.dirty_count)
        return self._schedule_save_all()

    def on_quit(self) -> Optional[SaveReport]:
        """Host quit hook: flush dirty records synchronously if configured."""
        if not self._check_ready("on_quit"):
            return None
        if self.save_on_quit and self.has_dirty_data:
            logger.info("Application quitting - saving all dirty data...")
            return self.save_all_dirty_sync()
        return None

    def on_pause(self, paused: bool = True) -> Optional[asyncio.Task]:
        """Host pause/background hook: start a background flush if configured."""
        if not self._check_ready("on_pause"):
            return None
        if self.save_on_pause and paused and self.has_dirty_data and not self._is_saving:
            logger.info("Application paused - saving all dirty data...")
            return self._schedule_save_all()
        return None

    def _schedule_save_all(self) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; saving synchronously")
            self.save_all_dirty_sync()
            return None
        task = loop.create_task(self.save_all_dirty_async())
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Background save was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background save failed: %s", exc, exc_info=exc)

    # State guards

    def _check_ready(self, operation: str) -> bool:
        if self._disposed:
            logger.warning("SaveOrchestrator disposed; %s ignored.", operation)
            return False
        if not self._initialized:
            logger.warning("SaveOrchestrator not initialized; %s ignored. Call initialize() first.", operation)
            return False
        return True

    def _require_ready(self, operation: str) -> None:
        if self._disposed:
            logger.error("Cannot %s: SaveOrchestrator disposed", operation)
            raise OrchestratorStateError(f"Cannot {operation}: orchestrator is disposed")
        if not self._initialized:
            logger.error("Cannot %s: SaveOrchestrator not initialized", operation)
            raise OrchestratorStateError(f"Cannot {operation}: orchestrator is not initialized")
