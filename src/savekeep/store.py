from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Type, TypeVar, Union

from . import crypto
from .codec import decode_record, encode_record
from .errors import CorruptionError, InvalidArgumentError, IOFailureError, SaveError
from .fs import atomic_write_bytes, copy_file, ensure_dir, remove_if_exists
from .paths import default_passphrase, default_save_dir
from .record import SaveRecord

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=SaveRecord)
T = TypeVar("T")

SAVE_EXTENSION = ".sav"
BACKUP_EXTENSION = ".backup"


class RecordStore(Protocol):
    """What the orchestrator needs from a storage backend."""

    def save(self, key: str, record: SaveRecord) -> None:
        ...

    async def save_async(self, key: str, record: SaveRecord) -> None:
        ...

    def load(self, key: str, record_type: Type[R]) -> Optional[R]:
        ...

    async def load_async(self, key: str, record_type: Type[R]) -> Optional[R]:
        ...

    def delete_save(self, key: str) -> bool:
        ...

    def has_save(self, key: str) -> bool:
        ...

    def list_keys(self) -> List[str]:
        ...

    def close(self) -> None:
        ...


class LocalRecordStore:
    """File-per-key record storage with optional encryption and a one-generation backup.

    Layout inside ``save_dir`` for key ``K``:
    - ``K.sav``: current payload (plain JSON, or base64 of salt + AES-256-CBC ciphertext)
    - ``K.backup``: the payload ``K.sav`` held before the latest successful write

    Saving copies the existing primary to the backup before the new primary is written,
    so a crash mid-write never damages the backup. Loading falls back to the backup when
    the primary cannot be read, decrypted or decoded.

    The ``*_async`` variants run file I/O on a private thread pool. There is no
    per-key locking: a save and a load of the same key running at the same time may
    interleave with the backup copy. Only one store instance should write to a
    directory at a time.
    """

    def __init__(
        self,
        save_dir: Optional[Union[str, Path]] = None,
        *,
        encryption_enabled: bool = False,
        passphrase: Optional[str] = None,
        max_workers: int = 2,
    ) -> None:
        self.save_dir = Path(save_dir).expanduser() if save_dir else default_save_dir()
        self.encryption_enabled = encryption_enabled
        self._passphrase = (passphrase or default_passphrase()) if encryption_enabled else passphrase
        self._max_workers = max(1, max_workers)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

        try:
            ensure_dir(self.save_dir)
        except OSError as e:
            raise IOFailureError(f"Cannot create save directory {self.save_dir}: {e}") from e

        if encryption_enabled:
            logger.info("Save store initialized with ENCRYPTION. Directory: %s", self.save_dir)
        else:
            logger.info("Save store initialized with PLAIN JSON. Directory: %s", self.save_dir)

    # Paths

    def save_path(self, key: str) -> Path:
        return self.save_dir / f"{key}{SAVE_EXTENSION}"

    def backup_path(self, key: str) -> Path:
        return self.save_dir / f"{key}{BACKUP_EXTENSION}"

    # Save

    def save(self, key: str, record: SaveRecord) -> None:
        """Persist ``record`` under ``key``, blocking until the write completes."""
        content = self._prepare(key, record)
        self._write(key, content)

    async def save_async(self, key: str, record: SaveRecord) -> None:
        """Persist ``record`` under ``key`` with the file writes off the calling context.

        Serialization (and the pre-save hook) still runs on the caller's context.
        """
        content = self._prepare(key, record)
        await self._run_io(self._write, key, content)

    def _prepare(self, key: str, record: SaveRecord) -> bytes:
        self._check_key(key, "Save")
        if record is None:
            logger.error("Cannot save a missing record for key '%s'", key)
            raise InvalidArgumentError("Cannot save a missing record")

        with record.untracked():
            record.on_before_save()
        payload = encode_record(record)
        logger.debug("Serialized data for key '%s': %d bytes", key, len(payload))
        if self.encryption_enabled:
            payload = crypto.encrypt(payload, self._passphrase)
        return payload

    def _write(self, key: str, content: bytes) -> None:
        primary = self.save_path(key)
        backup = self.backup_path(key)
        try:
            if primary.exists():
                copy_file(primary, backup)
                logger.debug("Backup created for key '%s'", key)
            atomic_write_bytes(primary, content)
        except OSError as e:
            logger.error("Failed to write save for key '%s': %s", key, e)
            raise IOFailureError(f"Failed to write save for key '{key}': {e}") from e
        logger.info("Saved key '%s' (%d bytes)", key, len(content))

    # Load

    def load(self, key: str, record_type: Type[R]) -> Optional[R]:
        """Load the record stored under ``key``.

        Returns None when neither a primary nor a backup file exists. If the primary
        is unreadable the backup is tried; when both fail the primary's error is raised.
        """
        self._check_key(key, "Load")
        primary = self.save_path(key)
        backup = self.backup_path(key)

        if primary.exists():
            try:
                return self._read_file(primary, key, record_type)
            except Exception as primary_exc:
                logger.warning("Failed to load '%s' from main save, trying backup: %s", key, primary_exc)
                if not backup.exists():
                    raise
                recovered = self._try_backup(backup, key, record_type)
                if recovered is None:
                    raise
                return recovered

        if backup.exists():
            logger.warning("Main save not found, loading from backup for key '%s'", key)
            return self._read_file(backup, key, record_type)

        logger.info("No save file found for key '%s'", key)
        return None

    async def load_async(self, key: str, record_type: Type[R]) -> Optional[R]:
        """Same as :meth:`load`, with reads, decryption and decoding on the I/O pool."""
        return await self._run_io(self.load, key, record_type)

    def _try_backup(self, backup: Path, key: str, record_type: Type[R]) -> Optional[R]:
        logger.info("Attempting to restore from backup for key '%s'", key)
        try:
            record = self._read_file(backup, key, record_type)
        except Exception:
            logger.error("Backup for key '%s' is unreadable as well", key, exc_info=True)
            return None
        logger.warning("Restored key '%s' from backup", key)
        return record

    def _read_file(self, path: Path, key: str, record_type: Type[R]) -> R:
        payload = self._read_payload(path)
        record = decode_record(payload, record_type, key)
        try:
            with record.untracked():
                record.on_after_load()
        except SaveError:
            raise
        except Exception as e:
            raise CorruptionError(f"Post-load hook failed for key '{key}': {e!r}") from e
        logger.debug("Loaded data for key '%s' from %s", key, path.name)
        return record

    def _read_payload(self, path: Path) -> bytes:
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise IOFailureError(f"Failed to read {path}: {e}") from e
        if not raw:
            raise CorruptionError(f"Save file {path.name} is empty")
        if self.encryption_enabled:
            return crypto.decrypt(raw, self._passphrase)
        return raw

    def read_payload(self, key: str) -> Optional[bytes]:
        """Return the decrypted JSON bytes of the primary file (backup if absent), or None."""
        self._check_key(key, "Read")
        for path in (self.save_path(key), self.backup_path(key)):
            if path.exists():
                return self._read_payload(path)
        return None

    # Housekeeping

    def delete_save(self, key: str) -> bool:
        """Delete the primary and backup files for ``key``. Returns True if anything was removed."""
        self._check_key(key, "Delete")
        try:
            removed = [remove_if_exists(p) for p in (self.save_path(key), self.backup_path(key))]
        except OSError as e:
            logger.error("Failed to delete save for key '%s': %s", key, e)
            raise IOFailureError(f"Failed to delete save for key '{key}': {e}") from e
        if any(removed):
            logger.info("Deleted save for key '%s'", key)
            return True
        logger.warning("No save file found to delete for key '%s'", key)
        return False

    def has_save(self, key: str) -> bool:
        if not self._is_valid_key(key):
            return False
        return self.save_path(key).exists()

    def clear_all_saves(self) -> int:
        """Delete every primary and backup file in the save directory. Returns the file count."""
        try:
            saves = list(self.save_dir.glob(f"*{SAVE_EXTENSION}"))
            backups = list(self.save_dir.glob(f"*{BACKUP_EXTENSION}"))
            for path in saves + backups:
                path.unlink()
        except OSError as e:
            logger.error("Failed to clear saves in %s: %s", self.save_dir, e)
            raise IOFailureError(f"Failed to clear saves in {self.save_dir}: {e}") from e
        logger.info(
            "Cleared all saves. Deleted %d save files and %d backup files.", len(saves), len(backups)
        )
        return len(saves) + len(backups)

    def list_keys(self) -> List[str]:
        try:
            return sorted(p.stem for p in self.save_dir.glob(f"*{SAVE_EXTENSION}") if p.is_file())
        except OSError as e:
            logger.error("Failed to list save keys in %s: %s", self.save_dir, e)
            raise IOFailureError(f"Failed to list save keys in {self.save_dir}: {e}") from e

    # Executor

    async def _run_io(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._get_executor(), functools.partial(fn, *args))

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="savekeep-io"
                )
            return self._executor

    def close(self) -> None:
        """Wait for pending background I/O and release the worker threads."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> "LocalRecordStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @staticmethod
    def _is_valid_key(key: str) -> bool:
        return (
            isinstance(key, str)
            and bool(key)
            and "/" not in key
            and "\\" not in key
            and key not in (".", "..")
        )

    @classmethod
    def _check_key(cls, key: str, action: str) -> None:
        if not key or not isinstance(key, str):
            logger.error("%s key cannot be empty", action)
            raise InvalidArgumentError(f"{action} key cannot be empty")
        if not cls._is_valid_key(key):
            logger.error("%s key %r is not a valid file name", action, key)
            raise InvalidArgumentError(f"{action} key {key!r} is not a valid file name")
