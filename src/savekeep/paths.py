from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from platformdirs import PlatformDirs

from .fs import atomic_write_bytes, ensure_dir

logger = logging.getLogger(__name__)

APP_NAME = "savekeep"

# Environment variable overrides (useful for tests and power users)
ENV_SAVE_DIR = "SAVEKEEP_SAVE_DIR"
ENV_DATA_DIR = "SAVEKEEP_DATA_DIR"

INSTALL_ID_FILE = "install_id"
FALLBACK_PASSPHRASE = "DefaultEncryptionKey_ChangeInProduction"


def _compute_dir(env_var: str, default: Path) -> Path:
    override = os.getenv(env_var)
    if override:
        return Path(override).expanduser().resolve()
    return Path(default).expanduser().resolve()


def user_data_dir() -> Path:
    """Platform user data directory for the app, honouring SAVEKEEP_DATA_DIR."""
    dirs = PlatformDirs(appname=APP_NAME, appauthor=False)
    return _compute_dir(ENV_DATA_DIR, Path(dirs.user_data_dir))


def default_save_dir() -> Path:
    """Directory holding ``*.sav``/``*.backup`` files unless one is configured."""
    return _compute_dir(ENV_SAVE_DIR, user_data_dir() / "saves")


class InstallIdentity:
    """Stable per-install identifier used as the default encryption passphrase.

    The id is generated once and stored under the user data directory. It keeps
    casual edits of encrypted saves out; it is not key management.
    """

    def __init__(self, *, base_dir: Optional[Path] = None) -> None:
        self.base_dir = base_dir if base_dir is not None else user_data_dir()
        self.id_path = self.base_dir / INSTALL_ID_FILE

    def get_or_create(self) -> str:
        if self.id_path.exists():
            try:
                value = self.id_path.read_text(encoding="utf-8").strip()
                if value:
                    return value
                logger.warning("Install id file %s is empty; regenerating", self.id_path)
            except OSError:
                logger.warning("Failed to read install id; regenerating.", exc_info=True)

        value = uuid.uuid4().hex
        try:
            ensure_dir(self.base_dir)
            atomic_write_bytes(self.id_path, value.encode("ascii"))
        except OSError:
            logger.warning(
                "Could not persist install id under %s; using fallback passphrase", self.base_dir, exc_info=True
            )
            return FALLBACK_PASSPHRASE
        try:
            os.chmod(self.id_path, 0o600)
        except OSError:
            logger.debug("Could not chmod install id file", exc_info=True)
        logger.info("Generated new install id at %s", self.id_path)
        return value


def default_passphrase(base_dir: Optional[Path] = None) -> str:
    return InstallIdentity(base_dir=base_dir).get_or_create()
