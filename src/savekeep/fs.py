from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def ensure_dir(path: Path, *, mode: int = 0o700) -> Path:
    """Create ``path`` (and parents) and restrict it to the owner when the OS allows."""
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, mode)
    except OSError:
        logger.debug("chmod %o not applied to %s", mode, path, exc_info=True)
    return path


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Replace the contents of ``path`` in one step.

    The bytes go to a sibling temp file that is fsynced and then renamed over the
    target, so readers see either the previous save or the new one.
    """
    folder = ensure_dir(path.parent)
    with tempfile.NamedTemporaryFile("wb", dir=folder, prefix=f".{path.name}.", delete=False) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        except OSError:
            tmp.close()
            remove_if_exists(tmp_path)
            raise
    try:
        os.replace(tmp_path, path)
    except OSError:
        remove_if_exists(tmp_path)
        raise


def copy_file(src: Path, dest: Path) -> None:
    shutil.copyfile(src, dest)


def remove_if_exists(path: Path) -> bool:
    """Unlink ``path``; False when there was nothing to remove."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
