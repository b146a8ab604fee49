from __future__ import annotations

from pathlib import Path

from savekeep.paths import (
    INSTALL_ID_FILE,
    InstallIdentity,
    default_passphrase,
    default_save_dir,
    user_data_dir,
)


def test_data_dir_override(isolated_app_dirs: Path):
    assert user_data_dir() == isolated_app_dirs.resolve()
    assert default_save_dir() == (isolated_app_dirs / "saves").resolve()


def test_save_dir_override(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("SAVEKEEP_SAVE_DIR", str(tmp_path / "elsewhere"))
    assert default_save_dir() == (tmp_path / "elsewhere").resolve()


def test_install_id_is_created_once(tmp_path: Path):
    base = tmp_path / "id"
    first = InstallIdentity(base_dir=base).get_or_create()
    second = InstallIdentity(base_dir=base).get_or_create()

    assert first == second
    assert len(first) == 32
    assert (base / INSTALL_ID_FILE).read_text(encoding="utf-8") == first


def test_empty_install_id_is_regenerated(tmp_path: Path):
    base = tmp_path / "id"
    base.mkdir()
    (base / INSTALL_ID_FILE).write_text("  \n", encoding="utf-8")

    value = InstallIdentity(base_dir=base).get_or_create()

    assert value.strip()
    assert (base / INSTALL_ID_FILE).read_text(encoding="utf-8") == value


def test_default_passphrase_uses_data_dir(isolated_app_dirs: Path):
    value = default_passphrase()
    assert (isolated_app_dirs / INSTALL_ID_FILE).read_text(encoding="utf-8") == value
