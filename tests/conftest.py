import sys
from pathlib import Path

import pytest

# Ensure 'src' is on sys.path for test imports without installing the package
ROOT = Path(__file__).resolve().parents[1]
src = ROOT / "src"
if str(src) not in sys.path:
    sys.path.insert(0, str(src))


@pytest.fixture(autouse=True)
def isolated_app_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep install ids and default save dirs out of the real user profile."""
    data_dir = tmp_path / "appdata"
    monkeypatch.setenv("SAVEKEEP_DATA_DIR", str(data_dir))
    for var in ("SAVEKEEP_SAVE_DIR", "SAVEKEEP_ENCRYPT", "SAVEKEEP_PASSPHRASE"):
        monkeypatch.delenv(var, raising=False)
    return data_dir
