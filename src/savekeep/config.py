from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError
from .store import LocalRecordStore

logger = logging.getLogger(__name__)

ENV_SAVE_DIR = "SAVEKEEP_SAVE_DIR"
ENV_ENCRYPT = "SAVEKEEP_ENCRYPT"
ENV_PASSPHRASE = "SAVEKEEP_PASSPHRASE"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


@dataclass
class SaveConfig:
    """Host-supplied settings for the store and the orchestrator's auto-save."""

    save_dir: Optional[Path] = None
    encryption_enabled: bool = False
    passphrase: Optional[str] = None
    auto_save_enabled: bool = True
    auto_save_interval: float = 300.0
    save_on_quit: bool = True
    save_on_pause: bool = True

    def __post_init__(self) -> None:
        if self.save_dir is not None:
            self.save_dir = Path(self.save_dir).expanduser()
        if self.auto_save_interval < 0:
            raise ConfigError(f"auto_save_interval must be >= 0, got {self.auto_save_interval}")

    @staticmethod
    def _load_yaml(path: Path) -> dict:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    @classmethod
    def _deep_merge(cls, base: dict, overlay: dict) -> dict:
        merged = dict(base)
        for k, v in (overlay or {}).items():
            if isinstance(v, dict) and isinstance(base.get(k), dict):
                merged[k] = cls._deep_merge(base[k], v)
            else:
                merged[k] = v
        return merged

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "SaveConfig":
        storage = data.get("storage") or {}
        auto = data.get("auto_save") or {}
        try:
            return cls(
                save_dir=storage.get("save_dir"),
                encryption_enabled=bool(storage.get("encryption_enabled", False)),
                passphrase=storage.get("passphrase"),
                auto_save_enabled=bool(auto.get("enabled", True)),
                auto_save_interval=float(auto.get("interval_seconds", 300.0)),
                save_on_quit=bool(auto.get("on_quit", True)),
                save_on_pause=bool(auto.get("on_pause", True)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

    @classmethod
    def load(cls, user_path: Optional[Path] = None) -> "SaveConfig":
        """Load packaged defaults, overlay an optional user YAML file, then env overrides."""
        try:
            with resources.files("savekeep").joinpath("default_config.yaml").open("r", encoding="utf-8") as f:
                default_data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Default config not found; falling back to dataclass defaults.")
            default_data = {}

        user_data: dict = {}
        if user_path is not None:
            if user_path.exists():
                user_data = cls._load_yaml(user_path)
                logger.info("Loaded user config from %s", user_path)
            else:
                logger.warning("User config file not found: %s", user_path)

        config = cls._from_dict(cls._deep_merge(default_data, user_data))
        config.apply_env()
        logger.debug("Config resolved: %s", config)
        return config

    def apply_env(self) -> None:
        save_dir = os.getenv(ENV_SAVE_DIR)
        if save_dir:
            self.save_dir = Path(save_dir).expanduser()
        encrypt = os.getenv(ENV_ENCRYPT)
        if encrypt is not None:
            value = encrypt.strip().lower()
            if value in _TRUTHY:
                self.encryption_enabled = True
            elif value in _FALSY:
                self.encryption_enabled = False
            else:
                raise ConfigError(f"{ENV_ENCRYPT} must be a boolean, got {encrypt!r}")
        passphrase = os.getenv(ENV_PASSPHRASE)
        if passphrase:
            self.passphrase = passphrase

    def build_store(self) -> LocalRecordStore:
        return LocalRecordStore(
            self.save_dir,
            encryption_enabled=self.encryption_enabled,
            passphrase=self.passphrase,
        )

    def __repr__(self) -> str:
        # Keep the passphrase out of logs
        return (
            f"SaveConfig(save_dir={self.save_dir!r}, encryption_enabled={self.encryption_enabled}, "
            f"passphrase={'***' if self.passphrase else None}, auto_save_enabled={self.auto_save_enabled}, "
            f"auto_save_interval={self.auto_save_interval}, save_on_quit={self.save_on_quit}, "
            f"save_on_pause={self.save_on_pause})"
        )
