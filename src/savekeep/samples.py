"""Ready-made records for common game state.

They double as examples of writing your own SaveRecord subclasses.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import ClassVar, List

from .record import SaveRecord

logger = logging.getLogger(__name__)

MAX_HEALTH = 100.0


@dataclass
class PlayerSave(SaveRecord):
    SAVE_KEY: ClassVar[str] = "player_data"

    version: int = 2
    player_name: str = ""
    is_alive: bool = True
    level: int = 1
    gold: int = 0
    experience: int = 0
    health: float = MAX_HEALTH
    position: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])

    def add_gold(self, amount: int) -> None:
        self.gold += amount

    def add_experience(self, amount: int) -> None:
        experience = self.experience + amount
        if experience >= self.level * 100:
            self.level += 1
            experience = 0
        self.experience = experience
        # Leveling up can leave experience at its old value (0 -> 0)
        self.mark_dirty()

    def take_damage(self, damage: float) -> None:
        health = self.health - damage
        if health <= 0:
            health = 0.0
            self.is_alive = False
        self.health = health

    def heal(self, amount: float) -> None:
        self.health = min(MAX_HEALTH, self.health + amount)

    def move_to(self, x: float, y: float, z: float) -> None:
        self.position = [x, y, z]

    def on_before_save(self) -> None:
        super().on_before_save()
        logger.debug("Saving player: %s, level %s", self.player_name, self.level)

    def on_after_load(self) -> None:
        super().on_after_load()
        if self.version < 2:
            # v1 saves predate position tracking
            if not self.position:
                self.position = [0.0, 0.0, 0.0]
            self.version = 2


@dataclass
class GameSettingsSave(SaveRecord):
    SAVE_KEY: ClassVar[str] = "game_settings"

    music_volume: float = 0.8
    sfx_volume: float = 1.0
    notifications_enabled: bool = True
    vibration_enabled: bool = True
    language: str = "en"
    graphics_quality: int = 1  # medium

    def set_all_volumes(self, volume: float) -> None:
        with self.untracked():
            self.music_volume = volume
            self.sfx_volume = volume
        self.mark_dirty()

    def reset_to_defaults(self) -> None:
        defaults = GameSettingsSave()
        with self.untracked():
            for name in ("music_volume", "sfx_volume", "notifications_enabled", "vibration_enabled", "graphics_quality"):
                setattr(self, name, getattr(defaults, name))
        self.mark_dirty()
