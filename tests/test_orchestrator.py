from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import pytest

from savekeep import (
    CorruptionError,
    InvalidArgumentError,
    IOFailureError,
    OrchestratorState,
    OrchestratorStateError,
    SaveConfig,
    SaveOrchestrator,
)
from savekeep.samples import GameSettingsSave, PlayerSave
from savekeep.store import LocalRecordStore


class FlakyStore(LocalRecordStore):
    """Local store whose writes fail for selected keys."""

    def __init__(self, save_dir: Path, failing: Optional[List[str]] = None) -> None:
        super().__init__(save_dir)
        self.failing = set(failing or [])
        self.writes: List[str] = []

    def _write(self, key: str, content: bytes) -> None:
        if key in self.failing:
            raise IOFailureError(f"disk full while writing {key}")
        super()._write(key, content)
        self.writes.append(key)


class GatedStore:
    """Store whose async saves wait until the test opens the gate."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.writes: List[str] = []

    async def save_async(self, key, record) -> None:
        await self.gate.wait()
        self.writes.append(key)

    def save(self, key, record) -> None:
        self.writes.append(key)

    def close(self) -> None:
        pass


@pytest.fixture()
def save_dir(tmp_path: Path) -> Path:
    return tmp_path / "saves"


@pytest.fixture()
def orch(save_dir: Path) -> SaveOrchestrator:
    o = SaveOrchestrator()
    o.initialize(store=LocalRecordStore(save_dir), auto_save_enabled=True, auto_save_interval=10)
    yield o
    o.store.close()


def test_register_mutate_save_all_scenario(orch: SaveOrchestrator, save_dir: Path):
    player = PlayerSave(key="p", level=1, gold=0)
    assert orch.register(player) is True
    assert player.is_dirty is False

    player.gold = 50
    assert player.is_dirty is True
    assert orch.dirty_count == 1

    report = asyncio.run(orch.save_all_dirty_async())

    assert (report.saved, report.failed, report.skipped) == (1, 0, False)
    assert json.loads((save_dir / "p.sav").read_text(encoding="utf-8"))["gold"] == 50
    assert player.is_dirty is False
    assert orch.dirty_count == 0
    assert orch.has_dirty_data is False


def test_marking_twice_keeps_one_entry(orch: SaveOrchestrator):
    player = PlayerSave(key="p")
    orch.register(player)

    player.mark_dirty()
    player.mark_dirty()
    orch.register_dirty(player)

    assert orch.dirty_count == 1


def test_record_dirty_before_registration_is_tracked(orch: SaveOrchestrator):
    player = PlayerSave(key="p")
    player.gold = 5
    assert orch.dirty_count == 0

    orch.register(player)
    assert orch.dirty_count == 1


def test_duplicate_registration_is_a_warning(orch: SaveOrchestrator, caplog):
    first = PlayerSave(key="p")
    orch.register(first)
    with caplog.at_level(logging.WARNING, logger="savekeep.orchestrator"):
        assert orch.register(PlayerSave(key="p")) is False
    assert "already registered" in caplog.text
    assert orch.get("p") is first


def test_unregister_stops_tracking(orch: SaveOrchestrator):
    player = PlayerSave(key="p")
    orch.register(player)
    player.gold = 1

    assert orch.unregister(player) is True
    assert orch.dirty_count == 0
    assert orch.registered_count == 0

    player.gold = 2
    assert orch.dirty_count == 0


def test_save_async_clears_dirty(orch: SaveOrchestrator, save_dir: Path):
    player = PlayerSave(key="p")
    orch.register(player)
    player.gold = 3

    asyncio.run(orch.save_async(player))

    assert player.is_dirty is False
    assert orch.dirty_count == 0
    assert (save_dir / "p.sav").exists()


def test_save_async_persists_clean_records(orch: SaveOrchestrator, save_dir: Path):
    settings = GameSettingsSave()
    orch.register(settings)

    asyncio.run(orch.save_async(settings))
    assert (save_dir / "game_settings.sav").exists()


def test_failed_single_save_keeps_dirty_and_raises(save_dir: Path):
    orch = SaveOrchestrator()
    orch.initialize(store=FlakyStore(save_dir, failing=["p"]))
    player = PlayerSave(key="p")
    orch.register(player)
    player.gold = 9

    with pytest.raises(IOFailureError):
        asyncio.run(orch.save_async(player))

    assert player.is_dirty is True
    assert orch.dirty_count == 1
    orch.dispose()
    orch.store.close()


def test_batch_failures_are_isolated(save_dir: Path):
    store = FlakyStore(save_dir, failing=["bad"])
    orch = SaveOrchestrator()
    orch.initialize(store=store)

    good, bad, other = PlayerSave(key="good"), PlayerSave(key="bad"), GameSettingsSave()
    for r in (good, bad, other):
        orch.register(r)
        r.mark_dirty()

    report = asyncio.run(orch.save_all_dirty_async())

    assert (report.saved, report.failed) == (2, 1)
    assert report.ok is False
    assert sorted(store.writes) == ["game_settings", "good"]
    assert bad.is_dirty is True
    assert good.is_dirty is False
    assert orch.dirty_count == 1
    assert orch.is_saving is False
    store.close()


def test_sync_flush_has_same_semantics(save_dir: Path):
    store = FlakyStore(save_dir, failing=["bad"])
    orch = SaveOrchestrator()
    orch.initialize(store=store)
    good, bad = PlayerSave(key="good"), PlayerSave(key="bad")
    for r in (good, bad):
        orch.register(r)
        r.mark_dirty()

    report = orch.save_all_dirty_sync()

    assert (report.saved, report.failed) == (1, 1)
    assert orch.dirty_count == 1
    assert orch.is_saving is False
    store.close()


def test_second_flush_while_in_flight_is_skipped():
    async def scenario():
        store = GatedStore()
        orch = SaveOrchestrator()
        orch.initialize(store=store, auto_save_enabled=False)
        player = PlayerSave(key="p")
        orch.register(player)
        player.gold = 50

        first = asyncio.ensure_future(orch.save_all_dirty_async())
        await asyncio.sleep(0)
        assert orch.is_saving is True
        assert orch.state is OrchestratorState.SAVING

        second = await orch.save_all_dirty_async()
        assert second.skipped is True
        assert orch.save_all_dirty_sync().skipped is True
        assert store.writes == []

        store.gate.set()
        report = await first
        return report, store.writes, orch

    report, writes, orch = asyncio.run(scenario())

    assert report.saved == 1
    assert writes == ["p"]
    assert orch.state is OrchestratorState.IDLE


def test_dispose_stops_a_running_pass():
    async def scenario():
        store = GatedStore()
        orch = SaveOrchestrator()
        orch.initialize(store=store, auto_save_enabled=False)
        a, b = PlayerSave(key="a"), PlayerSave(key="b")
        orch.register(a)
        orch.register(b)
        a.gold = 1
        b.gold = 1

        running = asyncio.ensure_future(orch.save_all_dirty_async())
        await asyncio.sleep(0)
        orch.dispose()
        store.gate.set()
        return await running, store.writes, a, b

    report, writes, a, b = asyncio.run(scenario())

    assert report.saved == 1
    assert writes == ["a"]
    assert a.is_dirty is False
    assert b.is_dirty is True


def test_save_all_async_forces_every_record(orch: SaveOrchestrator, save_dir: Path):
    orch.register(PlayerSave(key="p"))
    orch.register(GameSettingsSave())

    report = asyncio.run(orch.save_all_async())

    assert report.saved == 2
    assert sorted(orch.list_keys()) == ["game_settings", "p"]


def test_load_registers_record(orch: SaveOrchestrator):
    orch.store.save("p", PlayerSave(key="p", gold=12))

    loaded = asyncio.run(orch.load_async("p", PlayerSave))

    assert loaded.gold == 12
    assert orch.get("p") is loaded
    loaded.gold = 13
    assert orch.dirty_count == 1


def test_load_missing_returns_none(orch: SaveOrchestrator):
    assert asyncio.run(orch.load_async("missing", PlayerSave)) is None
    assert orch.load("missing", PlayerSave) is None
    assert orch.registered_count == 0


def test_load_duplicate_key_still_returns_record(orch: SaveOrchestrator, caplog):
    orch.store.save("p", PlayerSave(key="p", gold=1))
    live = PlayerSave(key="p")
    orch.register(live)

    with caplog.at_level(logging.WARNING):
        loaded = orch.load("p", PlayerSave)

    assert loaded.gold == 1
    assert orch.get("p") is live
    assert "not tracked" in caplog.text


def test_load_corruption_propagates(orch: SaveOrchestrator, save_dir: Path):
    (save_dir / "p.sav").write_text("{ broken", encoding="utf-8")
    with pytest.raises(CorruptionError):
        asyncio.run(orch.load_async("p", PlayerSave))


def test_delete_save_unregisters(orch: SaveOrchestrator):
    player = PlayerSave(key="p")
    orch.register(player)
    orch.save(player)
    assert orch.has_save("p") is True

    assert orch.delete_save("p") is True
    assert orch.has_save("p") is False
    assert orch.registered_count == 0


def test_tick_without_loop_saves_synchronously(orch: SaveOrchestrator, save_dir: Path):
    player = PlayerSave(key="p")
    orch.register(player)
    player.gold = 1

    assert orch.tick(4) is None
    assert orch.tick(4) is None
    assert not (save_dir / "p.sav").exists()

    orch.tick(4)
    assert (save_dir / "p.sav").exists()
    assert orch.dirty_count == 0


def test_tick_schedules_background_save():
    async def scenario():
        store = GatedStore()
        orch = SaveOrchestrator()
        orch.initialize(store=store, auto_save_interval=1.0)
        player = PlayerSave(key="p")
        orch.register(player)
        player.gold = 1

        task = orch.tick(1.5)
        assert task is not None
        await asyncio.sleep(0)
        # In flight: further ticks do not schedule or accumulate
        assert orch.tick(5) is None
        store.gate.set()
        return await task, store

    report, store = asyncio.run(scenario())
    assert report.saved == 1
    assert store.writes == ["p"]


def test_tick_ignores_clean_state_and_disabled_auto_save(save_dir: Path):
    orch = SaveOrchestrator()
    orch.initialize(store=LocalRecordStore(save_dir), auto_save_enabled=False, auto_save_interval=0)
    player = PlayerSave(key="p")
    orch.register(player)
    player.gold = 1

    assert orch.tick(100) is None
    assert orch.dirty_count == 1
    orch.store.close()


def test_on_quit_flushes_synchronously(orch: SaveOrchestrator):
    player = PlayerSave(key="p")
    orch.register(player)
    assert orch.on_quit() is None

    player.gold = 1
    report = orch.on_quit()
    assert report.saved == 1
    assert orch.has_save("p")


def test_on_quit_respects_config(save_dir: Path):
    orch = SaveOrchestrator()
    orch.initialize(store=LocalRecordStore(save_dir), save_on_quit=False, save_on_pause=False)
    player = PlayerSave(key="p")
    orch.register(player)
    player.gold = 1

    assert orch.on_quit() is None
    assert orch.on_pause(True) is None
    assert orch.dirty_count == 1
    orch.store.close()


def test_on_pause_flushes_in_background(orch: SaveOrchestrator):
    async def scenario():
        player = PlayerSave(key="p")
        orch.register(player)
        player.gold = 1
        assert orch.on_pause(False) is None
        task = orch.on_pause(True)
        return await task

    report = asyncio.run(scenario())
    assert report.saved == 1
    assert orch.has_save("p")


def test_uninitialized_orchestrator(caplog):
    orch = SaveOrchestrator()
    assert orch.state is OrchestratorState.UNINITIALIZED

    with caplog.at_level(logging.WARNING):
        assert orch.register(PlayerSave(key="p")) is False
        assert orch.tick(1000) is None
        assert orch.on_quit() is None
    assert "not initialized" in caplog.text

    with pytest.raises(OrchestratorStateError):
        orch.save_all_dirty_sync()
    with pytest.raises(OrchestratorStateError):
        asyncio.run(orch.load_async("p", PlayerSave))


def test_initialize_twice_is_ignored(orch: SaveOrchestrator, caplog):
    store = orch.store
    with caplog.at_level(logging.WARNING):
        orch.initialize(store=None, auto_save_interval=1)
    assert orch.store is store
    assert orch.auto_save_interval == 10
    assert "already initialized" in caplog.text


def test_initialize_rejects_negative_interval():
    with pytest.raises(InvalidArgumentError):
        SaveOrchestrator().initialize(store=None, auto_save_interval=-1)


def test_initialize_without_store_uses_default_dir(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("SAVEKEEP_SAVE_DIR", str(tmp_path / "default-saves"))
    orch = SaveOrchestrator()
    orch.initialize()
    orch.save(PlayerSave(key="p"))

    assert (tmp_path / "default-saves" / "p.sav").exists()
    orch.dispose()


def test_initialize_from_config(tmp_path: Path):
    config = SaveConfig(
        save_dir=tmp_path / "cfg-saves",
        encryption_enabled=True,
        passphrase="secret",
        auto_save_interval=42,
        save_on_pause=False,
    )
    orch = SaveOrchestrator()
    orch.initialize_from_config(config)

    assert orch.auto_save_interval == 42
    assert orch.save_on_pause is False
    orch.save(PlayerSave(key="p", gold=3))
    assert b"gold" not in (tmp_path / "cfg-saves" / "p.sav").read_bytes()
    assert orch.load("p", PlayerSave).gold == 3
    orch.dispose()


def test_dispose_warns_about_unsaved_data(orch: SaveOrchestrator, caplog):
    player = PlayerSave(key="p")
    orch.register(player)
    player.gold = 1

    with caplog.at_level(logging.WARNING):
        orch.dispose()

    assert "unsaved" in caplog.text
    assert orch.state is OrchestratorState.DISPOSED
    assert orch.is_initialized is False
    with pytest.raises(OrchestratorStateError):
        orch.save(player)
    assert orch.register(GameSettingsSave()) is False


def test_debug_info(orch: SaveOrchestrator):
    orch.register(PlayerSave(key="p"))
    orch.register(GameSettingsSave())
    orch.get("p").mark_dirty()

    assert orch.debug_info() == "Registered: 2 | Dirty: 1 | Saving: False"


def test_save_missing_record_is_invalid(orch: SaveOrchestrator):
    with pytest.raises(InvalidArgumentError):
        asyncio.run(orch.save_async(None))
