"""Tests for the active-profile switch engine."""

import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from ccswitch import config
from ccswitch import switch as switch_mod
from ccswitch.errors import ConflictError, InconsistentError, IOFailureError, NotFoundError
from ccswitch.fileio import atomic_write_bytes
from ccswitch.profiles import ProfileStore
from ccswitch.switch import SwitchEngine, render_settings
from ccswitch.types import SlotCondition

ORIGINAL = b'{\n    "model": "sonnet",\n    "theme": "dark"\n}'


@pytest.fixture
def live(claude_dir):
    path = claude_dir / "settings.json"
    path.write_bytes(ORIGINAL)
    return path


@pytest.fixture
def engine(home):
    return SwitchEngine(ProfileStore())


def _fail_writes_to(monkeypatch, target):
    real = switch_mod.atomic_write_bytes

    def _write(path, content):
        if path == target:
            raise IOFailureError(f"disk full: {path}")
        return real(path, content)

    monkeypatch.setattr(switch_mod, "atomic_write_bytes", _write)


class TestActivate:
    def test_activate_writes_profile_settings(self, engine, live):
        p = engine.store.create("Work", {"model": "opus"})
        active = engine.activate(p.id)
        assert active.using is True
        assert json.loads(live.read_text()) == {"model": "opus"}
        assert live.read_bytes() == render_settings({"model": "opus"})

    def test_activate_captures_original_once(self, engine, live):
        a = engine.store.create("A", {"model": "a"})
        b = engine.store.create("B", {"model": "b"})
        engine.activate(a.id)
        engine.activate(b.id)
        assert engine.orig_path.read_bytes() == ORIGINAL
        record = engine.backup_record()
        assert record.existed is True

    def test_activate_unknown_profile_touches_nothing(self, engine, live):
        with pytest.raises(NotFoundError):
            engine.activate("missing")
        assert live.read_bytes() == ORIGINAL
        assert engine.backup_record() is None

    def test_only_one_profile_active(self, engine, live):
        a = engine.store.create("A", {"model": "a"})
        b = engine.store.create("B", {"model": "b"})
        engine.activate(a.id)
        engine.activate(b.id)
        assert [p.id for p in engine.store.list() if p.using] == [b.id]
        assert engine.state().condition == SlotCondition.OVERRIDDEN
        assert engine.state().profile_id == b.id

    def test_merge_mode_keeps_unrelated_original_keys(self, home, live):
        cfg = config.load_config()
        cfg["switch"]["apply_mode"] = "merge"
        engine = SwitchEngine(ProfileStore(), cfg=cfg)
        p = engine.store.create("Work", {"model": "opus"})
        engine.activate(p.id)
        assert json.loads(live.read_text()) == {"model": "opus", "theme": "dark"}


class TestRestore:
    def test_round_trip_is_byte_identical(self, engine, live):
        a = engine.store.create("A", {"model": "a"})
        b = engine.store.create("B", {"model": "b"})
        engine.activate(a.id)
        engine.activate(b.id)
        engine.restore_original()
        assert live.read_bytes() == ORIGINAL
        assert engine.store.active() is None
        assert engine.state().condition == SlotCondition.ORIGINAL

    def test_restore_keeps_backup(self, engine, live):
        p = engine.store.create("A", {"model": "a"})
        engine.activate(p.id)
        engine.restore_original()
        assert engine.backup_record() is not None
        assert engine.state().backup_captured is True

    def test_absent_original_is_removed_on_restore(self, engine, claude_dir):
        live = claude_dir / "settings.json"
        p = engine.store.create("A", {"model": "a"})
        engine.activate(p.id)
        assert live.exists()
        engine.restore_original()
        assert not live.exists()

    def test_restore_without_backup_only_clears_flags(self, engine, live):
        p = engine.store.create("A")
        engine.store._mark_active(p.id)
        engine.restore_original()
        assert engine.store.active() is None
        assert live.read_bytes() == ORIGINAL

    def test_external_edit_between_sessions_is_recaptured(self, engine, live):
        p = engine.store.create("A", {"model": "a"})
        engine.activate(p.id)
        engine.restore_original()
        live.write_bytes(b'{"model": "edited"}')
        engine.activate(p.id)
        engine.restore_original()
        assert live.read_bytes() == b'{"model": "edited"}'


class TestProfileLifecycle:
    def test_update_active_profile_reapplies(self, engine, live):
        p = engine.store.create("A", {"model": "a"})
        engine.activate(p.id)
        engine.update_profile(p.id, settings={"model": "z"})
        assert json.loads(live.read_text()) == {"model": "z"}

    def test_update_inactive_profile_leaves_live(self, engine, live):
        p = engine.store.create("A", {"model": "a"})
        engine.update_profile(p.id, settings={"model": "z"})
        assert live.read_bytes() == ORIGINAL

    def test_delete_active_restores_first(self, engine, live):
        p = engine.store.create("A", {"model": "a"})
        engine.activate(p.id)
        engine.delete_profile(p.id)
        assert live.read_bytes() == ORIGINAL
        assert engine.store.list() == []

    def test_store_delete_of_active_conflicts(self, engine, live):
        p = engine.store.create("A", {"model": "a"})
        engine.activate(p.id)
        with pytest.raises(ConflictError):
            engine.store.delete(p.id)


class TestFailures:
    def test_backup_failure_leaves_live_untouched(self, engine, live, monkeypatch):
        _fail_writes_to(monkeypatch, engine.orig_path)
        p = engine.store.create("A", {"model": "a"})
        with pytest.raises(IOFailureError):
            engine.activate(p.id)
        assert live.read_bytes() == ORIGINAL
        assert engine.store.active() is None
        assert engine.pending() is None

    def test_live_write_failure_is_inconsistent(self, engine, live, monkeypatch):
        _fail_writes_to(monkeypatch, engine.live_path)
        p = engine.store.create("A", {"model": "a"})
        with pytest.raises(InconsistentError) as exc:
            engine.activate(p.id)
        assert exc.value.slot == "settings"
        assert exc.value.profile_id == p.id
        assert "recover" in exc.value.guidance

        state = engine.state()
        assert state.condition == SlotCondition.INCONSISTENT
        assert state.pending["op"] == "activate"
        assert engine.orig_path.read_bytes() == ORIGINAL

    def test_recover_replays_activation(self, engine, live, monkeypatch):
        _fail_writes_to(monkeypatch, engine.live_path)
        p = engine.store.create("A", {"model": "a"})
        with pytest.raises(InconsistentError):
            engine.activate(p.id)
        monkeypatch.setattr(switch_mod, "atomic_write_bytes", atomic_write_bytes)

        state = engine.recover()
        assert state.condition == SlotCondition.OVERRIDDEN
        assert json.loads(live.read_text()) == {"model": "a"}

        engine.restore_original()
        assert live.read_bytes() == ORIGINAL

    def test_recover_restores_when_profile_gone(self, engine, live, monkeypatch):
        _fail_writes_to(monkeypatch, engine.live_path)
        p = engine.store.create("A", {"model": "a"})
        with pytest.raises(InconsistentError):
            engine.activate(p.id)
        monkeypatch.setattr(switch_mod, "atomic_write_bytes", atomic_write_bytes)
        engine.store.delete(p.id)

        state = engine.recover()
        assert state.condition == SlotCondition.ORIGINAL
        assert live.read_bytes() == ORIGINAL

    def test_recover_without_journal_is_noop(self, engine, live):
        assert engine.recover().condition == SlotCondition.ORIGINAL
        assert live.read_bytes() == ORIGINAL

class TestConcurrency:
    def test_parallel_activations_then_restore(self, home, live):
        store = ProfileStore()
        ids = [store.create(f"P{i}", {"model": f"m{i}"}).id for i in range(6)]
        start = threading.Barrier(len(ids))

        def activate(profile_id):
            # Separate engines for the same slot share one slot lock.
            engine = SwitchEngine(ProfileStore())
            start.wait(5)
            engine.activate(profile_id)

        with ThreadPoolExecutor(max_workers=len(ids)) as pool:
            for future in [pool.submit(activate, pid) for pid in ids]:
                future.result(timeout=10)

        engine = SwitchEngine(ProfileStore())
        active = engine.store.active()
        assert active is not None
        assert json.loads(live.read_text()) == active.settings
        assert sum(p.using for p in engine.store.list()) == 1
        assert engine.orig_path.read_bytes() == ORIGINAL

        with ThreadPoolExecutor(max_workers=3) as pool:
            for future in [pool.submit(SwitchEngine(ProfileStore()).restore_original) for _ in range(3)]:
                future.result(timeout=10)

        assert live.read_bytes() == ORIGINAL
        assert engine.store.active() is None
        assert engine.state().condition == SlotCondition.ORIGINAL
