"""Active-profile switch engine.

Swaps a profile's settings into a live configuration slot (by default
~/.claude/settings.json) and can put the untouched original back.

Per slot, ``<app>/backups/`` holds:

    settings.orig           verbatim bytes of the original live file
    settings.backup.yaml    commit record (existed, sha256, captured_at),
                            written only after the bytes are on disk
    settings.journal.yaml   intent record while a live write is in flight

Activation order: capture backup -> write record -> write journal -> write
live -> mark profile -> drop journal. A crash at any point leaves either the
untouched live file, or a journal that ``recover()`` can replay against a
durable backup.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any

from . import config
from .errors import CCSwitchError, InconsistentError, IOFailureError, MalformedError
from .fileio import atomic_write_bytes, read_yaml, remove_file, write_yaml
from .profiles import ProfileStore
from .types import BackupRecord, Profile, SlotCondition, SlotState

logger = logging.getLogger(__name__)

OP_ACTIVATE = "activate"
OP_RESTORE = "restore"

_slot_locks: dict[str, threading.Lock] = {}
_slot_locks_guard = threading.Lock()


def _slot_lock(live_path: Path) -> threading.Lock:
    key = os.path.abspath(live_path)
    with _slot_locks_guard:
        lock = _slot_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _slot_locks[key] = lock
        return lock


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def render_settings(settings: dict[str, Any]) -> bytes:
    """Serialize settings the way Claude Code writes settings.json."""
    return (json.dumps(settings, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


class SwitchEngine:
    """Serialized activate/restore for one live configuration slot."""

    def __init__(
        self,
        store: ProfileStore | None = None,
        slot: str = config.DEFAULT_SLOT,
        cfg: dict[str, Any] | None = None,
    ):
        self.cfg = cfg if cfg is not None else config.load_config()
        self.store = store or ProfileStore()
        self.slot = slot
        self.live_path = config.get_slot_path(slot, self.cfg)
        self.apply_mode = config.get_apply_mode(self.cfg)
        backups = config.get_backups_dir()
        self.orig_path = backups / f"{slot}.orig"
        self.record_path = backups / f"{slot}.backup.yaml"
        self.journal_path = backups / f"{slot}.journal.yaml"
        self._lock = _slot_lock(self.live_path)

    # ── backup ───────────────────────────────────────────────────────────

    def backup_record(self) -> BackupRecord | None:
        data = read_yaml(self.record_path, default=None)
        if data is None:
            return None
        if not isinstance(data, dict) or "existed" not in data:
            raise MalformedError(self.record_path, "invalid backup record")
        return BackupRecord.from_dict({"slot": self.slot, **data})

    def _capture_backup(self) -> BackupRecord:
        """Copy the live file aside, then commit the record.

        Raises:
            IOFailureError: nothing was changed on the live side.
        """
        try:
            # Drop a stale record first so a crash mid-capture never pairs
            # an old record with new bytes.
            remove_file(self.record_path)
            try:
                raw = self.live_path.read_bytes()
            except FileNotFoundError:
                raw = None
            if raw is None:
                remove_file(self.orig_path)
            else:
                atomic_write_bytes(self.orig_path, raw)
            record = BackupRecord(
                slot=self.slot,
                existed=raw is not None,
                captured_at=time.time(),
                sha256=_sha256(raw) if raw is not None else None,
                path=str(self.orig_path) if raw is not None else None,
            )
            write_yaml(self.record_path, record.to_dict())
        except OSError as e:
            raise IOFailureError(f"Failed to back up {self.live_path}: {e}") from e
        except CCSwitchError as e:
            raise IOFailureError(f"Failed to back up {self.live_path}: {e}") from e
        logger.info("Captured original '%s' configuration from %s", self.slot, self.live_path)
        return record

    def _read_original(self, record: BackupRecord) -> bytes | None:
        """Backup bytes, verified against the record. None when the live file did not exist."""
        if not record.existed:
            return None
        try:
            raw = self.orig_path.read_bytes()
        except OSError as e:
            raise IOFailureError(f"Failed to read backup {self.orig_path}: {e}") from e
        if record.sha256 and _sha256(raw) != record.sha256:
            raise MalformedError(self.orig_path, "backup checksum does not match its record")
        return raw

    # ── journal ──────────────────────────────────────────────────────────

    def pending(self) -> dict[str, Any] | None:
        """The in-flight operation left behind by an interrupted switch, if any."""
        data = read_yaml(self.journal_path, default=None)
        if data is None:
            return None
        if not isinstance(data, dict) or data.get("op") not in (OP_ACTIVATE, OP_RESTORE):
            raise MalformedError(self.journal_path, "invalid switch journal")
        return data

    def _begin(self, op: str, profile_id: str | None) -> None:
        write_yaml(
            self.journal_path,
            {"op": op, "profile_id": profile_id, "slot": self.slot, "started_at": time.time()},
        )

    def _commit(self) -> None:
        try:
            remove_file(self.journal_path)
        except IOFailureError as e:
            logger.warning("Switch finished but journal could not be removed: %s", e)

    # ── rendering ────────────────────────────────────────────────────────

    def _render(self, profile: Profile, record: BackupRecord) -> bytes:
        if self.apply_mode != "merge":
            return render_settings(profile.settings)
        base: dict[str, Any] = {}
        original = self._read_original(record)
        if original is not None and original.strip():
            try:
                parsed = json.loads(original)
            except json.JSONDecodeError as e:
                raise MalformedError(self.orig_path, str(e)) from e
            if isinstance(parsed, dict):
                base = parsed
        merged = copy.deepcopy(base)
        merged.update(copy.deepcopy(profile.settings))
        return render_settings(merged)

    # ── transitions ──────────────────────────────────────────────────────

    def _apply(self, profile: Profile) -> None:
        """Write ``profile`` into the live slot. Caller holds the slot lock."""
        record = self.backup_record()
        in_session = self.store.active() is not None or self.pending() is not None
        if record is None or not in_session:
            record = self._capture_backup()

        content = self._render(profile, record)
        self._begin(OP_ACTIVATE, profile.id)
        try:
            atomic_write_bytes(self.live_path, content)
            self.store._mark_active(profile.id)
        except (CCSwitchError, OSError) as e:
            logger.error("Live '%s' write failed after backup: %s", self.slot, e)
            raise InconsistentError(self.slot, profile.id, e) from e
        self._commit()
        logger.info("Activated profile '%s' (%s) on '%s'", profile.title, profile.id, self.slot)

    def _restore(self) -> None:
        """Put the backup back over the live slot. Caller holds the slot lock."""
        record = self.backup_record()
        if record is None:
            self.store._mark_active(None)
            return

        self._begin(OP_RESTORE, None)
        try:
            original = self._read_original(record)
            if original is None:
                remove_file(self.live_path)
            else:
                atomic_write_bytes(self.live_path, original)
            self.store._mark_active(None)
        except (CCSwitchError, OSError) as e:
            logger.error("Restoring '%s' failed: %s", self.slot, e)
            raise InconsistentError(self.slot, None, e) from e
        self._commit()
        logger.info("Restored original '%s' configuration", self.slot)

    def activate(self, profile_id: str) -> Profile:
        """Make ``profile_id`` the live configuration.

        Raises:
            NotFoundError: unknown profile; nothing was touched.
            IOFailureError: the backup could not be made; live untouched.
            InconsistentError: the live write failed after the backup.
        """
        with self._lock:
            profile = self.store.get(profile_id)
            self._apply(profile)
            return self.store.get(profile_id)

    def restore_original(self) -> None:
        """Return the live slot to the captured original. The backup is kept."""
        with self._lock:
            self._restore()

    def update_profile(
        self,
        profile_id: str,
        settings: dict[str, Any] | None = None,
        title: str | None = None,
    ) -> Profile:
        """Edit a profile; if it is active, re-apply it to the live slot."""
        with self._lock:
            profile = self.store.update(profile_id, settings=settings, title=title)
            if profile.using and settings is not None:
                self._apply(profile)
            return profile

    def delete_profile(self, profile_id: str) -> Profile:
        """Delete a profile, restoring the original first when it is active."""
        with self._lock:
            profile = self.store.get(profile_id)
            if profile.using:
                self._restore()
            return self.store.delete(profile_id)

    def state(self) -> SlotState:
        pending = self.pending()
        record = self.backup_record()
        active = self.store.active()
        if pending is not None:
            condition = SlotCondition.INCONSISTENT
        elif active is not None:
            condition = SlotCondition.OVERRIDDEN
        else:
            condition = SlotCondition.ORIGINAL
        return SlotState(
            slot=self.slot,
            condition=condition,
            profile_id=active.id if active else None,
            backup_captured=record is not None,
            pending=pending,
        )

    def _exists(self, profile_id: str | None) -> bool:
        return profile_id is not None and any(p.id == profile_id for p in self.store.list())

    def recover(self) -> SlotState:
        """Replay an interrupted activate/restore recorded in the journal."""
        with self._lock:
            pending = self.pending()
            if pending is None:
                logger.info("Nothing to recover for '%s'", self.slot)
            elif pending["op"] == OP_ACTIVATE and self._exists(pending.get("profile_id")):
                self._apply(self.store.get(pending["profile_id"]))
            else:
                # Interrupted restore, or the target profile is gone.
                self._restore()
        return self.state()
