"""Named configuration profiles persisted in profiles.yaml.

Index layout:

    profiles:
      - id: 3f2a9c1e0b7d
        title: Work
        created_at: 1760000000.0
        using: false
        settings:
          env:
            ANTHROPIC_BASE_URL: https://example.invalid

At most one profile has ``using: true``. Only the switch engine changes it
(via ``_mark_active``); everything else treats it as read-only.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any

from . import config
from .errors import ConflictError, MalformedError, NotFoundError
from .fileio import read_json_object, read_yaml, write_yaml
from .types import Profile

logger = logging.getLogger(__name__)

_store_locks: dict[str, threading.RLock] = {}
_store_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = str(path)
    with _store_locks_guard:
        lock = _store_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _store_locks[key] = lock
        return lock


def new_profile_id() -> str:
    return uuid.uuid4().hex[:12]


def _validate_settings(settings: Any) -> dict[str, Any]:
    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ValueError(f"Profile settings must be a mapping, got {type(settings).__name__}")
    return copy.deepcopy(settings)


def _validate_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValueError("Profile title must be a non-empty string")
    return title.strip()


class ProfileStore:
    """CRUD over the profile index file."""

    def __init__(self, path: Path | None = None):
        self.path = path or config.get_profiles_path()
        self._lock = _lock_for(self.path)

    # ── persistence ──────────────────────────────────────────────────────

    def _load(self) -> list[Profile]:
        data = read_yaml(self.path, default={})
        if not isinstance(data, dict):
            raise MalformedError(self.path, "profile index must be a mapping")
        raw = data.get("profiles") or []
        if not isinstance(raw, list):
            raise MalformedError(self.path, "'profiles' must be a list")
        profiles = []
        for entry in raw:
            if not isinstance(entry, dict) or "id" not in entry:
                raise MalformedError(self.path, f"invalid profile entry: {entry!r}")
            profiles.append(Profile.from_dict(entry))
        return profiles

    def _save(self, profiles: list[Profile]) -> None:
        write_yaml(self.path, {"profiles": [p.to_dict() for p in profiles]})

    @staticmethod
    def _find(profiles: list[Profile], profile_id: str) -> Profile:
        for profile in profiles:
            if profile.id == profile_id:
                return profile
        raise NotFoundError(f"Profile not found: {profile_id}")

    # ── queries ──────────────────────────────────────────────────────────

    def list(self) -> list[Profile]:
        """All profiles, oldest first."""
        with self._lock:
            return sorted(self._load(), key=lambda p: p.created_at)

    def get(self, profile_id: str) -> Profile:
        with self._lock:
            return self._find(self._load(), profile_id)

    def active(self) -> Profile | None:
        """The profile currently applied to the live configuration, if any."""
        with self._lock:
            return next((p for p in self._load() if p.using), None)

    # ── mutations ────────────────────────────────────────────────────────

    def create(
        self,
        title: str,
        settings: dict[str, Any] | None = None,
        profile_id: str | None = None,
    ) -> Profile:
        """Add a profile.

        Raises:
            ConflictError: an explicit ``profile_id`` is already taken.
        """
        title = _validate_title(title)
        settings = _validate_settings(settings)
        with self._lock:
            profiles = self._load()
            if profile_id is not None:
                if any(p.id == profile_id for p in profiles):
                    raise ConflictError(f"Profile already exists: {profile_id}")
            else:
                taken = {p.id for p in profiles}
                profile_id = new_profile_id()
                while profile_id in taken:
                    profile_id = new_profile_id()
            created_at = time.time()
            if profiles:
                # Keep creation order strict even when the clock is coarse.
                created_at = max(created_at, max(p.created_at for p in profiles) + 1e-6)
            profile = Profile(id=profile_id, title=title, settings=settings, created_at=created_at)
            profiles.append(profile)
            self._save(profiles)
        logger.info("Created profile '%s' (%s)", title, profile_id)
        return profile

    def duplicate(self, profile_id: str, title: str | None = None) -> Profile:
        """Copy a profile's settings under a new id. The copy is never active."""
        with self._lock:
            source = self.get(profile_id)
            return self.create(title or f"{source.title} (copy)", source.settings)

    def update(
        self,
        profile_id: str,
        settings: dict[str, Any] | None = None,
        title: str | None = None,
    ) -> Profile:
        """Replace a profile's settings and/or title. ``using`` is untouched."""
        with self._lock:
            profiles = self._load()
            profile = self._find(profiles, profile_id)
            if settings is not None:
                profile.settings = _validate_settings(settings)
            if title is not None:
                profile.title = _validate_title(title)
            self._save(profiles)
        logger.info("Updated profile '%s' (%s)", profile.title, profile_id)
        return profile

    def delete(self, profile_id: str) -> Profile:
        """Remove an inactive profile.

        Raises:
            ConflictError: the profile is active; go through the switch
                engine, which restores the original first.
        """
        with self._lock:
            profiles = self._load()
            profile = self._find(profiles, profile_id)
            if profile.using:
                raise ConflictError(
                    f"Profile '{profile.title}' is active; restore the original configuration before deleting it"
                )
            profiles = [p for p in profiles if p.id != profile_id]
            self._save(profiles)
        logger.info("Deleted profile '%s' (%s)", profile.title, profile_id)
        return profile

    def create_from_live(self, title: str, live_path: Path | None = None) -> Profile:
        """Snapshot the current live settings file into a new profile."""
        path = live_path or config.get_slot_path(config.DEFAULT_SLOT)
        return self.create(title, read_json_object(path))

    def _mark_active(self, profile_id: str | None) -> None:
        """Set ``using`` on exactly one profile (or none). Switch engine only."""
        with self._lock:
            profiles = self._load()
            if profile_id is not None:
                self._find(profiles, profile_id)
            changed = False
            for profile in profiles:
                using = profile.id == profile_id
                if profile.using != using:
                    profile.using = using
                    changed = True
            if changed:
                self._save(profiles)
