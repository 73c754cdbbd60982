"""Rename-based enable/disable for file-backed entities.

A disabled artifact keeps its content and gains the ``.disabled`` suffix:

    commands/review.md        <->  commands/review.md.disabled
    skills/pdf/SKILL.md       <->  skills/pdf/SKILL.md.disabled
    CLAUDE.md                 <->  CLAUDE.md.disabled

Claude Code only loads the unsuffixed name, so the marker survives without
any cooperation from the tool.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path

from .errors import ConflictError, IOFailureError, NotControllableError, NotFoundError
from .types import DISABLED_SUFFIX, Definition

logger = logging.getLogger(__name__)

_path_locks: dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = os.path.abspath(path)
    with _registry_lock:
        lock = _path_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _path_locks[key] = lock
        return lock


@contextmanager
def artifact_lock(path: Path):
    """Serialize operations on one artifact; other artifacts are unaffected."""
    lock = _lock_for(path)
    with lock:
        yield


def enabled_path(path: Path) -> Path:
    """Strip the disable suffix from a path, if present."""
    if path.name.endswith(DISABLED_SUFFIX):
        return path.with_name(path.name[: -len(DISABLED_SUFFIX)])
    return path


def disabled_path(path: Path) -> Path:
    """Add the disable suffix to a path (idempotent)."""
    active = enabled_path(path)
    return active.with_name(active.name + DISABLED_SUFFIX)


def check_controllable(definition: Definition) -> None:
    """Raise NotControllableError when the protocol may not rename this definition."""
    if definition.scope.is_plugin:
        raise NotControllableError(
            f"{definition.kind} '{definition.name}' is provided by plugin "
            f"'{definition.plugin}' and cannot be toggled on its own; toggle the plugin instead"
        )
    if not definition.kind.renamable:
        raise NotControllableError(
            f"{definition.kind} '{definition.name}' has no file artifact to rename"
        )


def set_disabled(definition: Definition, disabled: bool) -> Path:
    """Rename a definition's artifact to match ``disabled``.

    Returns the artifact's path after the call. Requesting the state the
    artifact is already in is a no-op.

    Raises:
        NotControllableError: plugin-provided definition or a kind without a file artifact.
        ConflictError: both the enabled and disabled names exist.
        NotFoundError: neither name exists.
        IOFailureError: the rename itself failed.
    """
    check_controllable(definition)

    active = enabled_path(definition.path)
    inactive = disabled_path(definition.path)

    with artifact_lock(active):
        active_exists = active.exists()
        inactive_exists = inactive.exists()

        if active_exists and inactive_exists:
            raise ConflictError(
                f"Both {active.name} and {inactive.name} exist in {active.parent}; "
                "remove one before toggling"
            )
        if not active_exists and not inactive_exists:
            raise NotFoundError(f"No artifact for {definition.kind} '{definition.name}' at {active}")

        if disabled and inactive_exists:
            return inactive
        if not disabled and active_exists:
            return active

        src, dst = (active, inactive) if disabled else (inactive, active)
        try:
            os.rename(src, dst)
        except OSError as e:
            raise IOFailureError(f"Failed to rename {src} -> {dst}: {e}") from e

        logger.info(
            "%s %s '%s' (%s)",
            "Disabled" if disabled else "Enabled",
            definition.kind,
            definition.name,
            definition.scope,
        )
        return dst
