"""Filesystem scanners for file-backed Claude Code artifacts.

Each scanner walks the locations of one entity kind and returns raw
per-scope definitions. Nothing is merged here; see scope_resolution.

A missing location contributes nothing. A location that exists but cannot be
read or parsed is reported as a ScanIssue and the scan carries on.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any

import yaml

from . import config
from .errors import CCSwitchError, IOFailureError, MalformedError, ScanCancelledError
from .fileio import read_json_object, read_text
from .types import (
    DISABLED_SUFFIX,
    Definition,
    EntityKind,
    Override,
    ScanIssue,
    ScanResult,
    Scope,
)

logger = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n?---\s*\n?", re.DOTALL)
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@ -]*$")

MEMORY_FILE = "CLAUDE.md"
LOCAL_MEMORY_FILE = "CLAUDE.local.md"
USER_MEMORY_NAME = "global"
LOCAL_MEMORY_SUFFIX = ":local"


class CancelToken:
    """Cooperative cancellation flag checked between scan locations."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise ScanCancelledError if the token was cancelled."""
        if self._event.is_set():
            raise ScanCancelledError("Scan superseded by a newer request")


def _check(token: CancelToken | None) -> None:
    if token is not None:
        token.check()


def validate_name(name: str) -> str:
    """Reject names that would escape their directory."""
    if not name or not _NAME_RE.match(name) or ".." in name or "/" in name or "\\" in name:
        raise ValueError(f"Invalid name: {name!r}")
    return name


def parse_description(text: str) -> str | None:
    """Return the frontmatter ``description`` of a markdown file, if any."""
    m = _FRONTMATTER_RE.match(text)
    if not m:
        return None
    try:
        data = yaml.safe_load(m.group(1))
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict):
        return None
    desc = data.get("description")
    return str(desc).strip() if desc else None


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def _issue(result: ScanResult, path: Path, scope: Scope, err: CCSwitchError) -> None:
    result.issues.append(ScanIssue(path=path, scope=scope, kind=err.kind, message=str(err)))
    if isinstance(err, MalformedError):
        logger.warning("Malformed %s: %s", path, err.detail)
    else:
        logger.warning("Could not read %s: %s", path, err)


# ── Location helpers ──────────────────────────────────────────────────────


def known_projects() -> list[Path]:
    """Project paths Claude Code has seen, from the keys of ~/.claude.json ``projects``."""
    try:
        data = read_json_object(config.get_claude_json_path())
    except CCSwitchError as e:
        logger.warning("Cannot list projects: %s", e)
        return []
    projects = data.get("projects")
    if not isinstance(projects, dict):
        return []
    return [Path(p) for p in projects]


def artifact_base(scope: Scope, project: Path | None = None) -> Path:
    """Directory holding commands/, agents/ and skills/ for a scope."""
    if scope == Scope.USER:
        return config.get_claude_dir()
    if scope == Scope.PROJECT:
        if project is None:
            raise ValueError("Project path is required for project scope")
        return project / ".claude"
    raise ValueError(f"{scope} scope has no commands/agents/skills directory")


def artifact_path(kind: EntityKind, name: str, scope: Scope, project: Path | None = None) -> Path:
    """Enabled-state path where a file-backed entity lives at a scope."""
    if kind == EntityKind.MEMORY:
        return memory_path(scope, project)
    validate_name(name)
    base = artifact_base(scope, project) / kind.dir_name
    if kind == EntityKind.SKILL:
        return base / name / "SKILL.md"
    if kind in (EntityKind.COMMAND, EntityKind.AGENT):
        return base / f"{name}.md"
    raise ValueError(f"{kind} is not a file-backed kind")


def memory_path(scope: Scope, project: Path | None = None) -> Path:
    if scope == Scope.USER:
        return config.get_claude_dir() / MEMORY_FILE
    if project is None:
        raise ValueError("Project path is required for project memory")
    if scope == Scope.PROJECT:
        return project / MEMORY_FILE
    if scope == Scope.PROJECT_LOCAL:
        return project / LOCAL_MEMORY_FILE
    raise ValueError(f"Memory has no {scope} location")


def memory_name(scope: Scope, project: Path | None = None) -> str:
    """Logical name of a memory file.

    ``global`` for the user file; the absolute project path for P/CLAUDE.md
    and ``<path>:local`` for P/CLAUDE.local.md, so projects sharing a folder
    name stay distinct.
    """
    if scope == Scope.USER:
        return USER_MEMORY_NAME
    if project is None:
        raise ValueError("Project path is required for project memory")
    key = os.path.abspath(project)
    return f"{key}{LOCAL_MEMORY_SUFFIX}" if scope == Scope.PROJECT_LOCAL else key


# ── Markdown artifacts (commands, agents, skills) ─────────────────────────


def _read_artifact(
    kind: EntityKind,
    name: str,
    active: Path,
    scope: Scope,
    result: ScanResult,
    plugin: str | None = None,
    project: Path | None = None,
) -> None:
    """Read one artifact in whichever state is on disk and append its definition."""
    inactive = active.with_name(active.name + DISABLED_SUFFIX)
    active_exists = active.is_file()
    inactive_exists = inactive.is_file()
    if not active_exists and not inactive_exists:
        return

    path = active if active_exists else inactive
    defn = Definition(
        kind=kind,
        name=name,
        scope=scope,
        path=path,
        disabled=not active_exists,
        plugin=plugin,
        project=str(project) if project else None,
        mtime=_mtime(path),
    )
    if active_exists and inactive_exists:
        defn.error = f"Both {active.name} and {inactive.name} exist"

    try:
        text = read_text(path)
    except IOFailureError as e:
        defn.error = str(e)
        _issue(result, path, scope, e)
    else:
        defn.content = text
        defn.description = parse_description(text or "")
    result.definitions.append(defn)


def _scan_markdown_dir(
    kind: EntityKind,
    directory: Path,
    scope: Scope,
    result: ScanResult,
    plugin: str | None = None,
    project: Path | None = None,
) -> None:
    """Scan a commands/ or agents/ directory: ``<name>.md`` or ``<name>.md.disabled``."""
    if not directory.is_dir():
        logger.debug("Skipping missing %s", directory)
        return
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        _issue(result, directory, scope, IOFailureError(f"Failed to list {directory}: {e}"))
        return

    seen: set[str] = set()
    for entry in entries:
        filename = entry.name
        if filename.endswith(".md" + DISABLED_SUFFIX):
            name = filename[: -len(".md" + DISABLED_SUFFIX)]
        elif filename.endswith(".md"):
            name = filename[: -len(".md")]
        else:
            continue
        if name in seen or not entry.is_file():
            continue
        seen.add(name)
        _read_artifact(kind, name, directory / f"{name}.md", scope, result, plugin, project)


def _scan_skills_dir(
    directory: Path,
    scope: Scope,
    result: ScanResult,
    plugin: str | None = None,
    project: Path | None = None,
) -> None:
    """Scan a skills/ directory: ``<name>/SKILL.md`` or ``<name>/SKILL.md.disabled``."""
    if not directory.is_dir():
        logger.debug("Skipping missing %s", directory)
        return
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        _issue(result, directory, scope, IOFailureError(f"Failed to list {directory}: {e}"))
        return

    for entry in entries:
        if entry.is_dir():
            _read_artifact(EntityKind.SKILL, entry.name, entry / "SKILL.md", scope, result, plugin, project)


def _scan_location(
    kind: EntityKind,
    base: Path,
    scope: Scope,
    result: ScanResult,
    plugin: str | None = None,
    project: Path | None = None,
) -> None:
    directory = base / kind.dir_name
    if kind == EntityKind.SKILL:
        _scan_skills_dir(directory, scope, result, plugin, project)
    else:
        _scan_markdown_dir(kind, directory, scope, result, plugin, project)


def scan_markdown_kind(
    kind: EntityKind,
    project: Path | None = None,
    token: CancelToken | None = None,
    include_plugins: bool = True,
) -> ScanResult:
    """Scan commands, agents or skills at user, project and plugin scopes."""
    from . import plugins

    result = ScanResult(kind=kind)

    _check(token)
    _scan_location(kind, config.get_claude_dir(), Scope.USER, result)

    if project is not None:
        _check(token)
        _scan_location(kind, project / ".claude", Scope.PROJECT, result, project=project)

    if include_plugins:
        _check(token)
        installs, issues = plugins.applicable_installs(project)
        result.issues.extend(issues)
        for install in installs:
            _check(token)
            _scan_location(kind, install.install_path, install.plugin_scope, result, plugin=install.name)
        result.overrides.extend(plugins.plugin_overrides(project, result))

    return result


def scan_commands(project: Path | None = None, token: CancelToken | None = None) -> ScanResult:
    return scan_markdown_kind(EntityKind.COMMAND, project, token)


def scan_agents(project: Path | None = None, token: CancelToken | None = None) -> ScanResult:
    return scan_markdown_kind(EntityKind.AGENT, project, token)


def scan_skills(project: Path | None = None, token: CancelToken | None = None) -> ScanResult:
    return scan_markdown_kind(EntityKind.SKILL, project, token)


# ── Memory ────────────────────────────────────────────────────────────────


def scan_memory(project: Path | None = None, token: CancelToken | None = None) -> ScanResult:
    """Scan CLAUDE.md files.

    With no project, every project listed in ~/.claude.json is included.
    """
    result = ScanResult(kind=EntityKind.MEMORY)

    _check(token)
    _read_artifact(EntityKind.MEMORY, USER_MEMORY_NAME, memory_path(Scope.USER), Scope.USER, result)

    projects = [project] if project is not None else known_projects()
    for proj in projects:
        _check(token)
        for scope in (Scope.PROJECT, Scope.PROJECT_LOCAL):
            _read_artifact(
                EntityKind.MEMORY,
                memory_name(scope, proj),
                memory_path(scope, proj),
                scope,
                result,
                project=proj,
            )
    return result


# ── Hooks ─────────────────────────────────────────────────────────────────


def settings_path(scope: Scope, project: Path | None = None) -> Path:
    """Claude Code settings file for a scope."""
    if scope == Scope.USER:
        return config.get_user_settings_path()
    if project is None:
        raise ValueError(f"Project path is required for {scope} settings")
    if scope == Scope.PROJECT:
        return project / ".claude" / "settings.json"
    if scope == Scope.PROJECT_LOCAL:
        return project / ".claude" / "settings.local.json"
    raise ValueError(f"No settings file for {scope} scope")


def settings_layers(project: Path | None = None) -> list[tuple[Scope, Path]]:
    """Settings files that apply in a context, highest precedence first."""
    layers: list[tuple[Scope, Path]] = []
    if project is not None:
        layers.append((Scope.PROJECT_LOCAL, settings_path(Scope.PROJECT_LOCAL, project)))
        layers.append((Scope.PROJECT, settings_path(Scope.PROJECT, project)))
    layers.append((Scope.USER, settings_path(Scope.USER)))
    return layers


def read_settings(
    path: Path,
    scope: Scope,
    result: ScanResult | None = None,
) -> dict[str, Any] | None:
    """Read a settings file, reporting problems on ``result`` instead of raising.

    Returns None when the file is missing or unreadable.
    """
    if not path.exists():
        return None
    try:
        return read_json_object(path)
    except CCSwitchError as e:
        if result is not None:
            _issue(result, path, scope, e)
        return None


def scan_hooks(project: Path | None = None, token: CancelToken | None = None) -> ScanResult:
    """Scan ``hooks`` sections of the settings files.

    One definition per (settings file, event). A settings file with
    ``disableAllHooks: true`` marks its own hooks disabled and gates every
    event at lower-precedence scopes.
    """
    result = ScanResult(kind=EntityKind.HOOK)
    kill_switches: list[tuple[Scope, Path]] = []
    for scope, path in settings_layers(project):
        _check(token)
        data = read_settings(path, scope, result)
        if data is None:
            continue
        disable_all = data.get("disableAllHooks") is True
        if disable_all:
            kill_switches.append((scope, path))
        hooks = data.get("hooks")
        if hooks is None:
            continue
        if not isinstance(hooks, dict):
            _issue(result, path, scope, MalformedError(path, "'hooks' must be an object"))
            continue
        for event, entries in hooks.items():
            defn = Definition(
                kind=EntityKind.HOOK,
                name=str(event),
                scope=scope,
                path=path,
                disabled=disable_all,
                config={"event": event, "hooks": entries},
                content=json.dumps(entries, indent=2),
                project=str(project) if project and scope != Scope.USER else None,
                mtime=_mtime(path),
            )
            if not isinstance(entries, list):
                defn.error = f"Hooks for '{event}' must be a list"
            result.definitions.append(defn)

    events = {d.name for d in result.definitions}
    for scope, path in kill_switches:
        for event in sorted(events):
            result.overrides.append(
                Override(scope=scope, enabled=False, name=event, origin=f"disableAllHooks in {path.name}")
            )
    return result
