"""Installed Claude Code plugins and their enabled state.

Installs come from ~/.claude/plugins/installed_plugins.json:

    {"plugins": {"name@marketplace": [{"scope": "user", "installPath": ...}, ...]}}

Whether a plugin is on is recorded in ``enabledPlugins`` of the settings file
of its install scope (user -> ~/.claude/settings.json, local ->
<project>/.claude/settings.local.json). Absent means enabled.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from . import config
from .errors import CCSwitchError, MalformedError, NotFoundError
from .fileio import read_json, read_json_object, write_json
from .scanner import CancelToken, _check, _issue, read_settings, settings_layers, settings_path
from .toggle import artifact_lock
from .types import (
    Definition,
    EntityKind,
    Override,
    PluginInstall,
    PluginPackages,
    ScanIssue,
    ScanResult,
    Scope,
)

logger = logging.getLogger(__name__)

ENABLED_PLUGINS_KEY = "enabledPlugins"


def installed_plugins_path() -> Path:
    return config.get_plugins_dir() / "installed_plugins.json"


def detect_packages(install_path: Path) -> PluginPackages:
    """Report which artifact kinds a plugin install ships."""
    if not install_path.exists():
        logger.debug("Plugin install path does not exist: %s", install_path)
        return PluginPackages()
    return PluginPackages(
        has_agents=(install_path / "agents").is_dir(),
        has_skills=(install_path / "skills").is_dir(),
        has_commands=(install_path / "commands").is_dir(),
        has_mcp=(install_path / ".mcp.json").is_file(),
    )


def _same_project(a: str | None, b: Path | None) -> bool:
    if a is None or b is None:
        return False
    return os.path.normpath(a) == os.path.normpath(str(b))


def _enabled_map(path: Path | None, cache: dict[Path, dict[str, bool]]) -> dict[str, bool]:
    if path is None:
        return {}
    if path not in cache:
        data = read_settings(path, Scope.USER) or {}
        raw = data.get(ENABLED_PLUGINS_KEY)
        cache[path] = (
            {k: v for k, v in raw.items() if isinstance(v, bool)} if isinstance(raw, dict) else {}
        )
    return cache[path]


def own_settings_path(install_scope: str, project_path: str | None) -> Path | None:
    """Settings file whose ``enabledPlugins`` controls an install."""
    if install_scope in ("local", "project"):
        if not project_path:
            return None
        return settings_path(Scope.PROJECT_LOCAL, Path(project_path))
    return settings_path(Scope.USER)


def load_installs() -> tuple[list[PluginInstall], list[ScanIssue]]:
    """Read every install from installed_plugins.json with its own-scope enabled state."""
    path = installed_plugins_path()
    issues: list[ScanIssue] = []
    try:
        data = read_json(path, default={})
    except CCSwitchError as e:
        issues.append(ScanIssue(path=path, scope=Scope.PLUGIN_USER, kind=e.kind, message=str(e)))
        logger.warning("Could not read %s: %s", path, e)
        return [], issues

    plugins = data.get("plugins") if isinstance(data, dict) else None
    if plugins is None:
        return [], issues
    if not isinstance(plugins, dict):
        err = MalformedError(path, "'plugins' must be an object")
        issues.append(ScanIssue(path=path, scope=Scope.PLUGIN_USER, kind=err.kind, message=str(err)))
        return [], issues

    cache: dict[Path, dict[str, bool]] = {}
    installs: list[PluginInstall] = []
    for name, entries in plugins.items():
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("installPath"):
                continue
            scope = str(entry.get("scope", "user"))
            project_path = entry.get("projectPath")
            own = own_settings_path(scope, project_path)
            installs.append(
                PluginInstall(
                    name=name,
                    scope=scope,
                    install_path=Path(entry["installPath"]),
                    version=str(entry.get("version", "")),
                    installed_at=str(entry.get("installedAt", "")),
                    project_path=project_path,
                    enabled=_enabled_map(own, cache).get(name, True),
                    packages=detect_packages(Path(entry["installPath"])),
                )
            )
    return installs, issues


def applicable_installs(
    project: Path | None = None,
    include_all_local: bool = False,
) -> tuple[list[PluginInstall], list[ScanIssue]]:
    """Installs that apply in a context: user installs plus local installs for ``project``.

    With ``include_all_local`` and no project, local installs of every
    project are included too (the global plugin listing).
    """
    installs, issues = load_installs()
    selected = []
    for install in installs:
        if install.plugin_scope == Scope.PLUGIN_USER:
            selected.append(install)
        elif project is not None and _same_project(install.project_path, project):
            selected.append(install)
        elif project is None and include_all_local:
            selected.append(install)
    return selected, issues


def plugin_overrides(project: Path | None, result: ScanResult | None = None) -> list[Override]:
    """``enabledPlugins`` gates from every settings layer of a context."""
    overrides: list[Override] = []
    for scope, path in settings_layers(project):
        data = read_settings(path, scope, result)
        if not data:
            continue
        raw = data.get(ENABLED_PLUGINS_KEY)
        if not isinstance(raw, dict):
            continue
        for name, enabled in raw.items():
            if isinstance(enabled, bool):
                overrides.append(Override(scope=scope, enabled=enabled, plugin=name, origin=path.name))
    return overrides


def listing_name(install: PluginInstall, project: Path | None = None) -> str:
    """Logical name of an install in a plugin listing.

    Without a project, local installs of every project are listed side by
    side, so each is qualified with its project path: ``tools@mk:/work/app``.
    """
    if project is None and install.plugin_scope == Scope.PLUGIN_LOCAL and install.project_path:
        return f"{install.name}:{os.path.normpath(install.project_path)}"
    return install.name


def scan_plugins(project: Path | None = None, token: CancelToken | None = None) -> ScanResult:
    """Plugin installs as definitions of kind ``plugin``.

    ``Definition.plugin`` always carries the real plugin name, even when the
    logical name is qualified (see listing_name).
    """
    result = ScanResult(kind=EntityKind.PLUGIN)
    _check(token)
    installs, issues = applicable_installs(project, include_all_local=True)
    result.issues.extend(issues)
    for install in installs:
        result.definitions.append(
            Definition(
                kind=EntityKind.PLUGIN,
                name=listing_name(install, project),
                scope=install.plugin_scope,
                path=install.install_path,
                disabled=not install.enabled,
                plugin=install.name,
                project=install.project_path,
                config={
                    "scope": install.scope,
                    "version": install.version,
                    "installed_at": install.installed_at,
                    "packages": {
                        "agents": install.packages.has_agents,
                        "skills": install.packages.has_skills,
                        "commands": install.packages.has_commands,
                        "mcp": install.packages.has_mcp,
                    },
                },
                description=install.version or None,
            )
        )
    _check(token)
    result.overrides.extend(plugin_overrides(project, result))
    return result


def read_plugin_mcp_servers(install: PluginInstall) -> dict[str, dict[str, Any]]:
    """Server configs from a plugin's .mcp.json.

    Accepted shapes:
        {"mcpServers": {"name": {...}}}
        {"mcpServers": [{"name": "x", ...}, ...]}   (unnamed -> <plugin>-<i>)
        {...}                                        (the whole file is one server)

    Raises:
        MalformedError: the file is not valid JSON.
    """
    path = install.install_path / ".mcp.json"
    data = read_json(path, default=None)
    if not isinstance(data, dict):
        return {}

    servers = data.get("mcpServers")
    if isinstance(servers, dict):
        return {name: cfg for name, cfg in servers.items() if isinstance(cfg, dict)}
    if isinstance(servers, list):
        result: dict[str, dict[str, Any]] = {}
        for i, item in enumerate(servers):
            if isinstance(item, dict):
                name = item.get("name") if isinstance(item.get("name"), str) else f"{install.name}-{i}"
                result[name] = item
        return result
    if servers is None:
        return {install.name: data}
    return {}


def set_plugin_enabled(
    name: str,
    enabled: bool,
    scope: Scope = Scope.USER,
    project: Path | None = None,
) -> Path:
    """Record a plugin's enabled flag in ``enabledPlugins`` of a scope's settings file.

    Returns the settings file that was written.
    """
    if scope.is_plugin:
        scope = Scope.PROJECT_LOCAL if scope == Scope.PLUGIN_LOCAL else Scope.USER
    path = settings_path(scope, project)
    installs, _issues = load_installs()
    if not any(i.name == name for i in installs):
        raise NotFoundError(f"Plugin not installed: {name}")

    with artifact_lock(path):
        settings = read_json_object(path)
        current = settings.get(ENABLED_PLUGINS_KEY)
        if current is None:
            current = {}
        if not isinstance(current, dict):
            raise MalformedError(path, f"'{ENABLED_PLUGINS_KEY}' must be an object")
        current[name] = enabled
        settings[ENABLED_PLUGINS_KEY] = current
        write_json(path, settings)

    logger.info("%s plugin '%s' in %s", "Enabled" if enabled else "Disabled", name, path)
    return path


def plugin_issue(result: ScanResult, install: PluginInstall, err: CCSwitchError) -> None:
    _issue(result, install.install_path / ".mcp.json", install.plugin_scope, err)
