"""MCP server definitions across Claude Code's configuration files.

Where servers are declared:

    user            ~/.mcp.json                        (source "mcpjson")
                    ~/.claude.json  mcpServers         (source "direct")
    project         <project>/.mcp.json                (source "mcpjson")
    project-local   ~/.claude.json  projects[<project>].mcpServers  (source "direct")
    plugin-*        <install>/.mcp.json

How they are switched off:

    mcpjson  -> disabledMcpjsonServers / enabledMcpjsonServers in the
                settings file of the server's scope
    direct   -> disabledMcpServers at the root of ~/.claude.json (user)
                or in projects[<project>] (project-local)

Arrays found in higher-precedence layers become Override gates.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from . import config, plugins
from .errors import CCSwitchError, MalformedError, NotControllableError, NotFoundError
from .fileio import read_json_object, write_json
from .scanner import CancelToken, _check, _issue, _mtime, read_settings, settings_path
from .toggle import artifact_lock
from .types import Definition, EntityKind, Override, ScanResult, Scope

logger = logging.getLogger(__name__)

SOURCE_MCPJSON = "mcpjson"
SOURCE_DIRECT = "direct"
SOURCE_PLUGIN = "plugin"

ENABLED_MCPJSON = "enabledMcpjsonServers"
DISABLED_MCPJSON = "disabledMcpjsonServers"
DISABLED_DIRECT = "disabledMcpServers"


def _string_list(data: dict[str, Any], key: str) -> list[str]:
    raw = data.get(key)
    if not isinstance(raw, list):
        return []
    return [v for v in raw if isinstance(v, str)]


def _servers_of(data: dict[str, Any], path: Path) -> dict[str, Any]:
    servers = data.get("mcpServers", {})
    if servers is None:
        return {}
    if not isinstance(servers, dict):
        raise MalformedError(path, "'mcpServers' must be an object")
    return servers


def _project_entry(claude_json: dict[str, Any], project: Path) -> dict[str, Any]:
    projects = claude_json.get("projects")
    if not isinstance(projects, dict):
        return {}
    entry = projects.get(str(project))
    return entry if isinstance(entry, dict) else {}


def mcpjson_path(scope: Scope, project: Path | None = None) -> Path:
    if scope == Scope.USER:
        return config.get_user_mcp_json_path()
    if scope == Scope.PROJECT and project is not None:
        return project / ".mcp.json"
    raise ValueError(f"No .mcp.json for {scope} scope")


# ── Scanning ──────────────────────────────────────────────────────────────


def _add_servers(
    result: ScanResult,
    servers: dict[str, Any],
    scope: Scope,
    path: Path,
    source: str,
    disabled_names: set[str],
    plugin: str | None = None,
    project: Path | None = None,
) -> None:
    mtime = _mtime(path)
    for name, server in servers.items():
        defn = Definition(
            kind=EntityKind.MCP,
            name=name,
            scope=scope,
            path=path,
            disabled=name in disabled_names,
            config=server if isinstance(server, dict) else None,
            plugin=plugin,
            project=str(project) if project else None,
            mtime=mtime,
            source=source,
            description=server.get("command") or server.get("url") if isinstance(server, dict) else None,
        )
        if not isinstance(server, dict):
            defn.error = f"Server '{name}' must be an object"
        result.definitions.append(defn)


def _read_file_servers(
    result: ScanResult,
    path: Path,
    scope: Scope,
) -> dict[str, Any] | None:
    if not path.exists():
        logger.debug("Skipping missing %s", path)
        return None
    try:
        return _servers_of(read_json_object(path), path)
    except CCSwitchError as e:
        _issue(result, path, scope, e)
        return None


def _mcpjson_disabled(settings: dict[str, Any] | None) -> set[str]:
    if not settings:
        return set()
    return set(_string_list(settings, DISABLED_MCPJSON))


def scan_mcp_servers(project: Path | None = None, token: CancelToken | None = None) -> ScanResult:
    """Scan MCP servers at every scope applicable to ``project``."""
    result = ScanResult(kind=EntityKind.MCP)

    user_settings_file = settings_path(Scope.USER)
    user_settings = read_settings(user_settings_file, Scope.USER, result)

    _check(token)
    user_mcp = config.get_user_mcp_json_path()
    servers = _read_file_servers(result, user_mcp, Scope.USER)
    if servers:
        _add_servers(result, servers, Scope.USER, user_mcp, SOURCE_MCPJSON, _mcpjson_disabled(user_settings))

    _check(token)
    claude_json_path = config.get_claude_json_path()
    claude_json: dict[str, Any] = {}
    if claude_json_path.exists():
        try:
            claude_json = read_json_object(claude_json_path)
        except CCSwitchError as e:
            _issue(result, claude_json_path, Scope.USER, e)
            claude_json = {}
    try:
        direct = _servers_of(claude_json, claude_json_path)
    except MalformedError as e:
        _issue(result, claude_json_path, Scope.USER, e)
        direct = {}
    _add_servers(
        result, direct, Scope.USER, claude_json_path, SOURCE_DIRECT,
        set(_string_list(claude_json, DISABLED_DIRECT)),
    )

    if project is not None:
        _check(token)
        project_settings = read_settings(settings_path(Scope.PROJECT, project), Scope.PROJECT, result)
        project_mcp = mcpjson_path(Scope.PROJECT, project)
        servers = _read_file_servers(result, project_mcp, Scope.PROJECT)
        if servers:
            _add_servers(
                result, servers, Scope.PROJECT, project_mcp, SOURCE_MCPJSON,
                _mcpjson_disabled(project_settings), project=project,
            )

        _check(token)
        entry = _project_entry(claude_json, project)
        try:
            local = _servers_of(entry, claude_json_path)
        except MalformedError as e:
            _issue(result, claude_json_path, Scope.PROJECT_LOCAL, e)
            local = {}
        _add_servers(
            result, local, Scope.PROJECT_LOCAL, claude_json_path, SOURCE_DIRECT,
            set(_string_list(entry, DISABLED_DIRECT)), project=project,
        )
        result.overrides.extend(_project_overrides(project, entry, project_settings, result))

    _check(token)
    installs, issues = plugins.applicable_installs(project)
    result.issues.extend(issues)
    for install in installs:
        _check(token)
        if not install.packages.has_mcp:
            continue
        try:
            servers = plugins.read_plugin_mcp_servers(install)
        except CCSwitchError as e:
            plugins.plugin_issue(result, install, e)
            continue
        _add_servers(
            result, servers, install.plugin_scope, install.install_path / ".mcp.json",
            SOURCE_PLUGIN, set(), plugin=install.name,
        )

    result.overrides.extend(plugins.plugin_overrides(project))
    return result


def _array_overrides(settings: dict[str, Any], scope: Scope, origin: str) -> list[Override]:
    overrides: list[Override] = []
    disabled = set(_string_list(settings, DISABLED_MCPJSON))
    for name in _string_list(settings, ENABLED_MCPJSON):
        if name not in disabled:
            overrides.append(Override(scope=scope, enabled=True, name=name, origin=origin))
    for name in sorted(disabled):
        overrides.append(Override(scope=scope, enabled=False, name=name, origin=origin))
    return overrides


def _project_overrides(
    project: Path,
    entry: dict[str, Any],
    project_settings: dict[str, Any] | None,
    result: ScanResult,
) -> list[Override]:
    overrides = _array_overrides(project_settings or {}, Scope.PROJECT, "settings.json")
    local_path = settings_path(Scope.PROJECT_LOCAL, project)
    local_settings = read_settings(local_path, Scope.PROJECT_LOCAL, result)
    overrides.extend(_array_overrides(local_settings or {}, Scope.PROJECT_LOCAL, local_path.name))
    for name in _string_list(entry, DISABLED_DIRECT):
        overrides.append(
            Override(scope=Scope.PROJECT_LOCAL, enabled=False, name=name, origin=f".claude.json projects[{project}]")
        )
    return overrides


def find_definitions(name: str, project: Path | None = None) -> list[Definition]:
    return [d for d in scan_mcp_servers(project).definitions if d.name == name]


# ── Toggling ──────────────────────────────────────────────────────────────


def _update_list(values: list[Any], name: str, present: bool) -> list[Any]:
    kept = [v for v in values if v != name]
    if present:
        kept.append(name)
    return kept


def _set_mcpjson_flag(path: Path, name: str, enabled: bool) -> None:
    with artifact_lock(path):
        settings = read_json_object(path)
        for key in (ENABLED_MCPJSON, DISABLED_MCPJSON):
            if key in settings and not isinstance(settings[key], list):
                raise MalformedError(path, f"'{key}' must be an array")
        settings[ENABLED_MCPJSON] = _update_list(settings.get(ENABLED_MCPJSON, []), name, enabled)
        settings[DISABLED_MCPJSON] = _update_list(settings.get(DISABLED_MCPJSON, []), name, not enabled)
        write_json(path, settings)


def _set_direct_flag(name: str, enabled: bool, project: Path | None) -> Path:
    path = config.get_claude_json_path()
    with artifact_lock(path):
        data = read_json_object(path)
        target = data
        if project is not None:
            projects = data.setdefault("projects", {})
            if not isinstance(projects, dict):
                raise MalformedError(path, "'projects' must be an object")
            target = projects.setdefault(str(project), {})
            if not isinstance(target, dict):
                raise MalformedError(path, f"projects[{project}] must be an object")
        current = target.get(DISABLED_DIRECT, [])
        if not isinstance(current, list):
            raise MalformedError(path, f"'{DISABLED_DIRECT}' must be an array")
        target[DISABLED_DIRECT] = _update_list(current, name, not enabled)
        write_json(path, data)
    return path


def set_server_enabled(
    name: str,
    enabled: bool,
    scope: Scope = Scope.USER,
    project: Path | None = None,
) -> Path:
    """Switch an MCP server on or off at ``scope``.

    At the server's own scope this flips its disable marker; at a higher
    scope it records a gate over an inherited server. Returns the file written.
    """
    if scope.is_plugin:
        raise NotControllableError(
            f"MCP server '{name}' comes from a plugin; toggle the plugin instead"
        )
    if scope != Scope.USER and project is None:
        raise ValueError(f"Project path is required for {scope} scope")

    defs = [d for d in find_definitions(name, project) if d.exists]
    if not defs:
        raise NotFoundError(f"MCP server not found: {name}")

    own = next((d for d in defs if d.scope == scope), None)
    if own is None:
        inherited = [d for d in defs if d.scope.rank > scope.rank]
        if not inherited:
            if all(d.scope.is_plugin for d in defs):
                raise NotControllableError(
                    f"MCP server '{name}' comes from a plugin; toggle the plugin instead"
                )
            raise NotFoundError(f"MCP server '{name}' is not defined at or below {scope} scope")
        direct = scope == Scope.PROJECT_LOCAL and any(d.source == SOURCE_DIRECT for d in inherited)
    else:
        direct = own.source == SOURCE_DIRECT

    if direct:
        path = _set_direct_flag(name, enabled, project if scope == Scope.PROJECT_LOCAL else None)
    else:
        path = settings_path(scope, project)
        _set_mcpjson_flag(path, name, enabled)

    logger.info("%s MCP server '%s' at %s scope (%s)", "Enabled" if enabled else "Disabled", name, scope, path)
    return path


# ── Writing and deleting ──────────────────────────────────────────────────


def server_file(scope: Scope, project: Path | None = None) -> tuple[Path, tuple[str, ...]]:
    """File and key path where new servers are written for a scope."""
    if scope == Scope.USER:
        return config.get_user_mcp_json_path(), ("mcpServers",)
    if project is None:
        raise ValueError(f"Project path is required for {scope} scope")
    if scope == Scope.PROJECT:
        return project / ".mcp.json", ("mcpServers",)
    if scope == Scope.PROJECT_LOCAL:
        return config.get_claude_json_path(), ("projects", str(project), "mcpServers")
    raise NotControllableError(f"Cannot write MCP servers at {scope} scope")


def _descend(data: dict[str, Any], keys: tuple[str, ...], path: Path, create: bool) -> dict[str, Any] | None:
    node = data
    for key in keys:
        child = node.get(key)
        if child is None:
            if not create:
                return None
            child = {}
            node[key] = child
        if not isinstance(child, dict):
            raise MalformedError(path, f"'{key}' must be an object")
        node = child
    return node


def write_server(
    name: str,
    server: dict[str, Any],
    scope: Scope = Scope.USER,
    project: Path | None = None,
) -> Path:
    """Create or replace a server definition at a scope. Other servers are preserved."""
    if not isinstance(server, dict):
        raise ValueError("MCP server config must be an object")
    path, keys = server_file(scope, project)
    with artifact_lock(path):
        data = read_json_object(path)
        servers = _descend(data, keys, path, create=True)
        servers[name] = server
        write_json(path, data)
    logger.info("Wrote MCP server '%s' to %s", name, path)
    return path


def _remove_from(path: Path, keys: tuple[str, ...], name: str, prune_empty: bool) -> bool:
    if not path.exists():
        return False
    with artifact_lock(path):
        data = read_json_object(path)
        servers = _descend(data, keys, path, create=False)
        if servers is None or name not in servers:
            return False
        del servers[name]
        if prune_empty and not servers and len(keys) == 1:
            data.pop(keys[0], None)
        write_json(path, data)
    return True


def _forget_flags(path: Path, name: str) -> None:
    if not path.exists():
        return
    with artifact_lock(path):
        settings = read_json_object(path)
        changed = False
        for key in (ENABLED_MCPJSON, DISABLED_MCPJSON):
            values = settings.get(key)
            if isinstance(values, list) and name in values:
                settings[key] = [v for v in values if v != name]
                changed = True
        if changed:
            write_json(path, settings)


def delete_server(name: str, scope: Scope = Scope.USER, project: Path | None = None) -> list[Path]:
    """Remove a server definition at a scope and forget its enable/disable flags there."""
    removed: list[Path] = []
    path, keys = server_file(scope, project)
    if _remove_from(path, keys, name, prune_empty=True):
        removed.append(path)
    if scope == Scope.USER:
        direct = config.get_claude_json_path()
        if _remove_from(direct, ("mcpServers",), name, prune_empty=False):
            removed.append(direct)
    if not removed:
        raise NotFoundError(f"MCP server '{name}' not found at {scope} scope")

    if scope in (Scope.USER, Scope.PROJECT):
        _forget_flags(settings_path(scope, project), name)
    logger.info("Deleted MCP server '%s' from %s", name, ", ".join(str(p) for p in removed))
    return removed
