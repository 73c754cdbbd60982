"""MCP action dispatch, testable without FastMCP.

All actions return plain dicts. The MCP server wrapper calls handle_action()
and returns the result directly (FastMCP serializes it).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .errors import CCSwitchError, InconsistentError
from .service import ConfigService
from .types import TEMPLATE_KINDS, EntityKind, Profile, ResolvedScan, Scope

# ── Valid values ─────────────────────────────────────────────────────────

VALID_KINDS = {k.value for k in EntityKind}
VALID_SCOPES = {s.value for s in Scope if not s.is_plugin}

_PROJECT_PARAM = {"type": "string", "required": False,
                  "description": "Project directory (default: user scope only)"}
_SCOPE_PARAM = {"type": "string", "required": False, "enum": sorted(VALID_SCOPES),
                "description": "Scope of the definition to change (default: authoring scope)"}
_TEMPLATE_TYPE_PARAM = {"type": "string", "required": True, "enum": sorted(str(k) for k in TEMPLATE_KINDS)}

# ── Action registry (for describe) ──────────────────────────────────────

ACTION_SCHEMAS: dict[str, dict[str, Any]] = {
    "describe": {
        "description": "Describe available actions and their parameters",
        "params": {
            "action_name": {"type": "string", "required": False,
                            "description": "Action name to describe in detail"},
        },
    },
    "scan": {
        "description": "List effective entities of one kind with state and scope",
        "params": {
            "kind": {"type": "string", "required": True, "enum": sorted(VALID_KINDS)},
            "project": _PROJECT_PARAM,
        },
    },
    "show": {
        "description": "Show one entity's effective view and the content of its driving definition",
        "params": {
            "kind": {"type": "string", "required": True, "enum": sorted(VALID_KINDS)},
            "name": {"type": "string", "required": True},
            "project": _PROJECT_PARAM,
        },
    },
    "write": {
        "description": "Create or replace a definition (markdown text, or JSON for mcp/hook)",
        "params": {
            "kind": {"type": "string", "required": True, "enum": sorted(VALID_KINDS)},
            "name": {"type": "string", "required": True},
            "content": {"type": "string", "required": True,
                        "description": "File content, or a JSON object/list for mcp/hook"},
            "scope": {**_SCOPE_PARAM, "description": "Target scope (default: user)"},
            "project": _PROJECT_PARAM,
            "disabled": {"type": "boolean", "required": False,
                         "description": "Write in the disabled state (default: keep current)"},
        },
    },
    "delete": {
        "description": "Delete one definition of an entity",
        "params": {
            "kind": {"type": "string", "required": True, "enum": sorted(VALID_KINDS)},
            "name": {"type": "string", "required": True},
            "scope": _SCOPE_PARAM,
            "project": _PROJECT_PARAM,
        },
    },
    "enable": {
        "description": "Enable an entity at its authoring scope (or the given scope)",
        "params": {
            "kind": {"type": "string", "required": True, "enum": sorted(VALID_KINDS)},
            "name": {"type": "string", "required": True},
            "scope": _SCOPE_PARAM,
            "project": _PROJECT_PARAM,
        },
    },
    "disable": {
        "description": "Disable an entity at its authoring scope (or the given scope)",
        "params": {
            "kind": {"type": "string", "required": True, "enum": sorted(VALID_KINDS)},
            "name": {"type": "string", "required": True},
            "scope": _SCOPE_PARAM,
            "project": _PROJECT_PARAM,
        },
    },
    "list_profiles": {
        "description": "List configuration profiles, oldest first",
        "params": {},
    },
    "create_profile": {
        "description": "Create a profile from a settings object, or from the live settings",
        "params": {
            "title": {"type": "string", "required": True},
            "settings": {"type": "object", "required": False,
                         "description": "Settings object (omit with from_live)"},
            "from_live": {"type": "boolean", "required": False, "default": False,
                          "description": "Snapshot the current live settings"},
        },
    },
    "update_profile": {
        "description": "Replace a profile's settings and/or title (re-applied if active)",
        "params": {
            "id": {"type": "string", "required": True},
            "settings": {"type": "object", "required": False},
            "title": {"type": "string", "required": False},
        },
    },
    "delete_profile": {
        "description": "Delete a profile (restores the original first if it is active)",
        "params": {
            "id": {"type": "string", "required": True},
        },
    },
    "use_profile": {
        "description": "Make a profile the live configuration",
        "params": {
            "id": {"type": "string", "required": True},
        },
    },
    "restore": {
        "description": "Restore the original live configuration",
        "params": {},
    },
    "status": {
        "description": "Show the live slot condition and active profile",
        "params": {},
    },
    "recover": {
        "description": "Finish an interrupted profile switch",
        "params": {},
    },
    "list_marketplaces": {
        "description": "List locally synced plugin marketplaces",
        "params": {},
    },
    "resolve_install": {
        "description": "Check whether a repository link matches a synced marketplace",
        "params": {
            "link": {"type": "string", "required": True},
            "plugin": {"type": "string", "required": False,
                       "description": "Plugin name to check for an install"},
        },
    },
    "list_templates": {
        "description": "List bundled security templates (agents, commands, skills, MCP servers)",
        "params": {},
    },
    "installed_templates": {
        "description": "List installed security templates and where they were written",
        "params": {},
    },
    "install_template": {
        "description": "Install a security template into the user scope (fails if the target exists)",
        "params": {
            "type": _TEMPLATE_TYPE_PARAM,
            "id": {"type": "string", "required": True},
        },
    },
    "uninstall_template": {
        "description": "Remove an installed security template",
        "params": {
            "type": _TEMPLATE_TYPE_PARAM,
            "id": {"type": "string", "required": True},
        },
    },
}


# ── Validation helpers ───────────────────────────────────────────────────

def _require(data: dict, key: str) -> Any:
    """Get a required param or raise ValueError."""
    val = data.get(key)
    if val is None:
        raise ValueError(f"Missing required parameter: '{key}'")
    return val


def _kind(data: dict) -> EntityKind:
    value = _require(data, "kind")
    try:
        return EntityKind.from_string(value)
    except ValueError:
        raise ValueError(
            f"Parameter 'kind' must be one of: {', '.join(sorted(VALID_KINDS))} (got '{value}')"
        )


def _scope(data: dict, default: Scope | None = None) -> Scope | None:
    value = data.get("scope")
    if not value:
        return default
    return Scope.from_string(value)


def _project(data: dict) -> Path | None:
    value = data.get("project")
    return Path(value).expanduser().resolve() if value else None


def _service() -> ConfigService:
    return ConfigService()


def _profile_dict(profile: Profile) -> dict[str, Any]:
    return profile.to_dict()


def _scan_dict(scan: ResolvedScan) -> dict[str, Any]:
    return {
        "kind": str(scan.kind),
        "items": [view.to_dict() for view in scan.views],
        "issues": [issue.to_dict() for issue in scan.issues],
    }


def _error(e: CCSwitchError) -> dict[str, Any]:
    result: dict[str, Any] = {"error": str(e), "error_kind": e.kind}
    if isinstance(e, InconsistentError):
        result["guidance"] = e.guidance
    return result


# ── Main dispatch ────────────────────────────────────────────────────────

async def handle_action(data: dict[str, Any]) -> dict[str, Any]:
    """Dispatch an MCP action and return a structured result dict."""
    action = data.get("action")
    if not action:
        return {"error": "Missing 'action' parameter"}

    try:
        if action == "describe":
            return _action_describe(data)
        elif action == "scan":
            return _action_scan(data)
        elif action == "show":
            return _action_show(data)
        elif action == "write":
            return _action_write(data)
        elif action == "delete":
            return _action_delete(data)
        elif action == "enable":
            return _action_toggle(data, disabled=False)
        elif action == "disable":
            return _action_toggle(data, disabled=True)
        elif action == "list_profiles":
            return _action_list_profiles(data)
        elif action == "create_profile":
            return _action_create_profile(data)
        elif action == "update_profile":
            return _action_update_profile(data)
        elif action == "delete_profile":
            return _action_delete_profile(data)
        elif action == "use_profile":
            return _action_use_profile(data)
        elif action == "restore":
            return _action_restore(data)
        elif action == "status":
            return _action_status(data)
        elif action == "recover":
            return _action_recover(data)
        elif action == "list_marketplaces":
            return _action_list_marketplaces(data)
        elif action == "resolve_install":
            return _action_resolve_install(data)
        elif action == "list_templates":
            return _action_list_templates(data)
        elif action == "installed_templates":
            return _action_installed_templates(data)
        elif action == "install_template":
            return _action_install_template(data)
        elif action == "uninstall_template":
            return _action_uninstall_template(data)
        else:
            return {
                "error": f"Unknown action: '{action}'",
                "hint": f"Available actions: {', '.join(sorted(ACTION_SCHEMAS.keys()))}",
            }
    except CCSwitchError as e:
        return _error(e)
    except ValueError as e:
        return {"error": str(e)}
    except Exception as e:
        return {"error": f"Internal error: {e}"}


# ── Action implementations ───────────────────────────────────────────────

def _action_describe(data: dict) -> dict:
    action_name = data.get("action_name")
    if action_name:
        schema = ACTION_SCHEMAS.get(action_name)
        if not schema:
            return {
                "error": f"Unknown action: '{action_name}'",
                "hint": f"Available: {', '.join(sorted(ACTION_SCHEMAS.keys()))}",
            }
        return {"action": action_name, **schema}

    return {
        "actions": {
            name: schema["description"]
            for name, schema in ACTION_SCHEMAS.items()
        },
    }


def _action_scan(data: dict) -> dict:
    scan = _service().scan(_kind(data), _project(data))
    return _scan_dict(scan)


def _action_show(data: dict) -> dict:
    view = _service().get(_kind(data), _require(data, "name"), _project(data))
    return {**view.to_dict(), "content": view.content}


def _action_write(data: dict) -> dict:
    kind = _kind(data)
    name = _require(data, "name")
    path = _service().write(
        kind,
        name,
        _require(data, "content"),
        scope=_scope(data, Scope.USER),
        project=_project(data),
        disabled=data.get("disabled"),
    )
    return {"written": str(path), "kind": str(kind), "name": name}


def _action_delete(data: dict) -> dict:
    kind = _kind(data)
    name = _require(data, "name")
    removed = _service().delete(kind, name, scope=_scope(data), project=_project(data))
    return {"deleted": [str(p) for p in removed], "kind": str(kind), "name": name}


def _action_toggle(data: dict, disabled: bool) -> dict:
    kind = _kind(data)
    name = _require(data, "name")
    path = _service().toggle(kind, name, disabled, scope=_scope(data), project=_project(data))
    return {"kind": str(kind), "name": name, "disabled": disabled, "path": str(path)}


def _action_list_profiles(data: dict) -> dict:
    return {"profiles": [_profile_dict(p) for p in _service().list_profiles()]}


def _action_create_profile(data: dict) -> dict:
    title = _require(data, "title")
    svc = _service()
    if data.get("from_live"):
        profile = svc.create_profile_from_live(title)
    else:
        profile = svc.create_profile(title, data.get("settings"))
    return {"created": _profile_dict(profile)}


def _action_update_profile(data: dict) -> dict:
    profile = _service().update_profile(
        _require(data, "id"),
        settings=data.get("settings"),
        title=data.get("title"),
    )
    return {"updated": _profile_dict(profile)}


def _action_delete_profile(data: dict) -> dict:
    profile = _service().delete_profile(_require(data, "id"))
    return {"deleted": profile.id, "title": profile.title}


def _action_use_profile(data: dict) -> dict:
    profile = _service().set_active_profile(_require(data, "id"))
    return {"active": _profile_dict(profile)}


def _action_restore(data: dict) -> dict:
    svc = _service()
    svc.restore_original()
    return {"restored": True, "slot": svc.engine.slot}


def _slot_dict(svc: ConfigService) -> dict:
    state = svc.slot_state()
    return {
        "slot": state.slot,
        "condition": str(state.condition),
        "profile_id": state.profile_id,
        "backup_captured": state.backup_captured,
        "pending": state.pending,
        "live_path": str(svc.engine.live_path),
    }


def _action_status(data: dict) -> dict:
    return _slot_dict(_service())


def _action_recover(data: dict) -> dict:
    svc = _service()
    svc.recover()
    return _slot_dict(svc)


def _action_list_marketplaces(data: dict) -> dict:
    return {
        "marketplaces": [
            {
                "key": m.key,
                "source": m.source_type,
                "repo": m.repo,
                "url": m.url,
                "install_location": m.install_location,
                "last_updated": m.last_updated,
            }
            for m in _service().list_known_marketplaces()
        ],
    }


def _action_resolve_install(data: dict) -> dict:
    state = _service().resolve_install_state(_require(data, "link"), data.get("plugin"))
    return {
        "link": state.link,
        "marketplace": state.marketplace,
        "installed": state.installed,
        "plugin_installed": state.plugin_installed,
    }


def _action_list_templates(data: dict) -> dict:
    return {"templates": [t.to_dict() for t in _service().list_templates()]}


def _action_installed_templates(data: dict) -> dict:
    return {"installed": [i.to_dict() for i in _service().list_installed_templates()]}


def _action_install_template(data: dict) -> dict:
    item = _service().install_template(_require(data, "type"), _require(data, "id"))
    return {"installed": item.to_dict()}


def _action_uninstall_template(data: dict) -> dict:
    item = _service().uninstall_template(_require(data, "type"), _require(data, "id"))
    return {"uninstalled": item.to_dict()}
