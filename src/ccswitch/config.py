"""YAML-based application configuration and Claude Code path helpers.

Two kinds of paths live here:
1. ccswitch's own state: ~/.ccswitch (or $CCSWITCH_HOME) holding
   config.yaml, profiles.yaml, backups/ and security_packs/
2. Claude Code's locations: ~/.claude, ~/.claude.json, ~/.mcp.json

Path helpers are plain functions so tests can monkeypatch them.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "debug": False,
    "log_level": "WARNING",
    "claude_dir": "~/.claude",
    "claude_json": "~/.claude.json",
    "switch": {
        "apply_mode": "replace",
        "slots": {
            "settings": "~/.claude/settings.json",
        },
    },
    "scan": {
        "max_workers": 1,
    },
}

APPLY_MODES = ("replace", "merge")
DEFAULT_SLOT = "settings"


def get_home() -> Path:
    """Get the user's home directory."""
    return Path.home()


def get_app_dir() -> Path:
    """Get the ccswitch state directory."""
    override = os.environ.get("CCSWITCH_HOME")
    if override:
        return Path(os.path.expanduser(override))
    return get_home() / ".ccswitch"


def get_config_path() -> Path:
    """Get the path to the app config file."""
    return get_app_dir() / "config.yaml"


def get_profiles_path() -> Path:
    """Get the path to the profile index."""
    return get_app_dir() / "profiles.yaml"


def get_backups_dir() -> Path:
    """Get the directory holding per-slot backups and journals."""
    return get_app_dir() / "backups"


def get_templates_manifest_path() -> Path:
    """Get the record of installed security templates."""
    return get_app_dir() / "security_packs" / "installed.json"


def _expand(raw: str) -> Path:
    """Expand ~ against get_home() so monkeypatched homes are honoured."""
    if raw == "~" or raw.startswith("~/"):
        return get_home() / raw[2:]
    return Path(os.path.expanduser(raw))


def get_claude_dir(cfg: dict[str, Any] | None = None) -> Path:
    """Get Claude Code's user directory (~/.claude)."""
    if cfg is None:
        cfg = load_config()
    return _expand(cfg.get("claude_dir", DEFAULT_CONFIG["claude_dir"]))


def get_claude_json_path(cfg: dict[str, Any] | None = None) -> Path:
    """Get the path to ~/.claude.json (projects and direct MCP servers)."""
    if cfg is None:
        cfg = load_config()
    return _expand(cfg.get("claude_json", DEFAULT_CONFIG["claude_json"]))


def get_user_settings_path(cfg: dict[str, Any] | None = None) -> Path:
    """Get the path to ~/.claude/settings.json."""
    return get_claude_dir(cfg) / "settings.json"


def get_user_mcp_json_path() -> Path:
    """Get the path to ~/.mcp.json."""
    return get_home() / ".mcp.json"


def get_plugins_dir(cfg: dict[str, Any] | None = None) -> Path:
    """Get Claude Code's plugin directory."""
    return get_claude_dir(cfg) / "plugins"


def get_slot_path(slot: str, cfg: dict[str, Any] | None = None) -> Path:
    """Get the live configuration file backing a switch slot.

    Raises:
        KeyError: If the slot is not configured.
    """
    if cfg is None:
        cfg = load_config()
    slots = cfg.get("switch", {}).get("slots", {})
    if slot not in slots:
        raise KeyError(f"Unknown slot: {slot}")
    if slot == DEFAULT_SLOT and slots[slot] == DEFAULT_CONFIG["switch"]["slots"][DEFAULT_SLOT]:
        return get_user_settings_path(cfg)
    return _expand(slots[slot])


def get_apply_mode(cfg: dict[str, Any] | None = None) -> str:
    """Get the configured profile apply mode, falling back to 'replace'."""
    if cfg is None:
        cfg = load_config()
    mode = cfg.get("switch", {}).get("apply_mode", "replace")
    return mode if mode in APPLY_MODES else "replace"


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config() -> dict[str, Any]:
    """Load the app config (config.yaml) merged over defaults."""
    config_path = get_config_path()
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            return copy.deepcopy(DEFAULT_CONFIG)
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), data)
    except FileNotFoundError:
        return copy.deepcopy(DEFAULT_CONFIG)
    except (yaml.YAMLError, OSError):
        return copy.deepcopy(DEFAULT_CONFIG)


def save_config(cfg: dict[str, Any]) -> None:
    """Save the app config."""
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.dump(cfg, f, default_flow_style=False, sort_keys=False)


def ensure_dirs() -> None:
    """Ensure the app and backup directories exist."""
    get_app_dir().mkdir(parents=True, exist_ok=True)
    get_backups_dir().mkdir(parents=True, exist_ok=True)
