"""Type definitions for ccswitch.

Shared enums and dataclasses used by the scanner, resolver, toggle protocol,
profile store and switch engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

# Suffix appended to an artifact's filename to mark it disabled.
DISABLED_SUFFIX = ".disabled"


# ── Scopes and kinds ──────────────────────────────────────────────────────


class Scope(str, Enum):
    """Layer at which a definition is declared.

    USER:           ~/.claude, ~/.mcp.json, ~/.claude.json root
    PROJECT:        <project>/.claude, <project>/.mcp.json
    PROJECT_LOCAL:  <project>/.claude/settings.local.json, CLAUDE.local.md,
                    ~/.claude.json projects[<project>]
    PLUGIN_USER:    shipped by a plugin installed for the user
    PLUGIN_LOCAL:   shipped by a plugin installed for one project
    """

    USER = "user"
    PROJECT = "project"
    PROJECT_LOCAL = "project-local"
    PLUGIN_USER = "plugin-user"
    PLUGIN_LOCAL = "plugin-local"

    def __str__(self) -> str:
        return self.value

    @property
    def is_plugin(self) -> bool:
        return self in (Scope.PLUGIN_USER, Scope.PLUGIN_LOCAL)

    @property
    def rank(self) -> int:
        """Precedence rank, lower wins.

        Plugin scopes rank alongside the layer they were installed into so
        that gates can be compared against them; they never author content.
        """
        return _SCOPE_RANK[self]

    @classmethod
    def for_plugin_install(cls, install_scope: str) -> "Scope":
        """Map an installed_plugins.json scope ("user"/"local"/"project") to a plugin scope."""
        if install_scope in ("local", "project"):
            return cls.PLUGIN_LOCAL
        return cls.PLUGIN_USER

    @classmethod
    def from_string(cls, value: str) -> "Scope":
        aliases = {"global": cls.USER, "local": cls.PROJECT_LOCAL, "project_local": cls.PROJECT_LOCAL}
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Invalid scope: {value!r}. Must be one of: {valid}")


_SCOPE_RANK = {
    Scope.PROJECT_LOCAL: 0,
    Scope.PROJECT: 1,
    Scope.USER: 2,
    Scope.PLUGIN_LOCAL: 0,
    Scope.PLUGIN_USER: 2,
}

# Authoring precedence, highest first.
AUTHORING_ORDER = (Scope.PROJECT_LOCAL, Scope.PROJECT, Scope.USER)


class EntityKind(str, Enum):
    """Kinds of artifacts Claude Code discovers on disk."""

    COMMAND = "command"
    AGENT = "agent"
    SKILL = "skill"
    MEMORY = "memory"
    HOOK = "hook"
    MCP = "mcp"
    PLUGIN = "plugin"

    def __str__(self) -> str:
        return self.value

    @property
    def dir_name(self) -> str:
        """Directory name under .claude/ or a plugin install (commands, agents, skills)."""
        return self.value + "s"

    @property
    def label(self) -> str:
        """Plural display name."""
        return {EntityKind.MEMORY: "memory files", EntityKind.MCP: "MCP servers"}.get(self, self.value + "s")

    @property
    def renamable(self) -> bool:
        """Whether enable/disable is expressed by renaming a file."""
        return self in (EntityKind.COMMAND, EntityKind.AGENT, EntityKind.SKILL, EntityKind.MEMORY)

    @classmethod
    def from_string(cls, value: str) -> "EntityKind":
        value = value.lower().rstrip("s") if value.lower() not in ("mcp",) else "mcp"
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ValueError(f"Invalid kind: {value!r}. Must be one of: {valid}")


class EffectiveState(str, Enum):
    """Resolved status of an entity after applying scope precedence."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    RUNTIME_DISABLED = "runtime-disabled"

    def __str__(self) -> str:
        return self.value


# ── Scanner output ────────────────────────────────────────────────────────


@dataclass
class Definition:
    """One declaration of a logical entity at one scope."""

    kind: EntityKind
    name: str
    scope: Scope
    path: Path
    exists: bool = True
    disabled: bool = False
    content: str | None = None
    config: dict[str, Any] | None = None
    plugin: str | None = None
    project: str | None = None
    mtime: float = 0.0
    error: str | None = None
    source: str | None = None  # "mcpjson" / "direct" for MCP servers
    description: str | None = None


@dataclass(frozen=True)
class Override:
    """A gate declared by a layer that switches an entity or a whole plugin on/off.

    Exactly one of ``name`` / ``plugin`` is set.
    """

    scope: Scope
    enabled: bool
    name: str | None = None
    plugin: str | None = None
    origin: str = ""


@dataclass
class EffectiveView:
    """Resolved view of one logical entity."""

    kind: EntityKind
    name: str
    state: EffectiveState
    scope: Scope
    authoring: Definition | None
    definitions: list[Definition] = field(default_factory=list)
    controllable: bool = False
    error: str | None = None
    plugin: str | None = None
    reason: str | None = None

    @property
    def enabled(self) -> bool:
        return self.state == EffectiveState.ENABLED

    @property
    def content(self) -> str | None:
        source = self.authoring or (self.definitions[0] if self.definitions else None)
        return source.content if source else None

    def to_dict(self) -> dict[str, Any]:
        driving = self.authoring or (self.definitions[0] if self.definitions else None)
        return {
            "kind": str(self.kind),
            "name": self.name,
            "state": str(self.state),
            "scope": str(self.scope),
            "controllable": self.controllable,
            "plugin": self.plugin,
            "path": str(driving.path) if driving else None,
            "description": driving.description if driving else None,
            "error": self.error,
            "reason": self.reason,
            "scopes": [str(d.scope) for d in self.definitions],
        }


@dataclass
class ScanIssue:
    """A per-location problem encountered while scanning."""

    path: Path
    scope: Scope
    kind: str  # "malformed" | "io_failure"
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"path": str(self.path), "scope": str(self.scope), "kind": self.kind, "message": self.message}


@dataclass
class ScanResult:
    """Raw scanner output for one entity kind."""

    kind: EntityKind
    definitions: list[Definition] = field(default_factory=list)
    overrides: list[Override] = field(default_factory=list)
    issues: list[ScanIssue] = field(default_factory=list)


@dataclass
class ResolvedScan:
    """Resolved views plus the issues collected on the way."""

    kind: EntityKind
    views: list[EffectiveView] = field(default_factory=list)
    issues: list[ScanIssue] = field(default_factory=list)

    def get(self, name: str) -> EffectiveView | None:
        for view in self.views:
            if view.name == name:
                return view
        return None


# ── Plugins and marketplaces ──────────────────────────────────────────────


@dataclass
class PluginPackages:
    """Which artifact kinds a plugin install ships."""

    has_agents: bool = False
    has_skills: bool = False
    has_commands: bool = False
    has_mcp: bool = False


@dataclass
class PluginInstall:
    """One entry from installed_plugins.json."""

    name: str
    scope: str
    install_path: Path
    version: str = ""
    installed_at: str = ""
    project_path: str | None = None
    enabled: bool = True
    packages: PluginPackages = field(default_factory=PluginPackages)

    @property
    def plugin_scope(self) -> Scope:
        return Scope.for_plugin_install(self.scope)


@dataclass
class Marketplace:
    """One entry from known_marketplaces.json."""

    key: str
    source_type: str = ""
    repo: str | None = None
    url: str | None = None
    install_location: str | None = None
    last_updated: str | None = None


@dataclass
class InstallState:
    """Whether a catalog link corresponds to a synced marketplace / installed plugin."""

    link: str
    marketplace: str | None = None
    plugin_installed: bool = False

    @property
    def installed(self) -> bool:
        return self.marketplace is not None


# ── Security templates ────────────────────────────────────────────────────


TEMPLATE_KINDS = (EntityKind.AGENT, EntityKind.COMMAND, EntityKind.SKILL, EntityKind.MCP)


@dataclass
class Template:
    """A bundled template that can be copied into the user scope.

    Agents and commands carry ``content``; skills carry ``files`` (relative
    path -> text); MCP templates carry a ``server`` config.
    """

    kind: EntityKind
    id: str
    title: str
    description: str = ""
    content: str | None = None
    files: dict[str, str] = field(default_factory=dict)
    server: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": str(self.kind),
            "id": self.id,
            "title": self.title,
            "description": self.description,
        }
        if self.kind == EntityKind.SKILL:
            data["files"] = sorted(self.files)
        elif self.kind == EntityKind.MCP:
            data["server"] = self.server
        return data


@dataclass
class InstalledTemplate:
    """Manifest entry for one installed template."""

    kind: EntityKind
    id: str
    target_path: str
    installed_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.kind),
            "id": self.id,
            "target_path": self.target_path,
            "installed_at": self.installed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstalledTemplate":
        return cls(
            kind=EntityKind.from_string(str(data["type"])),
            id=str(data["id"]),
            target_path=str(data.get("target_path", "")),
            installed_at=str(data.get("installed_at", "")),
        )


# ── Profiles ──────────────────────────────────────────────────────────────


@dataclass
class Profile:
    """A named alternative configuration for the live settings slot."""

    id: str
    title: str
    settings: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    using: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "settings": self.settings,
            "using": self.using,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        settings = data.get("settings")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            settings=settings if isinstance(settings, dict) else {},
            created_at=float(data.get("created_at", 0.0) or 0.0),
            using=bool(data.get("using", False)),
        )


@dataclass
class BackupRecord:
    """Commit record for the verbatim original of a live configuration slot."""

    slot: str
    existed: bool
    captured_at: float
    sha256: str | None = None
    path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": self.slot,
            "existed": self.existed,
            "captured_at": self.captured_at,
            "sha256": self.sha256,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupRecord":
        return cls(
            slot=str(data["slot"]),
            existed=bool(data["existed"]),
            captured_at=float(data.get("captured_at", 0.0) or 0.0),
            sha256=data.get("sha256"),
            path=data.get("path"),
        )


class SlotCondition(str, Enum):
    """Condition of a live configuration slot."""

    ORIGINAL = "original"
    OVERRIDDEN = "overridden"
    INCONSISTENT = "inconsistent"

    def __str__(self) -> str:
        return self.value


@dataclass
class SlotState:
    """Snapshot of a live configuration slot."""

    slot: str
    condition: SlotCondition
    profile_id: str | None = None
    backup_captured: bool = False
    pending: dict[str, Any] | None = None
