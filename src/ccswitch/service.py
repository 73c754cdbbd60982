"""In-process operations consumed by the CLI and the MCP server.

Groups: scans (resolved effective views per kind), mutations (write, delete,
toggle of one definition), profiles (CRUD plus switching), marketplace
lookups and security template installs. Every failure is a typed CCSwitchError.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Callable

from . import config, marketplace, mcp, plugins, scanner, templates
from .errors import IOFailureError, MalformedError, NotControllableError, NotFoundError
from .fileio import atomic_write_text, read_json_object, remove_file, write_json
from .profiles import ProfileStore
from .scope_resolution import resolve
from .switch import SwitchEngine
from .toggle import artifact_lock, disabled_path, set_disabled
from .types import (
    DISABLED_SUFFIX,
    Definition,
    EffectiveView,
    EntityKind,
    InstallState,
    InstalledTemplate,
    Marketplace,
    Profile,
    ResolvedScan,
    ScanResult,
    Scope,
    SlotState,
    Template,
)

logger = logging.getLogger(__name__)

ScanFn = Callable[..., ScanResult]

SCANNERS: dict[EntityKind, ScanFn] = {
    EntityKind.COMMAND: scanner.scan_commands,
    EntityKind.AGENT: scanner.scan_agents,
    EntityKind.SKILL: scanner.scan_skills,
    EntityKind.MEMORY: scanner.scan_memory,
    EntityKind.HOOK: scanner.scan_hooks,
    EntityKind.MCP: mcp.scan_mcp_servers,
    EntityKind.PLUGIN: plugins.scan_plugins,
}

FILE_KINDS = (EntityKind.COMMAND, EntityKind.AGENT, EntityKind.SKILL, EntityKind.MEMORY)


def scan_kind(
    kind: EntityKind,
    project: Path | None = None,
    token: scanner.CancelToken | None = None,
) -> ResolvedScan:
    """Scan one kind and resolve it into effective views."""
    raw = SCANNERS[kind](project, token)
    if token is not None:
        token.check()
    return ResolvedScan(kind=kind, views=resolve(raw.definitions, raw.overrides), issues=raw.issues)


def _parse_structured(content: Any, what: str) -> Any:
    if isinstance(content, str):
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedError(what, str(e)) from e
    return content


class ConfigService:
    """Facade over the scanners, resolver, toggle protocol, profiles and template installer."""

    def __init__(
        self,
        cfg: dict[str, Any] | None = None,
        store: ProfileStore | None = None,
        slot: str = config.DEFAULT_SLOT,
    ):
        self.cfg = cfg if cfg is not None else config.load_config()
        self.store = store or ProfileStore()
        self.engine = SwitchEngine(self.store, slot=slot, cfg=self.cfg)

    # ── scans ────────────────────────────────────────────────────────────

    def scan(self, kind: EntityKind, project: Path | None = None, token=None) -> ResolvedScan:
        return scan_kind(kind, project, token)

    def scan_commands(self, project: Path | None = None) -> ResolvedScan:
        return self.scan(EntityKind.COMMAND, project)

    def scan_agents(self, project: Path | None = None) -> ResolvedScan:
        return self.scan(EntityKind.AGENT, project)

    def scan_skills(self, project: Path | None = None) -> ResolvedScan:
        return self.scan(EntityKind.SKILL, project)

    def scan_memory(self, project: Path | None = None) -> ResolvedScan:
        return self.scan(EntityKind.MEMORY, project)

    def scan_hooks(self, project: Path | None = None) -> ResolvedScan:
        return self.scan(EntityKind.HOOK, project)

    def scan_mcp_servers(self, project: Path | None = None) -> ResolvedScan:
        return self.scan(EntityKind.MCP, project)

    def scan_plugins(self, project: Path | None = None) -> ResolvedScan:
        return self.scan(EntityKind.PLUGIN, project)

    def get(self, kind: EntityKind, name: str, project: Path | None = None) -> EffectiveView:
        view = self.scan(kind, project).get(name)
        if view is None:
            raise NotFoundError(f"{kind} not found: {name}")
        return view

    def _definition(
        self,
        kind: EntityKind,
        name: str,
        scope: Scope | None,
        project: Path | None,
    ) -> Definition:
        """The definition a mutation targets: the one at ``scope``, else the authoring one."""
        view = self.get(kind, name, project)
        if scope is not None:
            for defn in view.definitions:
                if defn.scope == scope:
                    return defn
            raise NotFoundError(f"{kind} '{name}' has no definition at {scope} scope")
        if view.authoring is None:
            raise NotControllableError(
                f"{kind} '{name}' is only provided by plugin '{view.plugin}'; toggle the plugin instead"
            )
        if not view.controllable:
            raise NotControllableError(f"{kind} '{name}' is not controllable: {view.reason}")
        return view.authoring

    # ── mutations ────────────────────────────────────────────────────────

    def write(
        self,
        kind: EntityKind,
        name: str,
        content: Any,
        scope: Scope = Scope.USER,
        project: Path | None = None,
        disabled: bool | None = None,
    ) -> Path:
        """Create or replace the definition of ``name`` at ``scope``.

        File-backed kinds keep their current enabled/disabled state unless
        ``disabled`` is given. Returns the path written.
        """
        if scope.is_plugin or kind == EntityKind.PLUGIN:
            raise NotControllableError(f"Cannot write {kind} definitions at {scope} scope")
        if kind in FILE_KINDS:
            return self._write_file(kind, name, str(content), scope, project, disabled)
        if kind == EntityKind.MCP:
            server = _parse_structured(content, f"MCP server '{name}'")
            path = mcp.write_server(name, server, scope, project)
            if disabled is not None:
                mcp.set_server_enabled(name, not disabled, scope, project)
            return path
        if kind == EntityKind.HOOK:
            return self._write_hook(name, _parse_structured(content, f"hooks for '{name}'"), scope, project)
        raise ValueError(f"Unsupported kind: {kind}")

    def _write_file(
        self,
        kind: EntityKind,
        name: str,
        content: str,
        scope: Scope,
        project: Path | None,
        disabled: bool | None,
    ) -> Path:
        active = scanner.artifact_path(kind, name, scope, project)
        inactive = disabled_path(active)
        with artifact_lock(active):
            if disabled is None:
                disabled = inactive.exists() and not active.exists()
            target, other = (inactive, active) if disabled else (active, inactive)
            atomic_write_text(target, content)
            remove_file(other)
        logger.info("Wrote %s '%s' at %s", kind, name, target)
        return target

    def _write_hook(self, event: str, entries: Any, scope: Scope, project: Path | None) -> Path:
        if not isinstance(entries, list):
            raise ValueError(f"Hooks for '{event}' must be a list")
        path = scanner.settings_path(scope, project)
        with artifact_lock(path):
            settings = read_json_object(path)
            hooks = settings.setdefault("hooks", {})
            if not isinstance(hooks, dict):
                raise MalformedError(path, "'hooks' must be an object")
            hooks[event] = entries
            write_json(path, settings)
        logger.info("Wrote hooks for '%s' in %s", event, path)
        return path

    def delete(
        self,
        kind: EntityKind,
        name: str,
        scope: Scope | None = None,
        project: Path | None = None,
    ) -> list[Path]:
        """Remove one definition of ``name`` (the authoring one unless ``scope`` is given)."""
        if kind == EntityKind.PLUGIN or (scope is not None and scope.is_plugin):
            raise NotControllableError(f"Cannot delete {kind} '{name}' at plugin scope")
        if kind == EntityKind.MCP:
            if scope is None:
                scope = self._definition(kind, name, None, project).scope
            return mcp.delete_server(name, scope, project)

        defn = self._definition(kind, name, scope, project)
        if defn.scope.is_plugin:
            raise NotControllableError(f"{kind} '{name}' at {defn.scope} scope belongs to plugin '{defn.plugin}'")
        if kind == EntityKind.HOOK:
            return [self._delete_hook(name, defn.path)]
        return self._delete_file(kind, defn)

    def _delete_file(self, kind: EntityKind, defn: Definition) -> list[Path]:
        active = defn.path.with_name(defn.path.name.removesuffix(DISABLED_SUFFIX))
        removed: list[Path] = []
        with artifact_lock(active):
            if kind == EntityKind.SKILL:
                skill_dir = active.parent
                if not skill_dir.is_dir():
                    raise NotFoundError(f"Skill directory not found: {skill_dir}")
                try:
                    shutil.rmtree(skill_dir)
                except OSError as e:
                    raise IOFailureError(f"Failed to delete {skill_dir}: {e}") from e
                removed.append(skill_dir)
            else:
                for path in (active, disabled_path(active)):
                    if remove_file(path):
                        removed.append(path)
        if not removed:
            raise NotFoundError(f"No file found for {kind} '{defn.name}'")
        logger.info("Deleted %s '%s' (%s)", kind, defn.name, defn.scope)
        return removed

    def _delete_hook(self, event: str, path: Path) -> Path:
        with artifact_lock(path):
            settings = read_json_object(path)
            hooks = settings.get("hooks")
            if not isinstance(hooks, dict) or event not in hooks:
                raise NotFoundError(f"No hooks for '{event}' in {path}")
            del hooks[event]
            write_json(path, settings)
        logger.info("Deleted hooks for '%s' from %s", event, path)
        return path

    def toggle(
        self,
        kind: EntityKind,
        name: str,
        disabled: bool,
        scope: Scope | None = None,
        project: Path | None = None,
    ) -> Path:
        """Enable or disable one definition. Returns the path that recorded the change."""
        if kind == EntityKind.HOOK:
            raise NotControllableError("Hooks have no disable marker; edit or delete them instead")
        if kind == EntityKind.PLUGIN:
            return self._toggle_plugin(name, disabled, scope, project)
        if kind == EntityKind.MCP:
            if scope is None:
                scope = self._definition(kind, name, None, project).scope
            return mcp.set_server_enabled(name, not disabled, scope, project)
        return set_disabled(self._definition(kind, name, scope, project), disabled)

    def _toggle_plugin(self, name: str, disabled: bool, scope: Scope | None, project: Path | None) -> Path:
        view = self.get(EntityKind.PLUGIN, name, project)
        driving = view.definitions[0]
        if scope is None:
            scope = Scope.PROJECT_LOCAL if driving.scope == Scope.PLUGIN_LOCAL else Scope.USER
        if project is None and driving.project:
            project = Path(driving.project)
        return plugins.set_plugin_enabled(driving.plugin or name, not disabled, scope, project)

    # ── profiles ─────────────────────────────────────────────────────────

    def list_profiles(self) -> list[Profile]:
        return self.store.list()

    def get_profile(self, profile_id: str) -> Profile:
        return self.store.get(profile_id)

    def active_profile(self) -> Profile | None:
        return self.store.active()

    def create_profile(
        self,
        title: str,
        settings: dict[str, Any] | None = None,
        profile_id: str | None = None,
    ) -> Profile:
        return self.store.create(title, settings, profile_id=profile_id)

    def create_profile_from_live(self, title: str) -> Profile:
        return self.store.create_from_live(title, self.engine.live_path)

    def duplicate_profile(self, profile_id: str, title: str | None = None) -> Profile:
        return self.store.duplicate(profile_id, title)

    def update_profile(
        self,
        profile_id: str,
        settings: dict[str, Any] | None = None,
        title: str | None = None,
    ) -> Profile:
        return self.engine.update_profile(profile_id, settings=settings, title=title)

    def delete_profile(self, profile_id: str) -> Profile:
        return self.engine.delete_profile(profile_id)

    def set_active_profile(self, profile_id: str) -> Profile:
        return self.engine.activate(profile_id)

    def restore_original(self) -> None:
        self.engine.restore_original()

    def slot_state(self) -> SlotState:
        return self.engine.state()

    def recover(self) -> SlotState:
        return self.engine.recover()

    # ── marketplace ──────────────────────────────────────────────────────

    def list_known_marketplaces(self) -> list[Marketplace]:
        return marketplace.load_known_marketplaces()

    def resolve_install_state(self, link: str, plugin: str | None = None) -> InstallState:
        return marketplace.resolve_install_state(link, plugin)

    # ── security templates ───────────────────────────────────────────────

    def list_templates(self) -> list[Template]:
        return templates.load_templates()

    def list_installed_templates(self) -> list[InstalledTemplate]:
        return templates.list_installed()

    def install_template(self, kind: str | EntityKind, template_id: str) -> InstalledTemplate:
        return templates.install_template(kind, template_id)

    def uninstall_template(self, kind: str | EntityKind, template_id: str) -> InstalledTemplate:
        return templates.uninstall_template(kind, template_id)
