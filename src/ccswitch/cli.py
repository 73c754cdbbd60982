"""CLI interface for ccswitch.

Inspect and toggle Claude Code extension artifacts across scopes, and
switch the live settings file between named profiles. Bundled security
templates can be installed into the user scope.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__, config
from .errors import CCSwitchError, InconsistentError
from .types import TEMPLATE_KINDS, EffectiveState, EntityKind, Scope

_console: Console | None = None

_STATE_STYLE = {
    EffectiveState.ENABLED: "green",
    EffectiveState.DISABLED: "dim",
    EffectiveState.RUNTIME_DISABLED: "yellow",
}


def _get_console() -> Console:
    global _console
    if _console is None:
        _console = Console(highlight=False)
    return _console


def _print(msg: str = "") -> None:
    """Print with Rich markup support."""
    _get_console().print(msg)


def _setup_logging(debug: bool = False) -> None:
    cfg = config.load_config()
    if debug or cfg.get("debug"):
        level = logging.DEBUG
    else:
        level = getattr(logging, str(cfg.get("log_level", "WARNING")).upper(), logging.WARNING)
    pkg_logger = logging.getLogger("ccswitch")
    pkg_logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in pkg_logger.handlers):
        pkg_logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False, markup=False))


def _service():
    from .service import ConfigService
    return ConfigService()


def _project(args) -> Path | None:
    value = getattr(args, "project", None)
    return Path(value).expanduser().resolve() if value else None


def _scope(args) -> Scope | None:
    value = getattr(args, "scope", None)
    return Scope.from_string(value) if value else None


def _read_settings_arg(args) -> dict | None:
    """Settings from --file (JSON) or --json, if given."""
    raw = None
    if getattr(args, "file", None):
        raw = Path(args.file).expanduser().read_text(encoding="utf-8")
    elif getattr(args, "json", None):
        raw = args.json
    if raw is None:
        return None
    try:
        settings = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid settings JSON: {e}") from e
    if not isinstance(settings, dict):
        raise ValueError("Settings must be a JSON object")
    return settings


# ── entities ─────────────────────────────────────────────────────────────


def cmd_scan(args):
    """List the effective entities of one kind."""
    kind = EntityKind.from_string(args.kind)
    result = _service().scan(kind, _project(args))

    if args.json:
        payload = {
            "kind": str(kind),
            "items": [v.to_dict() for v in result.views],
            "issues": [i.to_dict() for i in result.issues],
        }
        print(json.dumps(payload, indent=2))
        return

    if not result.views:
        _print(f"[dim]No {kind.label} found.[/dim]")
    else:
        table = Table(title=f"{kind.label} ({len(result.views)})")
        table.add_column("Name")
        table.add_column("State")
        table.add_column("Scope")
        table.add_column("Plugin")
        table.add_column("Note")
        for view in result.views:
            style = _STATE_STYLE[view.state]
            note = view.error or view.reason or ""
            if not view.controllable and not note:
                note = "read-only"
            table.add_row(view.name, f"[{style}]{view.state}[/{style}]", str(view.scope), view.plugin or "", note)
        _get_console().print(table)

    for issue in result.issues:
        _print(f"[yellow]warning:[/yellow] {issue.path}: {issue.message}")


def cmd_show(args):
    """Show one entity and the content of its driving definition."""
    kind = EntityKind.from_string(args.kind)
    view = _service().get(kind, args.name, _project(args))
    _print(f"[bold]{view.name}[/bold] ({kind})")
    _print(f"  State: {view.state}")
    _print(f"  Scope: {view.scope}")
    if view.plugin:
        _print(f"  Plugin: {view.plugin}")
    if view.reason:
        _print(f"  Reason: {view.reason}")
    if view.error:
        _print(f"  [red]Error: {view.error}[/red]")
    for defn in view.definitions:
        marker = " (disabled)" if defn.disabled else ""
        _print(f"  - {defn.scope}: {defn.path}{marker}")
    if view.content:
        _print()
        _get_console().print(view.content, markup=False)


def cmd_toggle(args):
    """Enable or disable one entity."""
    kind = EntityKind.from_string(args.kind)
    path = _service().toggle(kind, args.name, disabled=not args.enabled, scope=_scope(args), project=_project(args))
    verb = "Enabled" if args.enabled else "Disabled"
    _print(f"{verb} {kind} '{args.name}' ({path})")


def cmd_write(args):
    """Create or replace a definition from a file or stdin."""
    kind = EntityKind.from_string(args.kind)
    if args.path:
        content = Path(args.path).expanduser().read_text(encoding="utf-8")
    else:
        content = sys.stdin.read()
    disabled = True if args.disabled else None
    path = _service().write(
        kind, args.name, content, scope=_scope(args) or Scope.USER, project=_project(args), disabled=disabled
    )
    _print(f"Wrote {kind} '{args.name}' to {path}")


def cmd_delete(args):
    """Delete one definition of an entity."""
    kind = EntityKind.from_string(args.kind)
    removed = _service().delete(kind, args.name, scope=_scope(args), project=_project(args))
    for path in removed:
        _print(f"Removed {path}")


# ── profiles ─────────────────────────────────────────────────────────────


def cmd_profile_list(args):
    """List profiles."""
    profiles = _service().list_profiles()
    if not profiles:
        _print("[dim]No profiles. Create one with: ccswitch profile create <title>[/dim]")
        return
    table = Table()
    table.add_column("")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Keys")
    for p in profiles:
        table.add_row("*" if p.using else "", p.id, p.title, ", ".join(sorted(p.settings)) or "-")
    _get_console().print(table)


def cmd_profile_show(args):
    """Show a profile's settings."""
    profile = _service().get_profile(args.id)
    active = " [green](active)[/green]" if profile.using else ""
    _print(f"[bold]{profile.title}[/bold] ({profile.id}){active}")
    print(json.dumps(profile.settings, indent=2, ensure_ascii=False))


def cmd_profile_create(args):
    """Create a profile."""
    svc = _service()
    if args.from_live:
        profile = svc.create_profile_from_live(args.title)
    else:
        profile = svc.create_profile(args.title, _read_settings_arg(args), profile_id=args.id)
    _print(f"Created profile '{profile.title}' ({profile.id})")


def cmd_profile_duplicate(args):
    """Duplicate a profile."""
    profile = _service().duplicate_profile(args.id, args.title)
    _print(f"Created profile '{profile.title}' ({profile.id})")


def cmd_profile_update(args):
    """Update a profile's title and/or settings."""
    settings = _read_settings_arg(args)
    if settings is None and args.title is None:
        raise ValueError("Nothing to update: pass --title, --json or --file")
    profile = _service().update_profile(args.id, settings=settings, title=args.title)
    suffix = " and re-applied" if profile.using and settings is not None else ""
    _print(f"Updated profile '{profile.title}'{suffix}")


def cmd_profile_delete(args):
    """Delete a profile."""
    profile = _service().delete_profile(args.id)
    _print(f"Deleted profile '{profile.title}'")


def cmd_profile_use(args):
    """Activate a profile."""
    profile = _service().set_active_profile(args.id)
    _print(f"[green]Active:[/green] {profile.title} ({profile.id})")


def cmd_profile_restore(args):
    """Restore the original live configuration."""
    _service().restore_original()
    _print("Restored original configuration.")


def _print_state(svc) -> None:
    state = svc.slot_state()
    _print(f"Slot: {state.slot} ({svc.engine.live_path})")
    _print(f"Condition: {state.condition}")
    if state.profile_id:
        profile = svc.get_profile(state.profile_id)
        _print(f"Active profile: {profile.title} ({profile.id})")
    _print(f"Original captured: {'yes' if state.backup_captured else 'no'}")
    if state.pending:
        _print(f"[yellow]Interrupted {state.pending.get('op')}; run: ccswitch profile recover[/yellow]")


def cmd_profile_status(args):
    """Show the live slot state."""
    _print_state(_service())


def cmd_profile_recover(args):
    """Finish an interrupted switch."""
    svc = _service()
    svc.recover()
    _print_state(svc)


# ── marketplaces ─────────────────────────────────────────────────────────


def cmd_marketplace_list(args):
    """List locally synced marketplaces."""
    known = _service().list_known_marketplaces()
    if not known:
        _print("[dim]No marketplaces synced.[/dim]")
        return
    table = Table()
    table.add_column("Key")
    table.add_column("Source")
    table.add_column("Repository")
    for m in known:
        table.add_row(m.key, m.source_type, m.repo or m.url or "")
    _get_console().print(table)


def cmd_marketplace_resolve(args):
    """Check whether a link matches a synced marketplace."""
    state = _service().resolve_install_state(args.link, args.plugin)
    if state.marketplace is None:
        _print(f"Not installed: {args.link}")
        return
    _print(f"Marketplace: {state.marketplace}")
    if args.plugin:
        _print(f"Plugin {args.plugin}: {'installed' if state.plugin_installed else 'not installed'}")


# ── security templates ───────────────────────────────────────────────────


def cmd_template_list(args):
    """List bundled security templates."""
    svc = _service()
    installed = {(i.kind, i.id) for i in svc.list_installed_templates()}
    table = Table(title="Security templates")
    table.add_column("Type")
    table.add_column("Id")
    table.add_column("Description")
    table.add_column("Installed")
    for t in svc.list_templates():
        mark = "[green]yes[/green]" if (t.kind, t.id) in installed else ""
        table.add_row(str(t.kind), t.id, t.description, mark)
    _get_console().print(table)


def cmd_template_installed(args):
    """List installed security templates."""
    items = _service().list_installed_templates()
    if not items:
        _print("[dim]No templates installed.[/dim]")
        return
    for item in items:
        _print(f"{item.kind} {item.id} -> {item.target_path} [dim]({item.installed_at})[/dim]")


def cmd_template_install(args):
    """Install a security template into the user scope."""
    item = _service().install_template(args.type, args.id)
    _print(f"[green]Installed[/green] {item.kind} {item.id} -> {item.target_path}")


def cmd_template_uninstall(args):
    """Remove an installed security template."""
    item = _service().uninstall_template(args.type, args.id)
    _print(f"Uninstalled {item.kind} {item.id}")


def cmd_mcp(args):
    """Run the MCP server on stdio."""
    from .mcp_server import main as mcp_main
    mcp_main()


# ── parser ───────────────────────────────────────────────────────────────


def _add_target_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("kind", choices=[k.value for k in EntityKind], help="Entity kind")
    p.add_argument("name", help="Entity name")
    p.add_argument("--scope", choices=[s.value for s in Scope if not s.is_plugin],
                   help="Definition scope (default: authoring scope)")
    p.add_argument("--project", help="Project directory")


def _add_settings_args(p: argparse.ArgumentParser) -> None:
    group = p.add_mutually_exclusive_group()
    group.add_argument("--json", help="Settings as a JSON object")
    group.add_argument("--file", help="Read settings from a JSON file")


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ccswitch",
        description="ccswitch: Claude Code profiles and extension manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"ccswitch {__version__}")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")

    # scan
    scan_p = subparsers.add_parser("scan", help="List effective entities of one kind")
    scan_p.add_argument("kind", choices=[k.value for k in EntityKind], help="Entity kind")
    scan_p.add_argument("--project", help="Project directory")
    scan_p.add_argument("--json", action="store_true", help="Machine-readable output")
    scan_p.set_defaults(func=cmd_scan)

    # show
    show_p = subparsers.add_parser("show", help="Show one entity")
    show_p.add_argument("kind", choices=[k.value for k in EntityKind], help="Entity kind")
    show_p.add_argument("name", help="Entity name")
    show_p.add_argument("--project", help="Project directory")
    show_p.set_defaults(func=cmd_show)

    # toggle
    toggle_p = subparsers.add_parser("toggle", help="Enable or disable an entity")
    _add_target_args(toggle_p)
    state = toggle_p.add_mutually_exclusive_group(required=True)
    state.add_argument("--on", dest="enabled", action="store_true", help="Enable")
    state.add_argument("--off", dest="enabled", action="store_false", help="Disable")
    toggle_p.set_defaults(func=cmd_toggle)

    # write
    write_p = subparsers.add_parser("write", help="Create or replace a definition")
    _add_target_args(write_p)
    write_p.add_argument("path", nargs="?", help="Content file (reads stdin if omitted)")
    write_p.add_argument("--disabled", action="store_true", help="Write in the disabled state")
    write_p.set_defaults(func=cmd_write)

    # delete
    delete_p = subparsers.add_parser("delete", help="Delete a definition")
    _add_target_args(delete_p)
    delete_p.set_defaults(func=cmd_delete)

    # profile
    profile_p = subparsers.add_parser("profile", help="Profile management")
    profile_sub = profile_p.add_subparsers(dest="profile_cmd")

    profile_list_p = profile_sub.add_parser("list", help="List profiles")
    profile_list_p.set_defaults(func=cmd_profile_list)

    profile_show_p = profile_sub.add_parser("show", help="Show profile settings")
    profile_show_p.add_argument("id", help="Profile id")
    profile_show_p.set_defaults(func=cmd_profile_show)

    profile_create_p = profile_sub.add_parser("create", help="Create a profile")
    profile_create_p.add_argument("title", help="Profile title")
    profile_create_p.add_argument("--id", help="Explicit profile id")
    profile_create_p.add_argument("--from-live", action="store_true",
                                  help="Snapshot the current live settings")
    _add_settings_args(profile_create_p)
    profile_create_p.set_defaults(func=cmd_profile_create)

    profile_dup_p = profile_sub.add_parser("duplicate", help="Copy a profile")
    profile_dup_p.add_argument("id", help="Profile id")
    profile_dup_p.add_argument("--title", help="Title of the copy")
    profile_dup_p.set_defaults(func=cmd_profile_duplicate)

    profile_update_p = profile_sub.add_parser("update", help="Update a profile")
    profile_update_p.add_argument("id", help="Profile id")
    profile_update_p.add_argument("--title", help="New title")
    _add_settings_args(profile_update_p)
    profile_update_p.set_defaults(func=cmd_profile_update)

    profile_delete_p = profile_sub.add_parser("delete", help="Delete a profile")
    profile_delete_p.add_argument("id", help="Profile id")
    profile_delete_p.set_defaults(func=cmd_profile_delete)

    profile_use_p = profile_sub.add_parser("use", help="Activate a profile")
    profile_use_p.add_argument("id", help="Profile id")
    profile_use_p.set_defaults(func=cmd_profile_use)

    profile_restore_p = profile_sub.add_parser("restore", help="Restore the original configuration")
    profile_restore_p.set_defaults(func=cmd_profile_restore)

    profile_status_p = profile_sub.add_parser("status", help="Show live slot state")
    profile_status_p.set_defaults(func=cmd_profile_status)

    profile_recover_p = profile_sub.add_parser("recover", help="Finish an interrupted switch")
    profile_recover_p.set_defaults(func=cmd_profile_recover)

    # marketplace
    market_p = subparsers.add_parser("marketplace", help="Plugin marketplace lookups")
    market_sub = market_p.add_subparsers(dest="marketplace_cmd")

    market_list_p = market_sub.add_parser("list", help="List synced marketplaces")
    market_list_p.set_defaults(func=cmd_marketplace_list)

    market_resolve_p = market_sub.add_parser("resolve", help="Match a repository link")
    market_resolve_p.add_argument("link", help="Repository link (URL, git@ or owner/repo)")
    market_resolve_p.add_argument("--plugin", help="Plugin name to check")
    market_resolve_p.set_defaults(func=cmd_marketplace_resolve)

    # template
    template_p = subparsers.add_parser("template", help="Security template installs")
    template_sub = template_p.add_subparsers(dest="template_cmd")
    template_types = [str(k) for k in TEMPLATE_KINDS]

    template_list_p = template_sub.add_parser("list", help="List bundled templates")
    template_list_p.set_defaults(func=cmd_template_list)

    template_installed_p = template_sub.add_parser("installed", help="List installed templates")
    template_installed_p.set_defaults(func=cmd_template_installed)

    template_install_p = template_sub.add_parser("install", help="Install a template")
    template_install_p.add_argument("type", choices=template_types, help="Template type")
    template_install_p.add_argument("id", help="Template id")
    template_install_p.set_defaults(func=cmd_template_install)

    template_uninstall_p = template_sub.add_parser("uninstall", help="Remove an installed template")
    template_uninstall_p.add_argument("type", choices=template_types, help="Template type")
    template_uninstall_p.add_argument("id", help="Template id")
    template_uninstall_p.set_defaults(func=cmd_template_uninstall)

    # mcp
    mcp_p = subparsers.add_parser("mcp", help="Run the MCP server (stdio)")
    mcp_p.set_defaults(func=cmd_mcp)

    return parser


def main(argv: list[str] | None = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return

    _setup_logging(args.debug)
    try:
        args.func(args)
    except InconsistentError as e:
        _print(f"[red]Error:[/red] {e}")
        _print(e.guidance)
        sys.exit(1)
    except (CCSwitchError, ValueError) as e:
        _print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print()
        sys.exit(130)


if __name__ == "__main__":
    main()
