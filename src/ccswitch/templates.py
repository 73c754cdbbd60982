"""Bundled security templates and their install manifest.

Templates ship in builtins/security_templates.yaml, grouped by type
(agents, commands, skills, mcp). Installing one copies it into the user
scope: ~/.claude/agents/<id>.md, ~/.claude/commands/<id>.md,
~/.claude/skills/<id>/, or a server entry in ~/.mcp.json. Installs never
overwrite; an existing target raises ConflictError.

Every install is recorded in the manifest so uninstall removes exactly
what was written:

    {
      "version": 1,
      "items": [
        {"type": "agent", "id": "security-reviewer",
         "target_path": "/home/me/.claude/agents/security-reviewer.md",
         "installed_at": "2025-01-01T00:00:00+00:00"}
      ]
    }
"""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from . import config, mcp, scanner
from .errors import ConflictError, IOFailureError, MalformedError, NotFoundError
from .fileio import atomic_write_text, read_json_object, read_yaml, remove_file, write_json
from .toggle import artifact_lock, disabled_path
from .types import TEMPLATE_KINDS, EntityKind, InstalledTemplate, Scope, Template

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1
MCP_TARGET = "mcp"

# Top-level keys of the bundled file, per template kind.
_SECTIONS = {
    EntityKind.AGENT: "agents",
    EntityKind.COMMAND: "commands",
    EntityKind.SKILL: "skills",
    EntityKind.MCP: "mcp",
}


def get_builtin_templates_path() -> Path:
    """Get the bundled template catalog."""
    return Path(__file__).parent / "builtins" / "security_templates.yaml"


def template_kind(value: str | EntityKind) -> EntityKind:
    kind = value if isinstance(value, EntityKind) else EntityKind.from_string(value)
    if kind not in TEMPLATE_KINDS:
        valid = ", ".join(str(k) for k in TEMPLATE_KINDS)
        raise ValueError(f"Templates exist only for: {valid} (got '{kind}')")
    return kind


# ── Catalog ──────────────────────────────────────────────────────────────


def _check_relative(rel: str, template_id: str) -> None:
    parts = PurePosixPath(rel).parts
    if not parts or PurePosixPath(rel).is_absolute() or ".." in parts:
        raise ValueError(f"Invalid file path in skill template '{template_id}': {rel!r}")


def _parse_template(kind: EntityKind, entry: Any, path: Path) -> Template:
    if not isinstance(entry, dict) or not entry.get("id"):
        raise MalformedError(path, f"every {_SECTIONS[kind]} entry needs an 'id'")
    template = Template(
        kind=kind,
        id=str(entry["id"]),
        title=str(entry.get("title") or entry["id"]),
        description=str(entry.get("description", "")),
    )
    if kind == EntityKind.SKILL:
        files = entry.get("files")
        if not isinstance(files, dict) or "SKILL.md" not in files:
            raise MalformedError(path, f"skill template '{template.id}' needs files with a SKILL.md")
        for rel in files:
            _check_relative(str(rel), template.id)
        template.files = {str(rel): str(text) for rel, text in files.items()}
    elif kind == EntityKind.MCP:
        server = entry.get("server")
        if not isinstance(server, dict):
            raise MalformedError(path, f"MCP template '{template.id}' needs a 'server' object")
        template.server = server
    else:
        content = entry.get("content")
        if not isinstance(content, str):
            raise MalformedError(path, f"{kind} template '{template.id}' needs 'content'")
        template.content = content
    return template


def load_templates(path: Path | None = None) -> list[Template]:
    """Load the template catalog, in file order within each type."""
    path = path or get_builtin_templates_path()
    data = read_yaml(path, default={})
    if not isinstance(data, dict):
        raise MalformedError(path, "expected a mapping of template types")

    templates: list[Template] = []
    for kind, section in _SECTIONS.items():
        entries = data.get(section) or []
        if not isinstance(entries, list):
            raise MalformedError(path, f"'{section}' must be a list")
        templates.extend(_parse_template(kind, entry, path) for entry in entries)
    return templates


def get_template(kind: str | EntityKind, template_id: str) -> Template:
    kind = template_kind(kind)
    for template in load_templates():
        if template.kind == kind and template.id == template_id:
            return template
    raise NotFoundError(f"No {kind} template named '{template_id}'")


# ── Manifest ─────────────────────────────────────────────────────────────


def _read_manifest(path: Path) -> list[InstalledTemplate]:
    data = read_json_object(path)
    items = data.get("items", [])
    if not isinstance(items, list):
        raise MalformedError(path, "'items' must be a list")
    try:
        return [InstalledTemplate.from_dict(item) for item in items]
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedError(path, f"bad manifest entry: {e}") from e


def _write_manifest(path: Path, items: list[InstalledTemplate]) -> None:
    write_json(path, {"version": MANIFEST_VERSION, "items": [item.to_dict() for item in items]})


def list_installed() -> list[InstalledTemplate]:
    """Installed templates, in install order."""
    return _read_manifest(config.get_templates_manifest_path())


# ── Install / uninstall ──────────────────────────────────────────────────


def _install_file(template: Template) -> Path:
    target = scanner.artifact_path(template.kind, template.id, Scope.USER)
    with artifact_lock(target):
        for existing in (target, disabled_path(target)):
            if existing.exists():
                raise ConflictError(f"{template.kind} file already exists: {existing}")
        atomic_write_text(target, template.content or "")
    return target


def _install_skill(template: Template) -> Path:
    skill_dir = scanner.artifact_path(EntityKind.SKILL, template.id, Scope.USER).parent
    if skill_dir.exists():
        raise ConflictError(f"Skill directory already exists: {skill_dir}")
    try:
        for rel, text in template.files.items():
            atomic_write_text(skill_dir / rel, text)
    except IOFailureError:
        shutil.rmtree(skill_dir, ignore_errors=True)
        raise
    return skill_dir


def _install_mcp(template: Template) -> str:
    path, keys = mcp.server_file(Scope.USER)
    servers = read_json_object(path).get(keys[0])
    if isinstance(servers, dict) and template.id in servers:
        raise ConflictError(f"MCP server '{template.id}' already exists in {path}")
    mcp.write_server(template.id, dict(template.server or {}), Scope.USER)
    return MCP_TARGET


def install_template(kind: str | EntityKind, template_id: str) -> InstalledTemplate:
    """Copy one template into the user scope and record it.

    Raises:
        NotFoundError: unknown template.
        ConflictError: already installed, or the target already exists.
    """
    template = get_template(kind, template_id)
    manifest_path = config.get_templates_manifest_path()
    with artifact_lock(manifest_path):
        items = _read_manifest(manifest_path)
        if any(i.kind == template.kind and i.id == template.id for i in items):
            raise ConflictError(f"{template.kind} template '{template.id}' is already installed")

        if template.kind == EntityKind.SKILL:
            target = str(_install_skill(template))
        elif template.kind == EntityKind.MCP:
            target = _install_mcp(template)
        else:
            target = str(_install_file(template))

        item = InstalledTemplate(
            kind=template.kind,
            id=template.id,
            target_path=target,
            installed_at=datetime.now(timezone.utc).isoformat(),
        )
        items.append(item)
        _write_manifest(manifest_path, items)
    logger.info("Installed %s template '%s' at %s", template.kind, template.id, target)
    return item


def _remove_installed(item: InstalledTemplate) -> None:
    if item.kind == EntityKind.MCP:
        try:
            mcp.delete_server(item.id, Scope.USER)
        except NotFoundError:
            logger.debug("MCP server '%s' was already removed", item.id)
        return

    target = Path(item.target_path)
    if item.kind == EntityKind.SKILL:
        if target.is_dir():
            try:
                shutil.rmtree(target)
            except OSError as e:
                raise IOFailureError(f"Failed to delete {target}: {e}") from e
        return
    with artifact_lock(target):
        remove_file(target)
        remove_file(disabled_path(target))


def uninstall_template(kind: str | EntityKind, template_id: str) -> InstalledTemplate:
    """Remove an installed template's files (or MCP server) and its manifest entry.

    Files the user already deleted are skipped.

    Raises:
        NotFoundError: the template is not in the manifest.
    """
    kind = template_kind(kind)
    manifest_path = config.get_templates_manifest_path()
    with artifact_lock(manifest_path):
        items = _read_manifest(manifest_path)
        match = next((i for i in items if i.kind == kind and i.id == template_id), None)
        if match is None:
            raise NotFoundError(f"{kind} template '{template_id}' is not installed")
        _remove_installed(match)
        _write_manifest(manifest_path, [i for i in items if i is not match])
    logger.info("Uninstalled %s template '%s'", kind, template_id)
    return match
