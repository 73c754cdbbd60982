"""Tests for bundled security templates and their install manifest."""

import json

import pytest

from ccswitch import templates
from ccswitch.errors import ConflictError, MalformedError, NotFoundError
from ccswitch.service import ConfigService
from ccswitch.types import EffectiveState, EntityKind

from conftest import write_file, write_json

CATALOG = """\
agents:
  - id: auditor
    title: Auditor
    description: Audits things
    content: "---\\ndescription: Audits things\\n---\\nAudit.\\n"
commands:
  - id: scan-secrets
    content: Find secrets.
skills:
  - id: stride
    files:
      SKILL.md: "# STRIDE"
      docs/checklist.md: "- spoofing"
mcp:
  - id: semgrep
    server:
      command: uvx
      args: [semgrep-mcp]
"""


@pytest.fixture
def catalog(tmp_path, monkeypatch, home):
    path = write_file(tmp_path / "catalog.yaml", CATALOG)
    monkeypatch.setattr(templates, "get_builtin_templates_path", lambda: path)
    return path


@pytest.fixture
def manifest(home, tmp_path):
    return tmp_path / "app" / "security_packs" / "installed.json"


class TestCatalog:
    def test_bundled_catalog_loads(self):
        loaded = templates.load_templates()
        kinds = {t.kind for t in loaded}
        assert kinds == {EntityKind.AGENT, EntityKind.COMMAND, EntityKind.SKILL, EntityKind.MCP}
        skill = next(t for t in loaded if t.kind == EntityKind.SKILL)
        assert "SKILL.md" in skill.files

    def test_bundled_ids_unique_per_type(self):
        keys = [(t.kind, t.id) for t in templates.load_templates()]
        assert len(keys) == len(set(keys))

    def test_custom_catalog(self, catalog):
        loaded = templates.load_templates()
        assert [(str(t.kind), t.id) for t in loaded] == [
            ("agent", "auditor"),
            ("command", "scan-secrets"),
            ("skill", "stride"),
            ("mcp", "semgrep"),
        ]
        assert loaded[1].title == "scan-secrets"

    def test_get_unknown(self, catalog):
        with pytest.raises(NotFoundError):
            templates.get_template("agent", "ghost")

    def test_hook_templates_rejected(self, catalog):
        with pytest.raises(ValueError):
            templates.get_template("hook", "auditor")

    def test_skill_path_escape_rejected(self, tmp_path, monkeypatch):
        path = write_file(tmp_path / "bad.yaml", 'skills:\n  - id: x\n    files:\n      SKILL.md: a\n      ../evil.md: b\n')
        monkeypatch.setattr(templates, "get_builtin_templates_path", lambda: path)
        with pytest.raises(ValueError):
            templates.load_templates()

    def test_missing_content_is_malformed(self, tmp_path, monkeypatch):
        path = write_file(tmp_path / "bad.yaml", "agents:\n  - id: x\n")
        monkeypatch.setattr(templates, "get_builtin_templates_path", lambda: path)
        with pytest.raises(MalformedError):
            templates.load_templates()


class TestInstall:
    def test_install_agent(self, catalog, claude_dir, manifest):
        item = templates.install_template("agent", "auditor")
        target = claude_dir / "agents" / "auditor.md"
        assert target.read_text().endswith("Audit.\n")
        assert item.target_path == str(target)

        data = json.loads(manifest.read_text())
        assert data["version"] == 1
        [entry] = data["items"]
        assert entry["type"] == "agent"
        assert entry["id"] == "auditor"
        assert entry["installed_at"]

    def test_installed_agent_is_scanned(self, catalog, claude_dir):
        templates.install_template(EntityKind.AGENT, "auditor")
        view = ConfigService().get(EntityKind.AGENT, "auditor")
        assert view.state == EffectiveState.ENABLED
        assert view.to_dict()["description"] == "Audits things"

    def test_install_skill_directory(self, catalog, claude_dir):
        item = templates.install_template("skill", "stride")
        skill_dir = claude_dir / "skills" / "stride"
        assert item.target_path == str(skill_dir)
        assert (skill_dir / "SKILL.md").read_text() == "# STRIDE"
        assert (skill_dir / "docs" / "checklist.md").read_text() == "- spoofing"

    def test_install_mcp_server(self, catalog, home):
        write_json(home / ".mcp.json", {"mcpServers": {"fs": {"command": "npx"}}})
        item = templates.install_template("mcp", "semgrep")
        assert item.target_path == "mcp"
        servers = json.loads((home / ".mcp.json").read_text())["mcpServers"]
        assert servers == {"fs": {"command": "npx"}, "semgrep": {"command": "uvx", "args": ["semgrep-mcp"]}}

    def test_existing_file_is_not_overwritten(self, catalog, claude_dir, manifest):
        target = write_file(claude_dir / "commands" / "scan-secrets.md", "mine")
        with pytest.raises(ConflictError):
            templates.install_template("command", "scan-secrets")
        assert target.read_text() == "mine"
        assert not manifest.exists()

    def test_disabled_copy_counts_as_existing(self, catalog, claude_dir):
        write_file(claude_dir / "commands" / "scan-secrets.md.disabled", "mine")
        with pytest.raises(ConflictError):
            templates.install_template("command", "scan-secrets")

    def test_existing_skill_directory(self, catalog, claude_dir):
        write_file(claude_dir / "skills" / "stride" / "notes.txt", "keep")
        with pytest.raises(ConflictError):
            templates.install_template("skill", "stride")
        assert not (claude_dir / "skills" / "stride" / "SKILL.md").exists()

    def test_existing_mcp_server(self, catalog, home):
        write_json(home / ".mcp.json", {"mcpServers": {"semgrep": {"command": "docker"}}})
        with pytest.raises(ConflictError):
            templates.install_template("mcp", "semgrep")
        assert json.loads((home / ".mcp.json").read_text())["mcpServers"]["semgrep"] == {"command": "docker"}

    def test_install_twice(self, catalog, claude_dir):
        templates.install_template("agent", "auditor")
        (claude_dir / "agents" / "auditor.md").unlink()
        with pytest.raises(ConflictError):
            templates.install_template("agent", "auditor")


class TestUninstall:
    def test_uninstall_removes_file_and_entry(self, catalog, claude_dir):
        templates.install_template("agent", "auditor")
        templates.install_template("command", "scan-secrets")
        templates.uninstall_template("agent", "auditor")
        assert not (claude_dir / "agents" / "auditor.md").exists()
        assert [i.id for i in templates.list_installed()] == ["scan-secrets"]

    def test_uninstall_disabled_copy(self, catalog, claude_dir):
        svc = ConfigService()
        svc.install_template("command", "scan-secrets")
        svc.toggle(EntityKind.COMMAND, "scan-secrets", disabled=True)
        svc.uninstall_template("command", "scan-secrets")
        assert list((claude_dir / "commands").iterdir()) == []

    def test_uninstall_skill(self, catalog, claude_dir):
        templates.install_template("skill", "stride")
        templates.uninstall_template("skill", "stride")
        assert not (claude_dir / "skills" / "stride").exists()

    def test_uninstall_mcp_server(self, catalog, home):
        templates.install_template("mcp", "semgrep")
        templates.uninstall_template("mcp", "semgrep")
        assert "semgrep" not in json.loads((home / ".mcp.json").read_text()).get("mcpServers", {})

    def test_uninstall_after_manual_delete(self, catalog, claude_dir):
        templates.install_template("agent", "auditor")
        (claude_dir / "agents" / "auditor.md").unlink()
        templates.uninstall_template("agent", "auditor")
        assert templates.list_installed() == []

    def test_uninstall_unknown(self, catalog):
        with pytest.raises(NotFoundError):
            templates.uninstall_template("agent", "auditor")

    def test_malformed_manifest(self, catalog, manifest):
        write_json(manifest, {"version": 1, "items": {"not": "a list"}})
        with pytest.raises(MalformedError):
            templates.list_installed()
