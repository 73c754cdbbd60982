"""Tests for the ConfigService operation facade."""

import json

import pytest

from ccswitch.errors import NotControllableError, NotFoundError
from ccswitch.service import ConfigService
from ccswitch.types import EffectiveState, EntityKind, Scope, SlotCondition

from conftest import write_file, write_json


@pytest.fixture
def svc(home):
    return ConfigService()


class TestFileArtifacts:
    def test_write_toggle_write_keeps_state(self, svc, claude_dir):
        path = svc.write(EntityKind.COMMAND, "review", "v1")
        assert path == claude_dir / "commands" / "review.md"

        disabled = svc.toggle(EntityKind.COMMAND, "review", disabled=True)
        assert disabled.name == "review.md.disabled"
        assert svc.get(EntityKind.COMMAND, "review").state == EffectiveState.DISABLED

        path = svc.write(EntityKind.COMMAND, "review", "v2")
        assert path == disabled
        assert disabled.read_text() == "v2"
        assert not (claude_dir / "commands" / "review.md").exists()

        svc.toggle(EntityKind.COMMAND, "review", disabled=False)
        view = svc.get(EntityKind.COMMAND, "review")
        assert view.state == EffectiveState.ENABLED
        assert view.content == "v2"

    def test_write_explicitly_enabled_removes_disabled_copy(self, svc, claude_dir):
        write_file(claude_dir / "agents" / "helper.md.disabled", "old")
        svc.write(EntityKind.AGENT, "helper", "new", disabled=False)
        assert (claude_dir / "agents" / "helper.md").read_text() == "new"
        assert not (claude_dir / "agents" / "helper.md.disabled").exists()

    def test_toggle_targets_authoring_scope(self, svc, claude_dir, project):
        write_file(claude_dir / "commands" / "review.md", "user")
        write_file(project / ".claude" / "commands" / "review.md", "project")
        svc.toggle(EntityKind.COMMAND, "review", disabled=True, project=project)
        assert (project / ".claude" / "commands" / "review.md.disabled").exists()
        assert (claude_dir / "commands" / "review.md").exists()

    def test_toggle_explicit_scope(self, svc, claude_dir, project):
        write_file(claude_dir / "commands" / "review.md", "user")
        write_file(project / ".claude" / "commands" / "review.md", "project")
        svc.toggle(EntityKind.COMMAND, "review", disabled=True, scope=Scope.USER, project=project)
        assert (claude_dir / "commands" / "review.md.disabled").exists()

    def test_toggle_twice_restores_file(self, svc, claude_dir):
        original = write_file(claude_dir / "commands" / "review.md", "body\n").read_bytes()
        svc.toggle(EntityKind.COMMAND, "review", disabled=True)
        svc.toggle(EntityKind.COMMAND, "review", disabled=False)
        assert (claude_dir / "commands" / "review.md").read_bytes() == original

    def test_toggle_unknown(self, svc):
        with pytest.raises(NotFoundError):
            svc.toggle(EntityKind.COMMAND, "ghost", disabled=True)

    def test_plugin_only_command_not_controllable(self, svc, install_plugin):
        install = install_plugin("tools@mk")
        write_file(install / "commands" / "lint.md", "lint")
        with pytest.raises(NotControllableError):
            svc.toggle(EntityKind.COMMAND, "lint", disabled=True)
        assert (install / "commands" / "lint.md").exists()

    def test_delete_command(self, svc, claude_dir):
        write_file(claude_dir / "commands" / "review.md.disabled", "x")
        removed = svc.delete(EntityKind.COMMAND, "review")
        assert removed == [claude_dir / "commands" / "review.md.disabled"]
        assert svc.scan_commands().views == []

    def test_write_and_delete_skill_directory(self, svc, project):
        path = svc.write(EntityKind.SKILL, "pdf", "# PDF", scope=Scope.PROJECT, project=project)
        write_file(path.parent / "helper.py", "print()")
        removed = svc.delete(EntityKind.SKILL, "pdf", project=project)
        assert removed == [path.parent]
        assert not path.parent.exists()

    def test_memory(self, svc, claude_dir):
        svc.write(EntityKind.MEMORY, "global", "# Rules")
        assert (claude_dir / "CLAUDE.md").read_text() == "# Rules"
        svc.toggle(EntityKind.MEMORY, "global", disabled=True)
        assert (claude_dir / "CLAUDE.md.disabled").exists()

    def test_global_memory_not_shadowed_by_project_named_global(self, svc, home, claude_dir, tmp_path):
        other = tmp_path / "x" / "global"
        write_file(claude_dir / "CLAUDE.md", "user")
        write_file(other / "CLAUDE.md", "project")
        write_json(home / ".claude.json", {"projects": {str(other): {}}})

        svc.toggle(EntityKind.MEMORY, "global", disabled=True)
        assert (claude_dir / "CLAUDE.md.disabled").exists()
        assert (other / "CLAUDE.md").exists()

        svc.toggle(EntityKind.MEMORY, str(other), disabled=True)
        assert (other / "CLAUDE.md.disabled").exists()

    def test_write_at_plugin_scope_rejected(self, svc):
        with pytest.raises(NotControllableError):
            svc.write(EntityKind.COMMAND, "x", "y", scope=Scope.PLUGIN_USER)


class TestHooks:
    def test_write_and_delete_hook(self, svc, claude_dir):
        write_json(claude_dir / "settings.json", {"model": "opus"})
        entries = [{"matcher": "Bash", "hooks": [{"type": "command", "command": "guard"}]}]
        svc.write(EntityKind.HOOK, "PreToolUse", json.dumps(entries))

        settings = json.loads((claude_dir / "settings.json").read_text())
        assert settings["model"] == "opus"
        assert settings["hooks"]["PreToolUse"] == entries
        assert [v.name for v in svc.scan_hooks().views] == ["PreToolUse"]

        svc.delete(EntityKind.HOOK, "PreToolUse")
        assert json.loads((claude_dir / "settings.json").read_text())["hooks"] == {}

    def test_hook_toggle_rejected(self, svc, claude_dir):
        write_json(claude_dir / "settings.json", {"hooks": {"Stop": []}})
        with pytest.raises(NotControllableError):
            svc.toggle(EntityKind.HOOK, "Stop", disabled=True)

    def test_hook_must_be_list(self, svc):
        with pytest.raises(ValueError):
            svc.write(EntityKind.HOOK, "Stop", {"not": "a list"})


class TestMcpAndPlugins:
    def test_mcp_write_toggle_delete(self, svc, home, claude_dir):
        svc.write(EntityKind.MCP, "fs", '{"command": "npx"}')
        assert json.loads((home / ".mcp.json").read_text()) == {"mcpServers": {"fs": {"command": "npx"}}}

        svc.toggle(EntityKind.MCP, "fs", disabled=True)
        assert svc.get(EntityKind.MCP, "fs").state == EffectiveState.DISABLED

        svc.delete(EntityKind.MCP, "fs")
        assert svc.scan_mcp_servers().views == []

    def test_plugin_toggle(self, svc, claude_dir, install_plugin):
        install_plugin("tools@mk")
        svc.toggle(EntityKind.PLUGIN, "tools@mk", disabled=True)
        assert svc.get(EntityKind.PLUGIN, "tools@mk").state == EffectiveState.DISABLED
        svc.toggle(EntityKind.PLUGIN, "tools@mk", disabled=False)
        assert svc.get(EntityKind.PLUGIN, "tools@mk").state == EffectiveState.ENABLED

    def test_plugin_delete_rejected(self, svc, install_plugin):
        install_plugin("tools@mk")
        with pytest.raises(NotControllableError):
            svc.delete(EntityKind.PLUGIN, "tools@mk")


class TestProfiles:
    def test_profile_switch_round_trip(self, svc, claude_dir):
        live = write_file(claude_dir / "settings.json", '{"model": "sonnet"}\n')
        original = live.read_bytes()

        p = svc.create_profile("Work", {"model": "opus"})
        svc.set_active_profile(p.id)
        assert svc.slot_state().condition == SlotCondition.OVERRIDDEN
        assert svc.active_profile().id == p.id

        svc.restore_original()
        assert live.read_bytes() == original
        assert svc.slot_state().condition == SlotCondition.ORIGINAL

    def test_create_from_live(self, svc, claude_dir):
        write_json(claude_dir / "settings.json", {"model": "haiku"})
        p = svc.create_profile_from_live("Snapshot")
        assert svc.get_profile(p.id).settings == {"model": "haiku"}

    def test_delete_active_profile(self, svc, claude_dir):
        live = write_file(claude_dir / "settings.json", "{}\n")
        p = svc.create_profile("Work", {"model": "opus"})
        svc.set_active_profile(p.id)
        svc.delete_profile(p.id)
        assert svc.list_profiles() == []
        assert live.read_text() == "{}\n"
