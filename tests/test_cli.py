"""Tests for the ccswitch CLI."""

import json

import pytest

from ccswitch.cli import build_parser, main

from conftest import write_file, write_json


class TestArgParsing:
    def setup_method(self):
        self.parser = build_parser()

    def test_scan(self):
        args = self.parser.parse_args(["scan", "command"])
        assert args.command == "scan"
        assert args.kind == "command"
        assert args.project is None
        assert args.json is False

    def test_scan_json_with_project(self):
        args = self.parser.parse_args(["scan", "mcp", "--project", "/work/app", "--json"])
        assert args.project == "/work/app"
        assert args.json is True

    def test_scan_rejects_unknown_kind(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(["scan", "widget"])

    def test_toggle_off(self):
        args = self.parser.parse_args(["toggle", "agent", "helper", "--off"])
        assert args.enabled is False
        assert args.scope is None

    def test_toggle_on_with_scope(self):
        args = self.parser.parse_args(["toggle", "skill", "pdf", "--on", "--scope", "project"])
        assert args.enabled is True
        assert args.scope == "project"

    def test_toggle_requires_state(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(["toggle", "agent", "helper"])

    def test_toggle_rejects_plugin_scope(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(["toggle", "agent", "helper", "--off", "--scope", "plugin_user"])

    def test_write(self):
        args = self.parser.parse_args(["write", "command", "review", "review.md", "--disabled"])
        assert args.path == "review.md"
        assert args.disabled is True

    def test_write_from_stdin(self):
        args = self.parser.parse_args(["write", "command", "review"])
        assert args.path is None

    def test_profile_create(self):
        args = self.parser.parse_args(["profile", "create", "Work", "--json", '{"model": "opus"}'])
        assert args.profile_cmd == "create"
        assert args.title == "Work"
        assert args.from_live is False

    def test_profile_create_json_and_file_exclusive(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(["profile", "create", "Work", "--json", "{}", "--file", "x.json"])

    def test_profile_use(self):
        args = self.parser.parse_args(["profile", "use", "abc123"])
        assert args.profile_cmd == "use"
        assert args.id == "abc123"

    def test_marketplace_resolve(self):
        args = self.parser.parse_args(["marketplace", "resolve", "owner/repo", "--plugin", "tools"])
        assert args.link == "owner/repo"
        assert args.plugin == "tools"

    def test_debug_flag(self):
        args = self.parser.parse_args(["--debug", "profile", "status"])
        assert args.debug is True


class TestEntityCommands:
    def test_scan_json(self, claude_dir, capsys):
        write_file(claude_dir / "commands" / "review.md", "x")
        write_file(claude_dir / "commands" / "old.md.disabled", "x")
        main(["scan", "command", "--json"])
        payload = json.loads(capsys.readouterr().out)
        states = {item["name"]: item["state"] for item in payload["items"]}
        assert states == {"old": "disabled", "review": "enabled"}

    def test_scan_empty(self, home, capsys):
        main(["scan", "agent"])
        assert "No agents found." in capsys.readouterr().out

    def test_toggle(self, claude_dir, capsys):
        write_file(claude_dir / "agents" / "helper.md", "x")
        main(["toggle", "agent", "helper", "--off"])
        assert "Disabled agent 'helper'" in capsys.readouterr().out
        assert (claude_dir / "agents" / "helper.md.disabled").exists()

    def test_toggle_unknown_exits(self, home, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["toggle", "agent", "ghost", "--off"])
        assert exc.value.code == 1
        assert "Error" in capsys.readouterr().out

    def test_write_from_file(self, claude_dir, tmp_path, capsys):
        source = write_file(tmp_path / "review.md", "# Review")
        main(["write", "command", "review", str(source)])
        assert (claude_dir / "commands" / "review.md").read_text() == "# Review"

    def test_show(self, claude_dir, capsys):
        write_file(claude_dir / "commands" / "review.md", "Check the diff.")
        main(["show", "command", "review"])
        out = capsys.readouterr().out
        assert "State: enabled" in out
        assert "Check the diff." in out

    def test_delete(self, claude_dir, capsys):
        write_file(claude_dir / "commands" / "review.md", "x")
        main(["delete", "command", "review"])
        assert not (claude_dir / "commands" / "review.md").exists()


class TestProfileCommands:
    def test_list_empty(self, home, capsys):
        main(["profile", "list"])
        assert "No profiles" in capsys.readouterr().out

    def test_create_use_restore(self, claude_dir, capsys):
        live = write_json(claude_dir / "settings.json", {"model": "sonnet"})
        original = live.read_bytes()

        main(["profile", "create", "Work", "--id", "work", "--json", '{"model": "opus"}'])
        assert "Created profile 'Work' (work)" in capsys.readouterr().out

        main(["profile", "use", "work"])
        assert json.loads(live.read_text()) == {"model": "opus"}

        main(["profile", "status"])
        out = capsys.readouterr().out
        assert "Condition: overridden" in out
        assert "Active profile: Work" in out

        main(["profile", "restore"])
        assert live.read_bytes() == original

    def test_create_rejects_non_object(self, home, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["profile", "create", "Bad", "--json", "[1, 2]"])
        assert exc.value.code == 1

    def test_update_requires_changes(self, home, capsys):
        main(["profile", "create", "Work", "--id", "work"])
        with pytest.raises(SystemExit) as exc:
            main(["profile", "update", "work"])
        assert exc.value.code == 1
        assert "Nothing to update" in capsys.readouterr().out

    def test_delete(self, home, capsys):
        main(["profile", "create", "Work", "--id", "work"])
        main(["profile", "delete", "work"])
        assert "Deleted profile 'Work'" in capsys.readouterr().out


class TestMarketplaceCommands:
    def test_resolve_not_installed(self, home, capsys):
        main(["marketplace", "resolve", "owner/repo"])
        assert "Not installed: owner/repo" in capsys.readouterr().out

    def test_resolve_known(self, claude_dir, capsys):
        write_json(
            claude_dir / "plugins" / "known_marketplaces.json",
            {"team": {"source": {"source": "github", "repo": "owner/repo"}}},
        )
        main(["marketplace", "resolve", "https://github.com/owner/repo"])
        assert "Marketplace: team" in capsys.readouterr().out


class TestTemplateCommands:
    def test_parse_install(self):
        args = build_parser().parse_args(["template", "install", "agent", "security-reviewer"])
        assert args.type == "agent"
        assert args.id == "security-reviewer"

    def test_parse_rejects_hook_type(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["template", "install", "hook", "x"])

    def test_list(self, home, capsys):
        main(["template", "list"])
        assert "semgrep" in capsys.readouterr().out

    def test_install_uninstall(self, claude_dir, capsys):
        main(["template", "install", "agent", "security-reviewer"])
        assert "Installed" in capsys.readouterr().out
        assert (claude_dir / "agents" / "security-reviewer.md").exists()

        main(["template", "uninstall", "agent", "security-reviewer"])
        assert "Uninstalled agent security-reviewer" in capsys.readouterr().out
        assert not (claude_dir / "agents" / "security-reviewer.md").exists()

    def test_install_conflict_exits(self, claude_dir, capsys):
        write_file(claude_dir / "agents" / "security-reviewer.md", "mine")
        with pytest.raises(SystemExit) as exc:
            main(["template", "install", "agent", "security-reviewer"])
        assert exc.value.code == 1
        assert (claude_dir / "agents" / "security-reviewer.md").read_text() == "mine"

    def test_installed_empty(self, home, capsys):
        main(["template", "installed"])
        assert "No templates installed." in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    main([])
    assert "usage: ccswitch" in capsys.readouterr().out
