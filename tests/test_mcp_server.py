"""Tests for the FastMCP server wrapper."""

from ccswitch import mcp_server
from ccswitch.mcp_handler import ACTION_SCHEMAS
from ccswitch.types import EntityKind, Scope


class TestInstructions:
    def test_names_every_kind_and_scope(self):
        text = mcp_server.INSTRUCTIONS
        for kind in EntityKind:
            assert kind.value in text
        for scope in Scope:
            assert scope.value in text

    def test_explains_profile_model(self):
        text = mcp_server.INSTRUCTIONS
        assert "~/.claude/settings.json" in text
        for state in ("original", "overridden", "inconsistent"):
            assert state in text

    def test_mentioned_actions_exist(self):
        text = mcp_server.INSTRUCTIONS
        for action in ("describe", "scan", "enable", "disable", "use_profile", "restore",
                       "status", "recover", "list_templates", "install_template",
                       "uninstall_template"):
            assert f"'{action}'" in text
            assert action in ACTION_SCHEMAS
