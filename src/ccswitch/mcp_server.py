"""FastMCP server for ccswitch.

Thin wrapper that creates the MCP server, registers the single 'ccswitch'
tool, and delegates to mcp_handler.handle_action().

Usage:
    ccswitch-mcp      # starts stdio server
"""

from __future__ import annotations

from fastmcp import FastMCP

from .mcp_handler import handle_action

INSTRUCTIONS = """\
ccswitch manages Claude Code configuration through one tool with action dispatch.
Use action='describe' to list actions, or params={action_name: '<name>'} for one action's parameters.

Entities: command, agent, skill, memory, hook, mcp, plugin. Each name may be defined at several
scopes, lowest to highest precedence:
- plugin-user / plugin-local: shipped by an installed plugin (read-only)
- user: ~/.claude, ~/.mcp.json, ~/.claude.json
- project: P/.claude, P/.mcp.json, P/CLAUDE.md
- project-local: P/.claude/settings.local.json, P/CLAUDE.local.md, ~/.claude.json projects[P]
Pass params.project to read one project's scopes. Without it most kinds read user and plugin scopes
only; memory covers every project in ~/.claude.json and plugins list every install.

'scan' returns one effective view per name. The highest non-plugin definition authors it. State is
'enabled', 'disabled' (a .disabled file or a disabled list) or 'runtime-disabled' (a settings
override, or its plugin switched off in enabledPlugins). 'enable' and 'disable' act on the authoring
scope unless params.scope names another. A view with controllable=false is provided only by a
plugin, or is gated by one; toggle the plugin instead. Hooks are edited or deleted, never toggled.

Names: memory is 'global' for ~/.claude/CLAUDE.md, the absolute project path for P/CLAUDE.md and
'<path>:local' for P/CLAUDE.local.md. Plugins are 'name@marketplace'; a project-local install read
without params.project is listed as 'name@marketplace:<project path>'.

Profiles are named replacements for the live settings file (~/.claude/settings.json).
'use_profile' captures the original once and then writes the profile; 'restore' puts the original
back byte for byte. 'status' reports original, overridden or inconsistent plus the active profile.
An interrupted switch leaves the slot inconsistent until 'recover' or 'restore' runs.

Security templates: 'list_templates', 'install_template' and 'uninstall_template' copy bundled
agents, commands, skills and MCP servers into the user scope. Installs never overwrite.
"""

mcp = FastMCP("ccswitch", instructions=INSTRUCTIONS)


@mcp.tool(
    description=(
        "ccswitch: inspect and toggle Claude Code commands, agents, skills, memory, "
        "hooks, MCP servers and plugins across scopes, switch settings profiles, "
        "and install security templates.\n\n"
        "Use action='describe' to see all available actions and parameters."
    ),
)
async def ccswitch(action: str, params: dict | None = None) -> dict:
    """Dispatch a ccswitch action."""
    data = {**(params or {}), "action": action}
    return await handle_action(data)


def main() -> None:
    mcp.run()
