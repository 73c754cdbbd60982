"""ccswitch: configuration profiles and extension management for Claude Code."""

__version__ = "0.3.0"
