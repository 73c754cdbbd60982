"""Pytest fixtures for ccswitch tests."""

import json
from pathlib import Path

import pytest


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))
    return path


def write_file(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Isolated home directory with an empty ~/.claude and ccswitch state dir.

    Sets up:
    - <tmp>/home/.claude/
    - <tmp>/app/ as the ccswitch state directory
    """
    home_dir = tmp_path / "home"
    (home_dir / ".claude").mkdir(parents=True)
    app_dir = tmp_path / "app"

    monkeypatch.delenv("CCSWITCH_HOME", raising=False)
    monkeypatch.setattr("ccswitch.config.get_home", lambda: home_dir)
    monkeypatch.setattr("ccswitch.config.get_app_dir", lambda: app_dir)
    return home_dir


@pytest.fixture
def claude_dir(home):
    return home / ".claude"


@pytest.fixture
def project(tmp_path):
    """A project directory with an empty .claude/ folder."""
    proj = tmp_path / "work" / "myproj"
    (proj / ".claude").mkdir(parents=True)
    return proj


@pytest.fixture
def install_plugin(claude_dir, tmp_path):
    """Factory registering a plugin install in installed_plugins.json.

    Returns the install directory so tests can drop commands/, .mcp.json, etc.
    """
    registry = claude_dir / "plugins" / "installed_plugins.json"

    def _install(name: str, scope: str = "user", project_path: Path | None = None) -> Path:
        install_dir = tmp_path / "plugin-cache" / name.replace("@", "_") / scope
        install_dir.mkdir(parents=True, exist_ok=True)
        data = json.loads(registry.read_text()) if registry.exists() else {"version": 2, "plugins": {}}
        entry = {
            "scope": scope,
            "installPath": str(install_dir),
            "version": "1.0.0",
            "installedAt": "2025-01-01T00:00:00Z",
        }
        if project_path is not None:
            entry["projectPath"] = str(project_path)
        data["plugins"].setdefault(name, []).append(entry)
        write_json(registry, data)
        return install_dir

    return _install


@pytest.fixture
def mock_args():
    """Factory for creating mock argument objects."""
    class Args:
        def __init__(self, **kwargs):
            for key, value in kwargs.items():
                setattr(self, key, value)

    return Args
