"""Small file utilities shared by the scanners, toggle protocol and switch engine."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from .errors import IOFailureError, MalformedError


def _fsync_dir(directory: Path) -> None:
    """Flush a directory entry so a rename inside it survives power loss."""
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Write content atomically: temp file in the same dir, fsync, rename.

    Raises:
        IOFailureError: If any step fails. The target is left untouched.
    """
    fd = None
    tmp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        view = memoryview(content)
        while view:
            view = view[os.write(fd, view):]
        os.fsync(fd)
        if path.exists():
            os.fchmod(fd, path.stat().st_mode & 0o777)
        os.close(fd)
        fd = None
        os.replace(tmp_path, path)
        tmp_path = None
        _fsync_dir(path.parent)
    except OSError as e:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise IOFailureError(f"Failed to write {path}: {e}") from e


def atomic_write_text(path: Path, content: str) -> None:
    atomic_write_bytes(path, content.encode("utf-8"))


def read_text(path: Path) -> str | None:
    """Read a text file. Returns None when it does not exist.

    Raises:
        IOFailureError: If the file exists but cannot be read.
    """
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise IOFailureError(f"Failed to read {path}: {e}") from e


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON document. Returns ``default`` when the file is missing.

    Raises:
        MalformedError: If the content is not valid JSON.
        IOFailureError: If the file exists but cannot be read.
    """
    text = read_text(path)
    if text is None:
        return default
    if not text.strip():
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedError(path, str(e)) from e


def read_json_object(path: Path) -> dict[str, Any]:
    """Read a JSON document that must be an object. Missing file -> {}."""
    data = read_json(path, default={})
    if not isinstance(data, dict):
        raise MalformedError(path, f"expected a JSON object, got {type(data).__name__}")
    return data


def write_json(path: Path, data: Any) -> None:
    """Write a JSON document atomically with 2-space indent."""
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def read_yaml(path: Path, default: Any = None) -> Any:
    """Read a YAML document. Returns ``default`` when the file is missing."""
    text = read_text(path)
    if text is None:
        return default
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedError(path, str(e)) from e
    return default if data is None else data


def write_yaml(path: Path, data: Any) -> None:
    """Write a YAML document atomically."""
    atomic_write_text(path, yaml.dump(data, default_flow_style=False, sort_keys=False))


def remove_file(path: Path) -> bool:
    """Remove a file if present. Returns True when something was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise IOFailureError(f"Failed to remove {path}: {e}") from e
    _fsync_dir(path.parent)
    return True
