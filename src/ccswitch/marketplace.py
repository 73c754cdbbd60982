"""Match catalog links against locally synced plugin marketplaces.

Claude Code records marketplaces it has synced in
~/.claude/plugins/known_marketplaces.json:

    {"anthropic-tools": {"source": {"source": "github", "repo": "anthropics/tools"},
                         "installLocation": "...", "lastUpdated": "..."}}

Everything here is a local lookup; nothing touches the network.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from . import config, plugins
from .errors import MalformedError
from .fileio import read_json
from .types import InstallState, Marketplace

logger = logging.getLogger(__name__)

_GITHUB_HTTP_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/(?P<owner>[^/\s]+)/(?P<repo>[^/\s#?]+)",
    re.IGNORECASE,
)
_GITHUB_SSH_RE = re.compile(
    r"^(?:ssh://)?git@github\.com[:/](?P<owner>[^/\s]+)/(?P<repo>[^/\s]+)",
    re.IGNORECASE,
)
_BARE_RE = re.compile(r"^(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+)$")


def known_marketplaces_path() -> Path:
    return config.get_plugins_dir() / "known_marketplaces.json"


def parse_repo(link: str | None) -> str | None:
    """Reduce a repository link to ``owner/repo``.

    Handles https URLs (with or without ``.git`` and ``/tree/...`` tails),
    ``git@github.com:owner/repo.git`` and bare ``owner/repo``. Returns None
    when the link does not name a repository.
    """
    if not link:
        return None
    text = link.strip().rstrip("/")
    for pattern in (_GITHUB_HTTP_RE, _GITHUB_SSH_RE, _BARE_RE):
        m = pattern.match(text)
        if m:
            repo = m.group("repo")
            if repo.lower().endswith(".git"):
                repo = repo[:-4]
            if not repo:
                return None
            return f"{m.group('owner')}/{repo}"
    return None


def _source_repo(marketplace: Marketplace) -> str | None:
    return parse_repo(marketplace.repo) or parse_repo(marketplace.url)


def load_known_marketplaces(path: Path | None = None) -> list[Marketplace]:
    """Marketplaces in file order. A missing file means none are synced.

    Raises:
        MalformedError: the file is not a JSON object.
    """
    path = path or known_marketplaces_path()
    data = read_json(path, default={})
    if not isinstance(data, dict):
        raise MalformedError(path, "expected a JSON object")

    result: list[Marketplace] = []
    for key, entry in data.items():
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed marketplace entry '%s' in %s", key, path)
            continue
        source = entry.get("source") if isinstance(entry.get("source"), dict) else {}
        result.append(
            Marketplace(
                key=key,
                source_type=str(source.get("source", "")),
                repo=source.get("repo"),
                url=source.get("url"),
                install_location=entry.get("installLocation"),
                last_updated=entry.get("lastUpdated"),
            )
        )
    return result


def _normalize_url(url: str | None) -> str | None:
    if not url:
        return None
    text = url.strip().rstrip("/").lower()
    if text.endswith(".git"):
        text = text[:-4]
    return text or None


def resolve(link: str, known: list[Marketplace]) -> str | None:
    """Key of the first marketplace whose source repository matches ``link``.

    GitHub links compare by ``owner/repo`` (case-insensitive); other git
    hosts compare by normalized URL.
    """
    wanted = parse_repo(link)
    wanted_url = _normalize_url(link)
    for marketplace in known:
        repo = _source_repo(marketplace)
        if wanted is not None and repo is not None:
            if repo.lower() == wanted.lower():
                return marketplace.key
        elif wanted_url is not None and wanted_url == _normalize_url(marketplace.url):
            return marketplace.key
    return None


def resolve_install_state(
    link: str,
    plugin: str | None = None,
    known: list[Marketplace] | None = None,
) -> InstallState:
    """Whether a catalog item's marketplace is synced and, optionally, its plugin installed."""
    if known is None:
        known = load_known_marketplaces()
    key = resolve(link, known)
    state = InstallState(link=link, marketplace=key)
    if key is not None and plugin:
        installs, _issues = plugins.load_installs()
        state.plugin_installed = any(i.name == f"{plugin}@{key}" for i in installs)
    return state
