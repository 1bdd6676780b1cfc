"""Derive a GitLab host and namespace path from git remote URLs.

Parsing is strictly syntactic. Whether the host matches the configured GitLab
server is decided by the caller (see :func:`host_matches`).
"""

from __future__ import annotations

import logging
import re
import urllib.parse
from collections.abc import Iterable, Mapping, Sequence

import git

from git_lab.errors import NoRemoteConfigured, UnparseableRemote
from git_lab.models import LOGGER_NAME, RemoteBinding

logger = logging.getLogger(LOGGER_NAME)

PREFERRED_REMOTE = "origin"

# ssh://[user@]host[:port]/path.git (also git://), and the non-standard ssh://user@host:path.git
_SSH_URL = re.compile(
    r"^(?P<scheme>ssh|git\+ssh|ssh\+git|git)://(?:[^@/\s]+@)?(?P<host>[^:/\s]+)(?::(?P<port>\d+))?[:/](?P<path>\S+)$"
)
# http(s)://[user[:pass]@]host[:port]/path[.git]
_HTTP_URL = re.compile(r"^(?P<scheme>https?)://(?:[^@/\s]+@)?(?P<host>[^:/\s]+)(?::(?P<port>\d+))?/(?P<path>\S+)$")
# scp-like: [user@]host:path.git
_SCP_URL = re.compile(r"^(?:[^@/\s]+@)?(?P<host>[^:/\s]+):(?!//)(?P<path>\S+)$")


def _clean_path(path: str) -> str | None:
    """Normalise a repository path to ``namespace/project``; None if it is not one."""
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    path = path.rstrip("/")
    segments = path.split("/")
    if len(segments) < 2 or any(not s or s in (".", "..", "-") for s in segments):
        return None
    return path


def parse_remote_url(url: str) -> RemoteBinding | None:
    """Parse an SSH or HTTP(S) remote URL. Returns None when neither grammar matches."""
    url = url.strip()

    match = _SSH_URL.match(url)
    if match:
        protocol = "git" if match.group("scheme") == "git" else "ssh"
    else:
        match = _HTTP_URL.match(url)
        if match:
            protocol = match.group("scheme")
        else:
            match = _SCP_URL.match(url)
            protocol = "ssh"
    if not match:
        return None

    path = _clean_path(urllib.parse.unquote(match.group("path")))
    if path is None:
        return None

    port = match.groupdict().get("port")
    return RemoteBinding(
        host=match.group("host").lower(),
        namespace_path=path,
        url=url,
        protocol=protocol,
        port=int(port) if port else None,
    )


def discover(remote_urls: Sequence[str]) -> RemoteBinding:
    """Return the binding for the first remote URL that parses.

    Raises NoRemoteConfigured for an empty list and UnparseableRemote when no
    candidate matches either URL grammar.
    """
    if not remote_urls:
        raise NoRemoteConfigured()
    for url in remote_urls:
        binding = parse_remote_url(url)
        if binding is not None:
            logger.debug(f"Remote {url} -> host={binding.host} path={binding.namespace_path}")
            return binding
        logger.debug(f"Skipping unparseable remote: {url}")
    raise UnparseableRemote(remote_urls)


def order_remote_urls(remotes: Mapping[str, Iterable[str]]) -> list[str]:
    """Flatten remote name -> URLs into preference order: origin first, then by name."""
    names = sorted(remotes, key=lambda name: (name != PREFERRED_REMOTE, name))
    urls: list[str] = []
    for name in names:
        for url in remotes[name]:
            if url not in urls:
                urls.append(url)
    return urls


def list_remote_urls(repo: git.Repo) -> list[str]:
    """Remote URLs configured in ``repo``, in preference order."""
    remotes = {remote.name: list(remote.urls) for remote in repo.remotes}
    return order_remote_urls(remotes)


def host_matches(binding: RemoteBinding, configured_host: str) -> bool:
    """True when the remote's host is the configured server's host."""
    hostname = urllib.parse.urlparse(configured_host).hostname or configured_host
    return binding.host == hostname.lower()
