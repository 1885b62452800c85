"""Infer the GitLab host and project path from a git remote URL."""

from __future__ import annotations

import urllib.parse
from typing import NamedTuple

__all__ = ["RemoteInfo", "parse_remote_url"]


class RemoteInfo(NamedTuple):
    host: str
    # Web/API base URL, e.g. https://gitlab.example.com
    url: str
    # Project path, e.g. group/subgroup/project
    project: str


def _strip_path(path: str) -> str:
    path = path.strip("/")
    return path.removesuffix(".git")


def parse_remote_url(remote_url: str) -> RemoteInfo | None:
    """Parse scp-style (git@host:group/proj.git) and http(s) remote URLs.

    Returns None for anything else (local paths, ssh:// with ports, etc.).
    """
    remote_url = remote_url.strip()

    if remote_url.startswith("git@"):
        host, sep, path = remote_url.removeprefix("git@").partition(":")
        project = _strip_path(path)
        if sep and host and project:
            return RemoteInfo(host=host, url=f"https://{host}", project=project)
        return None

    if remote_url.startswith(("https://", "http://")):
        parsed = urllib.parse.urlsplit(remote_url)
        # Drop "user:token@" credentials embedded in the URL
        host = parsed.hostname or ""
        if parsed.port is not None:
            host = f"{host}:{parsed.port}"
        project = _strip_path(parsed.path)
        if host and project:
            return RemoteInfo(host=host, url=f"{parsed.scheme}://{host}", project=project)

    return None
