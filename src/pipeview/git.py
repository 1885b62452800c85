from __future__ import annotations

import logging
import pathlib
from typing import NamedTuple, cast

import dulwich.errors
import dulwich.objects
import dulwich.refs
import dulwich.repo

from pipeview import exceptions

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_NAMES: tuple[str, ...] = ("gitlab", "origin")


class CommitSummary(NamedTuple):
    """One row of the commit list."""

    sha: str
    summary: str
    author: str
    timestamp: int

    @property
    def short_sha(self) -> str:
        return self.sha[:8]


def find_repo_root(start: pathlib.Path) -> pathlib.Path:
    """Walk up from start to the directory containing .git."""
    start = start.resolve()
    for parent in [start, *start.parents]:
        if (parent / ".git").exists():
            return parent
    raise exceptions.GitError(f"Not inside a git repository: {start}")


def _open_repo(repo_root: pathlib.Path) -> dulwich.repo.Repo:
    try:
        return dulwich.repo.Repo(str(repo_root))
    except dulwich.errors.NotGitRepository as e:
        raise exceptions.GitError(f"Not a git repository: {repo_root}") from e


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _author_name(author: bytes) -> str:
    """Strip the e-mail part from 'Name <email>'."""
    name, _, _ = _decode(author).partition(" <")
    return name.strip()


def _summarize(commit: dulwich.objects.Commit) -> CommitSummary:
    lines = _decode(commit.message).strip().splitlines()
    return CommitSummary(
        sha=_decode(commit.id),
        summary=lines[0] if lines else "",
        author=_author_name(commit.author),
        timestamp=commit.commit_time,
    )


def list_commits(repo_root: pathlib.Path, *, limit: int) -> list[CommitSummary]:
    """List up to limit commits reachable from HEAD, newest first.

    Returns an empty list for a repository without commits.
    """
    with _open_repo(repo_root) as repo:
        try:
            head = repo.head()
        except KeyError:
            logger.debug("No HEAD commit (empty repository?)")
            return []
        walker = repo.get_walker(include=[head], max_entries=limit)
        return [_summarize(entry.commit) for entry in walker]


def get_remote_url(
    repo_root: pathlib.Path, names: tuple[str, ...] = DEFAULT_REMOTE_NAMES
) -> str | None:
    """Return the URL of the first configured remote among names."""
    with _open_repo(repo_root) as repo:
        config = repo.get_config()
        for name in names:
            try:
                url = config.get((b"remote", name.encode()), b"url")
            except KeyError:
                continue
            if url:
                return _decode(url)
    logger.debug("No remote named %s", " or ".join(names))
    return None


def _peel_to_commit(
    repo: dulwich.repo.Repo, obj: dulwich.objects.ShaFile
) -> dulwich.objects.Commit | None:
    """Follow annotated tags down to the commit they point at."""
    while isinstance(obj, dulwich.objects.Tag):
        obj = repo[obj.object[1]]
    return obj if isinstance(obj, dulwich.objects.Commit) else None


def _lookup_revision(repo: dulwich.repo.Repo, rev: str) -> dulwich.objects.Commit | None:
    rev_bytes = rev.encode()

    # Refs first (HEAD, branches, tags), the common case
    for ref in (rev_bytes, b"refs/heads/" + rev_bytes, b"refs/tags/" + rev_bytes):
        try:
            sha = repo.refs[cast("dulwich.refs.Ref", ref)]
        except KeyError:
            continue
        if (commit := _peel_to_commit(repo, repo[sha])) is not None:
            return commit

    # Then a full or abbreviated hex SHA, which must name exactly one commit
    if len(rev) >= 4 and all(c in "0123456789abcdefABCDEF" for c in rev):
        prefix = rev.lower()
        matches = dict[bytes, dulwich.objects.Commit]()
        for sha in repo.object_store:
            if sha.decode().startswith(prefix):
                if (commit := _peel_to_commit(repo, repo[sha])) is not None:
                    matches[commit.id] = commit
        if len(matches) > 1:
            raise exceptions.GitError(f"Ambiguous revision: {rev} matches {len(matches)} commits")
        if matches:
            return next(iter(matches.values()))
    return None


def resolve_commit(repo_root: pathlib.Path, rev: str) -> CommitSummary:
    """Resolve a revision (HEAD, branch, tag or SHA prefix) to a commit."""
    with _open_repo(repo_root) as repo:
        commit = _lookup_revision(repo, rev)
        if commit is None:
            raise exceptions.GitError(f"Unknown revision: {rev}")
        return _summarize(commit)
