from __future__ import annotations

import datetime
from typing import TYPE_CHECKING

import rich.text
import textual.widgets
import textual.widgets.option_list

if TYPE_CHECKING:
    from pipeview.git import CommitSummary

__all__ = ["CommitList", "format_commit"]

_MAX_AUTHOR_WIDTH = 16


def format_commit(commit: CommitSummary) -> rich.text.Text:
    """One line per commit: short sha, date, author, summary."""
    when = datetime.datetime.fromtimestamp(commit.timestamp).strftime("%Y-%m-%d %H:%M")
    author = commit.author
    if len(author) > _MAX_AUTHOR_WIDTH:
        author = author[: _MAX_AUTHOR_WIDTH - 1] + "…"

    text = rich.text.Text(no_wrap=True, overflow="ellipsis")
    text.append(commit.short_sha, style="yellow")
    text.append(f"  {when}  ", style="dim")
    text.append(f"{author:<{_MAX_AUTHOR_WIDTH}}", style="cyan")
    text.append(f"  {commit.summary}")
    return text


class CommitList(textual.widgets.OptionList):
    """Scrollable commit history; option ids are full commit SHAs."""

    _commits: list[CommitSummary]

    def __init__(
        self, commits: list[CommitSummary], *, id: str | None = None, classes: str | None = None
    ) -> None:
        options = [
            textual.widgets.option_list.Option(format_commit(commit), id=commit.sha)
            for commit in commits
        ]
        super().__init__(*options, id=id, classes=classes)
        self._commits = list(commits)

    @property
    def commits(self) -> list[CommitSummary]:
        return self._commits

    def commit_at(self, index: int | None) -> CommitSummary | None:
        """Return the commit at an option index, or None if out of range."""
        if index is None or not 0 <= index < len(self._commits):
            return None
        return self._commits[index]
