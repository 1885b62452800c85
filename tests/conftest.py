from __future__ import annotations

import logging
import pathlib
import subprocess
import sys
from collections.abc import Callable, Generator
from typing import TYPE_CHECKING

import pytest

from pipeview.config import io as config_io

# Add tests directory to sys.path so helpers.py can be imported
_tests_dir = pathlib.Path(__file__).parent
if str(_tests_dir) not in sys.path:
    sys.path.insert(0, str(_tests_dir))

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

# Type alias for git_repo fixture: (repo_path, commit_fn)
GitRepo = tuple[pathlib.Path, Callable[[str], str]]


def init_git_repo(path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Initialize a git repo with user config at the given path.

    GIT_CONFIG_GLOBAL points at a file outside the repository so the user
    config is not committed.
    """
    abs_path = path.resolve()
    config_file = abs_path.parent / f".gitconfig_test_{abs_path.name}"
    config_file.write_text("[user]\n\temail = test@test.com\n\tname = Test\n")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(config_file))
    subprocess.run(["git", "init", "-b", "main"], cwd=abs_path, check=True, capture_output=True)


@pytest.fixture
def git_repo(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> GitRepo:
    """Create a git repo in tmp_path, return (path, commit_fn)."""
    repo_path = tmp_path / "repo"
    repo_path.mkdir()
    init_git_repo(repo_path, monkeypatch)
    counter = iter(range(1_000_000))

    def commit(message: str) -> str:
        (repo_path / "file.txt").write_text(f"{message} {next(counter)}\n")
        subprocess.run(["git", "add", "."], cwd=repo_path, check=True, capture_output=True)
        subprocess.run(
            ["git", "commit", "-m", message], cwd=repo_path, check=True, capture_output=True
        )
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"], cwd=repo_path, capture_output=True, text=True, check=True
        )
        return result.stdout.strip()

    return repo_path, commit


@pytest.fixture
def token_store(
    tmp_path: pathlib.Path, mocker: MockerFixture, monkeypatch: pytest.MonkeyPatch
) -> pathlib.Path:
    """Point the user token store at tmp_path and clear the token env var."""
    path = tmp_path / "user-config" / "tokens.yaml"
    mocker.patch.object(config_io, "get_token_store_path", return_value=path)
    monkeypatch.delenv(config_io.TOKEN_ENV_VAR, raising=False)
    return path


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None]:
    """CLI commands reconfigure the root logger; restore it between tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
