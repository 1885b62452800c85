import contextlib
import logging
import os
import pathlib
import tempfile
from typing import Any

import pydantic
import ruamel.yaml

from pipeview import exceptions, git
from pipeview.config import models
from pipeview.gitlab import remote

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "PIPEVIEW_GITLAB_TOKEN"


def get_local_config_path(repo_root: pathlib.Path) -> pathlib.Path:
    """Get repository-local config path (.pipeview/config.yaml)."""
    return repo_root / ".pipeview" / "config.yaml"


def get_token_store_path() -> pathlib.Path:
    """Get user-level token store path (~/.config/pipeview/tokens.yaml)."""
    return pathlib.Path.home() / ".config" / "pipeview" / "tokens.yaml"


def _load_yaml(path: pathlib.Path) -> dict[str, Any]:
    """Load a YAML mapping, treating a missing or empty file as {}."""
    if not path.exists():
        return {}

    try:
        yaml = ruamel.yaml.YAML(typ="safe")
        with path.open() as f:
            data = yaml.load(f)
    except ruamel.yaml.YAMLError as e:
        raise exceptions.ConfigError(f"Invalid YAML in {path}: {e}") from e
    except PermissionError:
        raise exceptions.ConfigError(f"Permission denied reading {path}") from None
    except OSError as e:
        raise exceptions.ConfigError(f"Error reading {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise exceptions.ConfigError(f"Expected a mapping at the top of {path}")
    return dict(data)


def _save_yaml(path: pathlib.Path, data: dict[str, Any], *, mode: int = 0o644) -> None:
    """Save YAML atomically using temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            os.fchmod(fd, mode)
            yaml = ruamel.yaml.YAML(typ="safe")
            yaml.default_flow_style = False
            with os.fdopen(fd, "w") as f:
                yaml.dump(data, f)
            os.rename(tmp_path, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise
    except PermissionError:
        raise exceptions.ConfigError(f"Permission denied writing {path}") from None
    except OSError as e:
        raise exceptions.ConfigError(f"Error writing {path}: {e}") from e


def load_config(repo_root: pathlib.Path) -> models.PipeviewConfig:
    """Load and validate the repository-local config; defaults if absent."""
    path = get_local_config_path(repo_root)
    data = _load_yaml(path)
    try:
        return models.PipeviewConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise exceptions.ConfigError(f"Invalid config in {path}:\n{e}") from e


def _load_tokens() -> dict[str, str]:
    data = _load_yaml(get_token_store_path())
    return {str(host): str(token) for host, token in data.items() if token}


def get_token(host: str) -> str | None:
    """Get the access token for a host; the environment variable wins over the store."""
    if token := os.environ.get(TOKEN_ENV_VAR, "").strip():
        return token
    return _load_tokens().get(host)


def save_token(host: str, token: str) -> None:
    """Store a host's access token in the user token store (mode 0600)."""
    token = token.strip()
    if not token:
        raise exceptions.ConfigError("Access token cannot be empty")
    tokens = _load_tokens()
    tokens[host] = token
    _save_yaml(get_token_store_path(), tokens, mode=0o600)
    logger.info(f"Saved access token for {host}")


def resolve_credentials(
    repo_root: pathlib.Path, config: models.PipeviewConfig
) -> models.GitLabCredentials | None:
    """Combine config, git remote and token store into credentials.

    Returns None when the GitLab location or the token cannot be determined;
    the browser still works without the pipeline panel in that case.
    """
    url = config.gitlab.url
    project = config.gitlab.project

    if url is None or project is None:
        remote_url = git.get_remote_url(repo_root)
        info = remote.parse_remote_url(remote_url) if remote_url else None
        if info is None:
            logger.debug("GitLab location not configured and not inferable from remotes")
            return None
        url = url or info.url
        project = project or info.project

    host = models.url_host(url)
    token = get_token(host)
    if token is None:
        logger.debug(f"No access token for {host}")
        return None

    return models.GitLabCredentials(url=url, project=project, token=pydantic.SecretStr(token))
