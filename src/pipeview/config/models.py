import re
import urllib.parse
from typing import Annotated

import pydantic

_URL_PATTERN = re.compile(r"^https?://[^/\s]+")


def url_host(url: str) -> str:
    """Host (with port, if any) of a base URL; the key in the token store."""
    return urllib.parse.urlsplit(url).netloc


def _validate_base_url(url: str) -> str:
    """Validate an http(s) GitLab base URL and drop trailing slashes."""
    url = url.strip()
    if not _URL_PATTERN.match(url):
        raise ValueError(f"must be an http(s) URL like https://gitlab.com, got: {url}")
    return url.rstrip("/")


class GitLabSettings(pydantic.BaseModel):
    """GitLab location. Either field may be omitted and inferred from the git remote."""

    model_config = pydantic.ConfigDict(extra="forbid")

    url: str | None = None
    # Numeric project id or a "group/subgroup/project" path
    project: str | None = None

    @pydantic.field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        return None if v is None else _validate_base_url(v)

    @pydantic.field_validator("project", mode="before")
    @classmethod
    def validate_project(cls, v: object) -> object:
        """Accept numeric ids from YAML and normalize surrounding slashes."""
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            v = v.strip().strip("/")
            if not v:
                raise ValueError("project cannot be empty")
        return v


class PanelSettings(pydantic.BaseModel):
    """Pipeline panel behaviour."""

    model_config = pydantic.ConfigDict(extra="forbid")

    request_timeout: Annotated[float, pydantic.Field(gt=0)] = 10.0
    cache_size: Annotated[int, pydantic.Field(gt=0)] = 100
    log_cache_size: Annotated[int, pydantic.Field(gt=0)] = 50
    frame_interval: Annotated[float, pydantic.Field(gt=0)] = 0.1
    commit_limit: Annotated[int, pydantic.Field(gt=0)] = 500
    visible: bool = True


class PipeviewConfig(pydantic.BaseModel):
    """Complete repository-local configuration schema (.pipeview/config.yaml)."""

    model_config = pydantic.ConfigDict(extra="forbid")

    gitlab: GitLabSettings = pydantic.Field(default_factory=GitLabSettings)
    panel: PanelSettings = pydantic.Field(default_factory=PanelSettings)


class GitLabCredentials(pydantic.BaseModel):
    """Everything needed to talk to one GitLab project."""

    model_config = pydantic.ConfigDict(frozen=True)

    url: str
    project: str
    token: pydantic.SecretStr

    @pydantic.field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_base_url(v)

    @property
    def host(self) -> str:
        return url_host(self.url)
