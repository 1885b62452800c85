from typing import override


class PipeviewError(Exception):
    """Base exception for pipeview errors."""

    def format_user_message(self) -> str:
        """Format a user-friendly error message."""
        return str(self)

    def get_suggestion(self) -> str | None:
        """Return actionable suggestion for resolving the error."""
        return None


class ConfigError(PipeviewError):
    """Raised when configuration is invalid or cannot be read/written."""

    pass


class GitError(PipeviewError):
    """Raised when the git repository cannot be read."""

    pass


class GitLabError(PipeviewError):
    """Base class for errors talking to the GitLab API."""

    pass


class AuthError(GitLabError):
    """Raised when GitLab rejects the access token (401/403).

    Kept distinct from TransportError: retrying cannot help until the
    credentials are fixed.
    """

    @override
    def get_suggestion(self) -> str:
        return "Check the access token with 'pipeview token set <host>'"


class TransportError(GitLabError):
    """Raised on timeouts, connection failures, non-2xx responses and malformed bodies."""

    @override
    def get_suggestion(self) -> str:
        return "Check the network connection and GitLab URL, then retry"


class NotFoundError(GitLabError):
    """Base class for a remote resource that does not exist."""

    pass


class PipelineNotFoundError(NotFoundError):
    """Raised when no pipeline exists for a commit. Not a failure for display purposes."""

    _commit: str

    def __init__(self, commit: str) -> None:
        self._commit = commit
        super().__init__(f"No pipeline found for commit {commit[:8]}")

    @property
    def commit(self) -> str:
        return self._commit

    @override
    def __reduce__(self) -> tuple[type, tuple[str]]:
        return (self.__class__, (self._commit,))


class JobLogNotFoundError(NotFoundError):
    """Raised when a job has no log (never started, or erased)."""

    _job_id: int

    def __init__(self, job_id: int) -> None:
        self._job_id = job_id
        super().__init__(f"No log available for job {job_id}")

    @property
    def job_id(self) -> int:
        return self._job_id

    @override
    def __reduce__(self) -> tuple[type, tuple[int]]:
        return (self.__class__, (self._job_id,))
