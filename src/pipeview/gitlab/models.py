"""Validation models for the GitLab REST payloads pipeview reads."""

from __future__ import annotations

import pydantic

from pipeview.types import Job, Pipeline


class PipelinePayload(pydantic.BaseModel):
    """Entry of GET /projects/:id/pipelines."""

    model_config = pydantic.ConfigDict(extra="ignore")

    id: int
    status: str
    ref: str | None = None
    sha: str
    web_url: str | None = None

    def to_pipeline(self) -> Pipeline:
        return Pipeline(
            id=self.id,
            status=self.status,
            ref=self.ref,
            sha=self.sha,
            web_url=self.web_url,
        )


class JobPayload(pydantic.BaseModel):
    """Entry of GET /projects/:id/pipelines/:pipeline_id/jobs."""

    model_config = pydantic.ConfigDict(extra="ignore")

    id: int
    name: str
    status: str
    stage: str
    allow_failure: bool = False
    duration: float | None = None
    started_at: str | None = None
    web_url: str | None = None

    @pydantic.field_validator("allow_failure", mode="before")
    @classmethod
    def parse_allow_failure(cls, v: object) -> object:
        """GitLab sends null for jobs created before the field existed."""
        return False if v is None else v

    def to_job(self) -> Job:
        return Job(
            id=self.id,
            name=self.name,
            stage=self.stage,
            status=self.status,
            allow_failure=self.allow_failure,
            duration=self.duration,
            started_at=self.started_at,
            web_url=self.web_url,
        )


PIPELINE_LIST = pydantic.TypeAdapter(list[PipelinePayload])
JOB_LIST = pydantic.TypeAdapter(list[JobPayload])
