"""Job runner contract shared by the Jenkins REST client and the in-memory double."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from matterbuild.shared.settings import BuildSettings


class BuildStatus(str, Enum):
    """Build outcome in the remote system's own vocabulary."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    UNSTABLE = "UNSTABLE"
    ABORTED = "ABORTED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> "BuildStatus":
        normalized = str(value or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


class BuildState(str, Enum):
    UNSTARTED = "unstarted"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True)
class InvocationHandle:
    job: str
    build_number: int
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BuildPoll:
    state: BuildState
    result: str = ""


@dataclass(frozen=True)
class BuildSummary:
    status: str
    duration_ms: int
    color: str


class JobRunner(Protocol):
    name: str

    def next_build_number(self, job: str) -> int: ...

    def invoke(
        self, job: str, parameters: dict[str, str] | None = None, build_number: int = 0
    ) -> InvocationHandle: ...

    def poll_build(self, handle: InvocationHandle) -> BuildPoll: ...

    def latest_result(self, job: str) -> BuildSummary: ...

    def get_job_config(self, job: str) -> str: ...

    def update_job_config(self, job: str, config_xml: str) -> None: ...

    def latest_artifact_text(self, job: str) -> str: ...


def build_job_runner(settings: BuildSettings) -> JobRunner:
    """Pick the Jenkins REST client or the in-memory runner from settings."""

    selected = settings.job_runner.strip().lower()
    if not selected:
        selected = "api" if settings.jenkins_url else "inmemory"

    if selected == "api":
        from matterbuild.server.job_runner_api import JenkinsAPIRunner

        return JenkinsAPIRunner(
            base_url=settings.jenkins_url,
            username=settings.jenkins_username,
            password=settings.jenkins_password,
        )
    if selected == "inmemory":
        from matterbuild.server.job_runner_inmemory import InMemoryJobRunner

        return InMemoryJobRunner()
    raise ValueError(f"Unsupported job runner: {settings.job_runner}")
