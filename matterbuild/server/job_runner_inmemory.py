"""In-memory job runner for deterministic tests and local dry runs."""

from __future__ import annotations

from typing import Union

from matterbuild.server.errors import AppError, InvokeRejected, JobNotFound
from matterbuild.server.job_runner import (
    BuildPoll,
    BuildState,
    BuildSummary,
    InvocationHandle,
)

PollStep = Union[BuildPoll, AppError]


class InMemoryJobRunner:
    """Records invocations and replays scripted poll sequences per job."""

    name = "inmemory"

    def __init__(self, jobs: set[str] | None = None) -> None:
        self.jobs = set(jobs or ())
        self.invocations: list[InvocationHandle] = []
        self.polls: list[InvocationHandle] = []
        self.configs: dict[str, str] = {}
        self.config_updates: list[tuple[str, str]] = []
        self.summaries: dict[str, BuildSummary] = {}
        self.artifacts: dict[str, str] = {}
        self.rejected_jobs: set[str] = set()
        self._next_numbers: dict[str, int] = {}
        self._scripts: dict[str, list[PollStep]] = {}

    def script_build(self, job: str, steps: list[PollStep]) -> None:
        """Queue poll answers for the next build of ``job``; the last one repeats."""

        self._scripts[job] = list(steps)

    def finish_with(self, job: str, result: str) -> None:
        self.script_build(job, [BuildPoll(state=BuildState.FINISHED, result=result)])

    def next_build_number(self, job: str) -> int:
        self._require(job)
        return self._next_numbers.get(job, 1)

    def invoke(
        self, job: str, parameters: dict[str, str] | None = None, build_number: int = 0
    ) -> InvocationHandle:
        self._require(job)
        if job in self.rejected_jobs:
            raise InvokeRejected(f"Unable to invoke job {job}")
        assigned = self._next_numbers.get(job, 1)
        self._next_numbers[job] = assigned + 1
        handle = InvocationHandle(
            job=job,
            build_number=build_number or assigned,
            parameters={key: str(value) for key, value in (parameters or {}).items()},
        )
        self.invocations.append(handle)
        return handle

    def poll_build(self, handle: InvocationHandle) -> BuildPoll:
        self.polls.append(handle)
        steps = self._scripts.get(handle.job)
        if not steps:
            return BuildPoll(state=BuildState.FINISHED, result="SUCCESS")
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, AppError):
            raise step
        return step

    def latest_result(self, job: str) -> BuildSummary:
        self._require(job)
        summary = self.summaries.get(job)
        if summary is None:
            raise JobNotFound(f"No builds recorded for {job}")
        return summary

    def get_job_config(self, job: str) -> str:
        self._require(job)
        if job not in self.configs:
            raise JobNotFound(f"Unable to get job config for {job}")
        return self.configs[job]

    def update_job_config(self, job: str, config_xml: str) -> None:
        self._require(job)
        self.configs[job] = config_xml
        self.config_updates.append((job, config_xml))

    def latest_artifact_text(self, job: str) -> str:
        self._require(job)
        if job not in self.artifacts:
            raise JobNotFound(f"No artifacts on the last successful build of {job}")
        return self.artifacts[job]

    def invoked_jobs(self) -> list[str]:
        return [handle.job for handle in self.invocations]

    def _require(self, job: str) -> None:
        if self.jobs and job not in self.jobs:
            raise JobNotFound(f"Unable to get job {job}")
