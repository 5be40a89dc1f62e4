from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
import requests

from matterbuild.server.background import COMPLETED, FAILED, STOPPED, BackgroundTasks
from matterbuild.server.errors import AppError, ValidationError
from matterbuild.server.job_config import JobConfigEditor
from matterbuild.server.job_runner import BuildPoll, BuildState
from matterbuild.server.job_runner_inmemory import InMemoryJobRunner
from matterbuild.server.poller import BuildPoller
from matterbuild.server.releases import (
    FutureReleaseProbe,
    ReleaseOrchestrator,
    parse_release_version,
)
from matterbuild.shared.settings import BuildSettings

CONFIG_XML = (
    "<project><properties><hudson.model.ParametersDefinitionProperty><parameterDefinitions>"
    "<hudson.model.StringParameterDefinition><defaultValue>master</defaultValue>"
    "</hudson.model.StringParameterDefinition></parameterDefinitions>"
    "</hudson.model.ParametersDefinitionProperty></properties><triggers>"
    "<jenkins.triggers.ReverseBuildTrigger><upstreamProjects>x</upstreamProjects>"
    "</jenkins.triggers.ReverseBuildTrigger></triggers></project>"
)


@dataclass
class FakeArtifactResponse:
    status_code: int


class FakeArtifactSession:
    def __init__(self, status_code: int | None) -> None:
        self.status_code = status_code
        self.urls: list[str] = []
        self.kwargs: list[dict[str, Any]] = []

    def head(self, url: str, **kwargs: Any) -> FakeArtifactResponse:
        self.urls.append(url)
        self.kwargs.append(kwargs)
        if self.status_code is None:
            raise requests.ConnectionError("offline")
        return FakeArtifactResponse(self.status_code)


def _settings() -> BuildSettings:
    return BuildSettings(
        pre_checks_job="prechecks",
        release_job="release",
        pre_release_job="pre-release",
        release_deploy_job="deploy",
        ci_server_jobs=("ci-linux",),
        release_artifact_base="http://releases.example.com",
    )


def _orchestrator(
    runner: InMemoryJobRunner, artifact_status: int | None = 404
) -> tuple[ReleaseOrchestrator, BackgroundTasks, FakeArtifactSession]:
    settings = _settings()
    tasks = BackgroundTasks(inline=True)
    session = FakeArtifactSession(artifact_status)
    orchestrator = ReleaseOrchestrator(
        settings=settings,
        runner=runner,
        poller=BuildPoller(runner, sleep=lambda _seconds: None),
        editor=JobConfigEditor(runner, settings),
        tasks=tasks,
        probe=FutureReleaseProbe(settings.release_artifact_base, session=session),  # type: ignore[arg-type]
    )
    return orchestrator, tasks, session


def _runner_with_configs() -> InMemoryJobRunner:
    runner = InMemoryJobRunner()
    runner.configs = {"ci-linux": CONFIG_XML, "pre-release": CONFIG_XML}
    return runner


@pytest.mark.parametrize("version", ["5.3.0", "0.0.1", "10.20.30"])
def test_final_versions_have_no_rc_part(version: str) -> None:
    descriptor = parse_release_version(version)
    assert descriptor.rc == ""
    assert descriptor.is_first_minor_release is False
    assert descriptor.full_version == version


@pytest.mark.parametrize(
    ("version", "first_minor"),
    [("5.3.0-rc1", True), ("5.3.1-rc1", False), ("5.3.0-rc2", False), ("5.10.0-rc1", True)],
)
def test_first_minor_release_detection(version: str, first_minor: bool) -> None:
    descriptor = parse_release_version(version)
    assert descriptor.is_first_minor_release is first_minor
    assert descriptor.full_version == version


@pytest.mark.parametrize("version", ["v5.3", "5.3", "5.3.0.1", "5x3x0", "5.3.0-rc", "5.3.0-beta1"])
def test_malformed_versions_are_rejected_without_remote_calls(version: str) -> None:
    runner = InMemoryJobRunner()
    orchestrator, _tasks, session = _orchestrator(runner)

    with pytest.raises(ValidationError):
        orchestrator.cut_release(parse_release_version(version))

    assert runner.invocations == []
    assert session.urls == []


def test_descriptor_derived_names() -> None:
    descriptor = parse_release_version("5.3.0-rc2")
    assert descriptor.rc_suffix == "-rc2"
    assert descriptor.release_branch == "release-5.3"
    assert descriptor.next_minor == "5.4.0"
    assert descriptor.job_parameters() == {
        "MM_VERSION": "5.3.0",
        "MM_RC": "-rc2",
        "IS_FIRST_MINOR_RELEASE": "false",
        "DRY_RUN": "false",
    }


def test_backport_guard_refuses_when_future_release_exists() -> None:
    runner = InMemoryJobRunner()
    orchestrator, _tasks, session = _orchestrator(runner, artifact_status=200)

    with pytest.raises(ValidationError, match="backport"):
        orchestrator.cut_release(parse_release_version("5.3.1"))

    assert session.urls == [
        "http://releases.example.com/5.4.0-rc1/mattermost-5.4.0-rc1-linux-amd64.tar.gz"
    ]
    assert session.kwargs == [{"allow_redirects": True, "timeout": 10}]
    assert runner.invocations == []


def test_backport_flag_skips_the_artifact_check() -> None:
    runner = _runner_with_configs()
    orchestrator, _tasks, session = _orchestrator(runner, artifact_status=200)

    orchestrator.cut_release(parse_release_version("5.2.4", backport=True))

    assert session.urls == []
    assert runner.invoked_jobs() == ["prechecks", "release"]


def test_unreachable_artifact_host_allows_the_cut() -> None:
    runner = _runner_with_configs()
    orchestrator, _tasks, _session = _orchestrator(runner, artifact_status=None)

    orchestrator.cut_release(parse_release_version("5.3.0-rc1", dry_run=True))

    assert runner.invoked_jobs() == ["prechecks", "release"]


def test_failed_prechecks_abort_before_the_release_job() -> None:
    runner = InMemoryJobRunner()
    runner.finish_with("prechecks", "FAILURE")
    orchestrator, tasks, _session = _orchestrator(runner)

    with pytest.raises(AppError, match="Pre-checks failed!.*FAILURE"):
        orchestrator.cut_release(parse_release_version("5.3.0-rc1", dry_run=True))

    assert runner.invoked_jobs() == ["prechecks"]
    assert tasks.drain() == []


def test_full_cut_runs_every_stage_in_order() -> None:
    runner = _runner_with_configs()
    orchestrator, tasks, _session = _orchestrator(runner)

    orchestrator.cut_release(parse_release_version("5.3.0-rc1"))

    assert runner.invoked_jobs() == ["prechecks", "release", "deploy", "pre-release"]
    release_call = runner.invocations[1]
    assert release_call.parameters["IS_FIRST_MINOR_RELEASE"] == "true"
    assert release_call.parameters["MM_RC"] == "-rc1"
    assert runner.invocations[2].parameters == {"MM_VERSION": "5.3.0-rc1"}
    assert [job for job, _ in runner.config_updates] == ["ci-linux", "pre-release"]
    assert "release-5.3" in runner.configs["ci-linux"]
    assert "mattermost-platform/release-5.3" in runner.configs["ci-linux"]
    assert "5.3.0-rc1" in runner.configs["pre-release"]
    assert [outcome.status for outcome in tasks.drain()] == [COMPLETED]


def test_dry_run_skips_ci_and_pre_release_updates() -> None:
    runner = _runner_with_configs()
    orchestrator, tasks, _session = _orchestrator(runner)

    orchestrator.cut_release(parse_release_version("5.3.0", dry_run=True))

    assert runner.invoked_jobs() == ["prechecks", "release"]
    assert runner.invocations[1].parameters["DRY_RUN"] == "true"
    assert runner.config_updates == []
    assert tasks.drain()[0].status == COMPLETED


def test_failed_release_job_stops_silently() -> None:
    runner = _runner_with_configs()
    runner.finish_with("release", "FAILURE")
    orchestrator, tasks, _session = _orchestrator(runner)

    orchestrator.cut_release(parse_release_version("5.3.0"))

    assert runner.invoked_jobs() == ["prechecks", "release"]
    outcomes = tasks.drain()
    assert outcomes[0].status == STOPPED
    assert "FAILURE" in outcomes[0].detail


def test_continuation_errors_are_recorded_not_raised() -> None:
    runner = InMemoryJobRunner()
    runner.script_build("release", [BuildPoll(state=BuildState.FINISHED, result="SUCCESS")])
    orchestrator, tasks, _session = _orchestrator(runner)

    orchestrator.cut_release(parse_release_version("5.3.0"))

    # no job configs are known, so both config edits fail but the jobs still run
    assert runner.invoked_jobs() == ["prechecks", "release", "deploy", "pre-release"]
    outcome = tasks.drain()[0]
    assert outcome.status == FAILED
    assert "set CI branch" in outcome.detail
    assert "set pre-release target" in outcome.detail
