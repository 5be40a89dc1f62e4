from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
import requests

from matterbuild.server.errors import (
    ConfigUpdateFailed,
    ConnectionFailed,
    JobNotFound,
    TransientPollError,
)
from matterbuild.server.job_runner import (
    BuildState,
    BuildStatus,
    InvocationHandle,
    build_job_runner,
)
from matterbuild.server.job_runner_api import JenkinsAPIRunner
from matterbuild.server.job_runner_inmemory import InMemoryJobRunner
from matterbuild.shared.settings import BuildSettings


@dataclass
class FakeResponse:
    status_code: int
    payload: Any = None

    @property
    def content(self) -> bytes:
        if self.payload is None:
            return b""
        return b"json"

    @property
    def text(self) -> str:
        return self.payload if isinstance(self.payload, str) else ""

    def json(self) -> Any:
        if isinstance(self.payload, str):
            raise ValueError("not json")
        return self.payload


class FakeSession:
    def __init__(self, responses: list[FakeResponse | Exception]) -> None:
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        if not self.responses:
            raise RuntimeError("No fake response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _runner(session: FakeSession, use_crumb: bool = False) -> JenkinsAPIRunner:
    return JenkinsAPIRunner(
        base_url="https://ci.example.com/",
        username="bot",
        password="secret",
        session=session,  # type: ignore[arg-type]
        use_crumb=use_crumb,
    )


def test_build_job_runner_defaults_to_inmemory_without_jenkins_url() -> None:
    runner = build_job_runner(BuildSettings())
    assert isinstance(runner, InMemoryJobRunner)


def test_build_job_runner_uses_api_when_jenkins_configured() -> None:
    runner = build_job_runner(BuildSettings(jenkins_url="https://ci.example.com"))
    assert isinstance(runner, JenkinsAPIRunner)
    assert runner.base_url == "https://ci.example.com"


def test_build_job_runner_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError, match="Unsupported job runner"):
        build_job_runner(BuildSettings(job_runner="gitlab"))


def test_invoke_with_parameters_sends_crumb_and_keeps_expected_number() -> None:
    session = FakeSession(
        [
            FakeResponse(200, {"nextBuildNumber": 12}),
            FakeResponse(200, {"crumbRequestField": "Jenkins-Crumb", "crumb": "abc"}),
            FakeResponse(201, None),
        ]
    )
    runner = _runner(session, use_crumb=True)

    expected = runner.next_build_number("release")
    handle = runner.invoke("release", {"MM_VERSION": "5.3.0"}, build_number=expected)

    assert expected == 12
    assert handle == InvocationHandle(
        job="release", build_number=12, parameters={"MM_VERSION": "5.3.0"}
    )
    invoke_call = session.calls[2]
    assert invoke_call["method"] == "POST"
    assert invoke_call["url"] == "https://ci.example.com/job/release/buildWithParameters"
    assert invoke_call["params"] == {"MM_VERSION": "5.3.0"}
    assert invoke_call["headers"] == {"Jenkins-Crumb": "abc"}
    assert invoke_call["auth"] == ("bot", "secret")


def test_invoke_folder_job_without_parameters_uses_build_endpoint() -> None:
    session = FakeSession([FakeResponse(200, {"property": [{}]}), FakeResponse(201, None)])
    runner = _runner(session)

    runner.invoke("build-pushes/job/release-gitlab")

    assert session.calls[0]["url"] == (
        "https://ci.example.com/job/build-pushes/job/release-gitlab/api/json"
    )
    assert session.calls[0]["params"] == {"tree": "property[parameterDefinitions[name]]"}
    assert session.calls[1]["url"] == (
        "https://ci.example.com/job/build-pushes/job/release-gitlab/build"
    )


def test_invoke_parameterized_job_with_defaults_uses_build_with_parameters() -> None:
    session = FakeSession(
        [
            FakeResponse(
                200,
                {"property": [{}, {"parameterDefinitions": [{"name": "MM_VERSION"}]}]},
            ),
            FakeResponse(201, None),
        ]
    )
    runner = _runner(session)

    handle = runner.invoke("pre-release")

    assert handle.parameters == {}
    invoke_call = session.calls[1]
    assert invoke_call["method"] == "POST"
    assert invoke_call["url"] == "https://ci.example.com/job/pre-release/buildWithParameters"
    assert invoke_call["params"] is None


def test_invoke_maps_missing_job_and_connection_errors() -> None:
    session = FakeSession(
        [FakeResponse(404, None), requests.ConnectionError("connection refused")]
    )
    runner = _runner(session)

    with pytest.raises(JobNotFound):
        runner.invoke("nope")
    with pytest.raises(ConnectionFailed, match="connection refused"):
        runner.invoke("release")


def test_poll_build_maps_states() -> None:
    session = FakeSession(
        [
            FakeResponse(404, None),
            FakeResponse(503, None),
            FakeResponse(200, {"building": True, "result": None}),
            FakeResponse(200, {"building": False, "result": "ABORTED"}),
        ]
    )
    runner = _runner(session)
    handle = InvocationHandle(job="release", build_number=7)

    with pytest.raises(JobNotFound):
        runner.poll_build(handle)
    with pytest.raises(TransientPollError):
        runner.poll_build(handle)
    assert runner.poll_build(handle).state == BuildState.RUNNING
    finished = runner.poll_build(handle)
    assert finished.state == BuildState.FINISHED
    assert finished.result == "ABORTED"
    assert session.calls[0]["url"] == "https://ci.example.com/job/release/7/api/json"


def test_latest_result_combines_job_color_and_last_build() -> None:
    session = FakeSession(
        [
            FakeResponse(200, {"color": "red_anime"}),
            FakeResponse(200, {"result": "FAILURE", "duration": 180000, "building": False}),
        ]
    )
    summary = _runner(session).latest_result("release")

    assert summary.status == "FAILURE"
    assert summary.duration_ms == 180000
    assert summary.color == "#ee2116"


def test_job_config_round_trip_and_update_failure() -> None:
    session = FakeSession(
        [
            FakeResponse(200, "<project/>"),
            FakeResponse(500, None),
        ]
    )
    runner = _runner(session)

    assert runner.get_job_config("ci-1") == "<project/>"
    with pytest.raises(ConfigUpdateFailed):
        runner.update_job_config("ci-1", "<project></project>")
    assert session.calls[1]["data"] == b"<project></project>"


def test_latest_artifact_text_downloads_first_artifact() -> None:
    session = FakeSession(
        [
            FakeResponse(200, {"artifacts": [{"fileName": "b.txt", "relativePath": "out/b.txt"}]}),
            FakeResponse(200, 'PLT_BRANCH="release-5.3"\n'),
        ]
    )

    text = _runner(session).latest_artifact_text("translation-check")

    assert text == 'PLT_BRANCH="release-5.3"\n'
    assert session.calls[1]["url"] == (
        "https://ci.example.com/job/translation-check/lastSuccessfulBuild/artifact/out/b.txt"
    )


def test_build_status_parse_falls_back_to_unknown() -> None:
    assert BuildStatus.parse("success") == BuildStatus.SUCCESS
    assert BuildStatus.parse(None) == BuildStatus.UNKNOWN
    assert BuildStatus.parse("NOT_BUILT") == BuildStatus.UNKNOWN
