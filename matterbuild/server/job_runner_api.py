"""Jenkins REST API job runner."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests

from matterbuild.server.errors import (
    ConfigUpdateFailed,
    ConnectionFailed,
    InvokeRejected,
    JobNotFound,
    TransientPollError,
)
from matterbuild.server.job_runner import (
    BuildPoll,
    BuildState,
    BuildStatus,
    BuildSummary,
    InvocationHandle,
)

logger = logging.getLogger(__name__)


class JenkinsAPIRunner:
    name = "api"

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        session: requests.Session | None = None,
        timeout_s: int = 15,
        use_crumb: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.auth = (username, password) if username else None
        self.timeout_s = timeout_s
        self.use_crumb = use_crumb
        self._crumb: dict[str, str] | None = None

    def next_build_number(self, job: str) -> int:
        payload = self._get_json(f"{_job_path(job)}/api/json", params={"tree": "nextBuildNumber"})
        try:
            return int(payload.get("nextBuildNumber", 0))
        except (TypeError, ValueError) as exc:
            raise ConnectionFailed(f"Unexpected job description for {job}", exc) from exc

    def invoke(
        self, job: str, parameters: dict[str, str] | None = None, build_number: int = 0
    ) -> InvocationHandle:
        params = {key: str(value) for key, value in (parameters or {}).items()}
        # /build answers 400 for parameterized jobs, even when relying on defaults
        parameterized = bool(params) or self._defines_parameters(job)
        endpoint = "buildWithParameters" if parameterized else "build"
        response = self._request(
            "POST",
            f"{_job_path(job)}/{endpoint}",
            params=params or None,
            headers=self._crumb_headers(),
        )
        if response.status_code == 404:
            raise JobNotFound(f"Unable to get job {job}")
        if response.status_code >= 400:
            raise InvokeRejected(
                f"Unable to invoke job {job}",
                RuntimeError(f"HTTP {response.status_code}"),
            )
        logger.info("Invoked job %s (expected build %s)", job, build_number or "unknown")
        return InvocationHandle(job=job, build_number=build_number, parameters=params)

    def poll_build(self, handle: InvocationHandle) -> BuildPoll:
        response = self._request(
            "GET",
            f"{_job_path(handle.job)}/{handle.build_number}/api/json",
            params={"tree": "building,result"},
        )
        if response.status_code == 404:
            raise JobNotFound(f"Build {handle.job} #{handle.build_number} not found")
        if response.status_code >= 500:
            raise TransientPollError(
                f"Jenkins returned {response.status_code} polling {handle.job}"
            )
        if response.status_code >= 400:
            raise JobNotFound(
                f"Build {handle.job} #{handle.build_number} not readable",
                RuntimeError(f"HTTP {response.status_code}"),
            )
        payload = _json_body(response)
        if payload.get("building"):
            return BuildPoll(state=BuildState.RUNNING)
        result = payload.get("result")
        if result is None:
            return BuildPoll(state=BuildState.UNSTARTED)
        return BuildPoll(state=BuildState.FINISHED, result=str(result))

    def latest_result(self, job: str) -> BuildSummary:
        job_payload = self._get_json(f"{_job_path(job)}/api/json", params={"tree": "color"})
        build_payload = self._get_json(
            f"{_job_path(job)}/lastBuild/api/json",
            params={"tree": "result,duration,building"},
        )
        if build_payload.get("building"):
            status = BuildStatus.RUNNING
        else:
            status = BuildStatus.parse(build_payload.get("result"))
        return BuildSummary(
            status=status.value,
            duration_ms=int(build_payload.get("duration") or 0),
            color=_display_color(str(job_payload.get("color", ""))),
        )

    def get_job_config(self, job: str) -> str:
        response = self._request("GET", f"{_job_path(job)}/config.xml")
        if response.status_code == 404:
            raise JobNotFound(f"Unable to get job {job}")
        if response.status_code >= 400:
            raise ConnectionFailed(
                "Unable to get job config", RuntimeError(f"HTTP {response.status_code}")
            )
        return response.text

    def update_job_config(self, job: str, config_xml: str) -> None:
        headers = {"Content-Type": "application/xml; charset=utf-8"}
        headers.update(self._crumb_headers())
        response = self._request(
            "POST",
            f"{_job_path(job)}/config.xml",
            data=config_xml.encode("utf-8"),
            headers=headers,
        )
        if response.status_code == 404:
            raise JobNotFound(f"Unable to get job {job}")
        if response.status_code >= 400:
            raise ConfigUpdateFailed(
                "Unable to update job config", RuntimeError(f"HTTP {response.status_code}")
            )
        logger.info("Updated configuration of job %s", job)

    def latest_artifact_text(self, job: str) -> str:
        payload = self._get_json(
            f"{_job_path(job)}/lastSuccessfulBuild/api/json",
            params={"tree": "artifacts[fileName,relativePath]"},
        )
        artifacts = payload.get("artifacts") or []
        if not artifacts:
            raise JobNotFound(f"No artifacts on the last successful build of {job}")
        relative_path = str(artifacts[0].get("relativePath", ""))
        response = self._request(
            "GET", f"{_job_path(job)}/lastSuccessfulBuild/artifact/{quote(relative_path)}"
        )
        if response.status_code >= 400:
            raise JobNotFound(
                f"Unable to download artifact {relative_path} of {job}",
                RuntimeError(f"HTTP {response.status_code}"),
            )
        return response.text

    def _defines_parameters(self, job: str) -> bool:
        payload = self._get_json(
            f"{_job_path(job)}/api/json",
            params={"tree": "property[parameterDefinitions[name]]"},
        )
        for prop in payload.get("property") or []:
            if isinstance(prop, dict) and prop.get("parameterDefinitions"):
                return True
        return False

    def _crumb_headers(self) -> dict[str, str]:
        if not self.use_crumb:
            return {}
        if self._crumb is None:
            response = self._request("GET", "/crumbIssuer/api/json")
            if response.status_code != 200:
                # CSRF protection disabled on this server
                self._crumb = {}
            else:
                payload = _json_body(response)
                field = str(payload.get("crumbRequestField", ""))
                crumb = str(payload.get("crumb", ""))
                self._crumb = {field: crumb} if field and crumb else {}
        return dict(self._crumb)

    def _get_json(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        response = self._request("GET", path, params=params)
        if response.status_code == 404:
            raise JobNotFound(f"Unable to get {path}")
        if response.status_code >= 400:
            raise ConnectionFailed(
                f"Jenkins request failed for {path}", RuntimeError(f"HTTP {response.status_code}")
            )
        return _json_body(response)

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        try:
            return self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                params=params,
                data=data,
                headers=headers or {},
                auth=self.auth,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise ConnectionFailed("Unable to connect to jenkins!", exc) from exc


def _job_path(job: str) -> str:
    # folder jobs are addressed as "folder/job/name"
    segments = [quote(part) for part in job.strip("/").split("/")]
    return "/job/" + "/".join(segments)


def _json_body(response: requests.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


_COLOR_MAP = {
    "blue": "#0060aa",
    "red": "#ee2116",
    "yellow": "#f0ad4e",
    "aborted": "#9e9e9e",
    "disabled": "#9e9e9e",
    "notbuilt": "#9e9e9e",
    "grey": "#9e9e9e",
}


def _display_color(jenkins_color: str) -> str:
    base = jenkins_color.split("_", 1)[0].strip().lower()
    return _COLOR_MAP.get(base, "#9e9e9e")
