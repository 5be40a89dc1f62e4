"""GitHub REST client used to open release-branch merge pull requests."""

from __future__ import annotations

import logging
from typing import Any

import requests

from matterbuild.server.errors import AppError, ConnectionFailed

logger = logging.getLogger(__name__)


class GitHubClient:
    def __init__(
        self,
        repo: str,
        token: str = "",
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
    ) -> None:
        self.repo = repo
        self.token = token.strip() or None
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def open_merge_pull_request(self, release_branch: str, base: str = "master") -> str:
        """Open a PR merging ``release_branch`` into ``base`` and return a summary."""

        if not self.token:
            raise AppError("GitHub token is not configured; cannot open the merge pull request.")
        payload = self._request(
            "POST",
            f"/repos/{self.repo}/pulls",
            json={
                "title": f"Merge {release_branch} to {base}",
                "head": release_branch,
                "base": base,
                "body": f"Automated merge of `{release_branch}` into `{base}`.",
                "maintainer_can_modify": True,
            },
        )
        url = str(payload.get("html_url", ""))
        number = payload.get("number", "")
        logger.info("Opened merge pull request %s for %s", url, release_branch)
        return f"Pull request #{number} created: {url}"

    def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                json=json,
                timeout=15,
            )
        except requests.RequestException as exc:
            raise ConnectionFailed("Unable to reach GitHub", exc) from exc

        if response.status_code == 422:
            raise AppError(
                "GitHub refused the pull request (already open or nothing to merge)",
                RuntimeError(_error_message(response)),
            )
        if response.status_code >= 400:
            raise AppError(
                f"GitHub API returned {response.status_code}",
                RuntimeError(_error_message(response)),
            )
        if not response.content:
            return {}
        body = response.json()
        return body if isinstance(body, dict) else {}


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if not isinstance(payload, dict):
        return ""
    return str(payload.get("message", ""))
