"""Release-cut workflow: version grammar, backport guard and staged jobs."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass

import requests

from matterbuild.server.background import (
    COMPLETED,
    STOPPED,
    BackgroundTasks,
    ContinuationOutcome,
)
from matterbuild.server.errors import AppError, ValidationError
from matterbuild.server.job_config import JobConfigEditor
from matterbuild.server.job_runner import JobRunner
from matterbuild.server.poller import SUCCESS, BuildPoller
from matterbuild.shared.settings import BuildSettings

logger = logging.getLogger(__name__)

FINAL_VERSION_RE = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+$")
RC_VERSION_RE = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+-rc[0-9]+$")


@dataclass(frozen=True)
class ReleaseDescriptor:
    release: str
    rc: str = ""
    is_first_minor_release: bool = False
    backport: bool = False
    dry_run: bool = False

    @property
    def rc_suffix(self) -> str:
        return f"-{self.rc}" if self.rc else ""

    @property
    def full_version(self) -> str:
        return f"{self.release}{self.rc_suffix}"

    @property
    def short_release(self) -> str:
        return self.release.rsplit(".", 1)[0]

    @property
    def release_branch(self) -> str:
        return f"release-{self.short_release}"

    @property
    def next_minor(self) -> str:
        major, minor, _patch = self.release.split(".")
        return f"{major}.{int(minor) + 1}.0"

    def job_parameters(self) -> dict[str, str]:
        return {
            "MM_VERSION": self.release,
            "MM_RC": self.rc_suffix,
            "IS_FIRST_MINOR_RELEASE": _flag(self.is_first_minor_release),
            "DRY_RUN": _flag(self.dry_run),
        }

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = asdict(self)
        payload.update(
            {
                "full_version": self.full_version,
                "release_branch": self.release_branch,
                "next_minor": self.next_minor,
            }
        )
        return payload


def parse_release_version(
    version: str, backport: bool = False, dry_run: bool = False
) -> ReleaseDescriptor:
    """Split ``0.0.0`` or ``0.0.0-rcN`` into its release and candidate parts."""

    value = version.strip()
    if RC_VERSION_RE.match(value):
        release, rc = value.split("-", 1)
        return ReleaseDescriptor(
            release=release,
            rc=rc,
            is_first_minor_release=rc == "rc1" and release.endswith(".0"),
            backport=backport,
            dry_run=dry_run,
        )
    if FINAL_VERSION_RE.match(value):
        return ReleaseDescriptor(release=value, backport=backport, dry_run=dry_run)
    raise ValidationError(
        f"Bad version argument {version!r}. Expected 0.0.0 or 0.0.0-rc0. Typo?"
    )


class FutureReleaseProbe:
    """Checks the public artifact bucket for a release candidate of a later line.

    This is a heuristic: the bucket can lag behind or be unreachable, in which
    case the cut is allowed.
    """

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout_s: int = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def artifact_url(self, version: str) -> str:
        return f"{self.base_url}/{version}-rc1/mattermost-{version}-rc1-linux-amd64.tar.gz"

    def exists(self, version: str) -> bool:
        url = self.artifact_url(version)
        try:
            # HEAD only; the artifact itself is a full release tarball
            response = self.session.head(url, allow_redirects=True, timeout=self.timeout_s)
        except requests.RequestException as exc:
            logger.warning("Future release probe failed for %s: %s", url, exc)
            return False
        return response.status_code == 200


class ReleaseOrchestrator:
    def __init__(
        self,
        settings: BuildSettings,
        runner: JobRunner,
        poller: BuildPoller,
        editor: JobConfigEditor,
        tasks: BackgroundTasks,
        probe: FutureReleaseProbe,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.poller = poller
        self.editor = editor
        self.tasks = tasks
        self.probe = probe

    def check_not_backport(self, descriptor: ReleaseDescriptor) -> None:
        if descriptor.backport:
            return
        upcoming = descriptor.next_minor
        if self.probe.exists(upcoming):
            raise ValidationError(
                "Are you sure this isn't a backport release? "
                f"I see a future release on s3. ({upcoming}) Pass --backport if so."
            )

    def run_prechecks(self) -> None:
        # never skipped, not even for dry runs
        result = ""
        try:
            result = self.poller.run_and_wait(self.settings.pre_checks_job, None)
        except AppError as exc:
            raise AppError(
                "Pre-checks failed! (Did you update the database upgrade code?) Result: ", exc
            ) from exc
        if result != SUCCESS:
            raise AppError(
                "Pre-checks failed! (Did you update the database upgrade code?) "
                f"Result: {result}"
            )

    def cut_release(self, descriptor: ReleaseDescriptor) -> None:
        """Run prechecks, then hand the rest of the workflow to a background task."""

        self.check_not_backport(descriptor)
        self.run_prechecks()
        logger.info("Prechecks passed, cutting %s", descriptor.full_version)
        self.tasks.spawn(
            f"cut-{descriptor.full_version}",
            lambda: self.continue_release(descriptor),
        )

    def continue_release(self, descriptor: ReleaseDescriptor) -> ContinuationOutcome:
        name = f"cut-{descriptor.full_version}"
        result = self.poller.run_and_wait(
            self.settings.release_job, descriptor.job_parameters()
        )
        if result != SUCCESS:
            # the release job reports its own failure
            return ContinuationOutcome(name=name, status=STOPPED, detail=f"release job {result}")
        if descriptor.backport or descriptor.dry_run:
            return ContinuationOutcome(
                name=name, status=COMPLETED, detail="CI and pre-release left untouched"
            )

        failures: list[str] = []
        steps = (
            ("set CI branch", lambda: self.editor.set_ci_server_branch(descriptor.release_branch)),
            (
                "deploy release",
                lambda: self.runner.invoke(
                    self.settings.release_deploy_job, {"MM_VERSION": descriptor.full_version}
                ),
            ),
            (
                "set pre-release target",
                lambda: self.editor.set_pre_release_target(descriptor.full_version),
            ),
            ("trigger pre-release", lambda: self.runner.invoke(self.settings.pre_release_job)),
        )
        for label, step in steps:
            try:
                step()
            except AppError as exc:
                logger.error("Release %s: %s failed: %s", descriptor.full_version, label, exc)
                failures.append(f"{label}: {exc}")

        if failures:
            raise AppError("; ".join(failures))
        return ContinuationOutcome(name=name, status=COMPLETED, detail=descriptor.full_version)


def _flag(value: bool) -> str:
    return "true" if value else "false"
