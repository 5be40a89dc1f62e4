"""Handlers turning parsed commands into remote work and a chat response."""

from __future__ import annotations

import logging
from typing import Any, Callable

from matterbuild.server.commands import (
    CheckReleaseStatusCommand,
    CheckTranslationBranchesCommand,
    Command,
    CutReleaseCommand,
    DumpJobConfigCommand,
    LoadtestCommand,
    LockTranslationBranchesCommand,
    MergeReleaseBranchCommand,
    RunJobCommand,
    SetCIBranchCommand,
    SetPreReleaseTargetCommand,
)
from matterbuild.server.errors import AppError, ValidationError
from matterbuild.server.github_client import GitHubClient
from matterbuild.server.job_config import JobConfigEditor
from matterbuild.server.job_runner import JobRunner
from matterbuild.server.poller import SUCCESS, BuildPoller
from matterbuild.server.releases import ReleaseOrchestrator, parse_release_version
from matterbuild.server.responses import (
    ERROR_COLOR,
    IN_CHANNEL,
    SlashResponse,
    enriched_response,
    standard_response,
)
from matterbuild.shared.settings import BuildSettings

logger = logging.getLogger(__name__)

TRANSLATION_TITLE = "Translation Server Update"
TRANSLATION_LABELS = (
    ("PLT_BRANCH=", "Server Branch:"),
    ("WEB_BRANCH=", "Webapp Branch:"),
    ("RN_BRANCH=", "Mobile Branch:"),
)


def milliseconds_to_minutes(duration_ms: int) -> str:
    minutes = max(0, int(duration_ms)) / 60000
    return f"{minutes:.1f} min"


def _require(value: str, message: str) -> str:
    if not value.strip():
        raise ValidationError(message)
    return value.strip()


class CommandHandlers:
    """One method per command variant; each validates its arguments first."""

    def __init__(
        self,
        settings: BuildSettings,
        runner: JobRunner,
        poller: BuildPoller,
        editor: JobConfigEditor,
        releases: ReleaseOrchestrator,
        github: GitHubClient,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.poller = poller
        self.editor = editor
        self.releases = releases
        self.github = github
        self._handlers: dict[type, Callable[[Any], SlashResponse]] = {
            CutReleaseCommand: self.cut_release,
            DumpJobConfigCommand: self.dump_job_config,
            SetCIBranchCommand: self.set_ci_branch,
            RunJobCommand: self.run_job,
            SetPreReleaseTargetCommand: self.set_pre_release_target,
            CheckReleaseStatusCommand: self.check_release_status,
            LockTranslationBranchesCommand: self.lock_translation_branches,
            CheckTranslationBranchesCommand: self.check_translation_branches,
            MergeReleaseBranchCommand: self.merge_release_branch,
            LoadtestCommand: self.run_loadtest,
        }

    def handle(self, command: Command) -> SlashResponse:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise ValueError(f"Unsupported command: {command!r}")
        return handler(command)

    def cut_release(self, command: CutReleaseCommand) -> SlashResponse:
        version = _require(command.version, "You need to specify a release version.")
        descriptor = parse_release_version(
            version, backport=command.backport, dry_run=command.dry_run
        )
        self.releases.cut_release(descriptor)
        suffix = " (dry run)" if descriptor.dry_run else ""
        return enriched_response("Cut Release", f"Release **{version}** is on the way.{suffix}")

    def dump_job_config(self, command: DumpJobConfigCommand) -> SlashResponse:
        job = _require(command.job, "You need to supply an argument")
        config_xml = self.runner.get_job_config(job)
        logger.info("Config dump sent for %s", job)
        return standard_response(config_xml, IN_CHANNEL)

    def set_ci_branch(self, command: SetCIBranchCommand) -> SlashResponse:
        branch = _require(command.branch, "You need to specify a branch")
        try:
            self.editor.set_ci_server_branch(branch)
        except AppError as exc:
            logger.error("Error when setting the branch: %s", exc)
            raise
        return enriched_response("CI Servers", f"CI servers now pointed at **{branch}**")

    def run_job(self, command: RunJobCommand) -> SlashResponse:
        job = _require(command.job, "You need to specify a job")
        self.runner.invoke(job)
        return enriched_response("Jenkins Job", f"Ran job **{job}**")

    def set_pre_release_target(self, command: SetPreReleaseTargetCommand) -> SlashResponse:
        target = _require(command.target, "You need to specify a target")
        self.editor.set_pre_release_target(target)
        return enriched_response("Pre-Release", f"Set pre-release to **{target}**")

    def check_release_status(self, command: CheckReleaseStatusCommand) -> SlashResponse:
        job = self.settings.release_job
        try:
            summary = self.runner.latest_result(job)
        except AppError as exc:
            logger.error("Unable to get the job %s: %s", job, exc)
            raise
        text = (
            f"Status of *{job}*: **{summary.status}** "
            f"Duration: **{milliseconds_to_minutes(summary.duration_ms)}**"
        )
        return enriched_response("Status of Jenkins Job", text, color=summary.color)

    def lock_translation_branches(
        self, command: LockTranslationBranchesCommand
    ) -> SlashResponse:
        if not (command.plt or command.web or command.mobile):
            return enriched_response(
                TRANSLATION_TITLE,
                "You need to set at least one branch to lock. Please check the help.",
                color=ERROR_COLOR,
            )

        failed = self._translation_job_failure(
            self.settings.translation_server_job,
            {"PLT_BRANCH": command.plt, "WEB_BRANCH": command.web, "RN_BRANCH": command.mobile},
        )
        if failed is not None:
            return failed

        lines = ["Translation Server is locked to those Branches:"]
        if command.plt:
            lines.append(f"* Server Branch: **{command.plt}**")
        if command.web:
            lines.append(f"* Webapp Branch: **{command.web}**")
        if command.mobile:
            lines.append(f"* Mobile Branch: **{command.mobile}**")
        return enriched_response(TRANSLATION_TITLE, "\n".join(lines) + "\n")

    def check_translation_branches(
        self, command: CheckTranslationBranchesCommand
    ) -> SlashResponse:
        job = self.settings.check_translation_server_job
        failed = self._translation_job_failure(job, {})
        if failed is not None:
            return failed

        report = self.runner.latest_artifact_text(job)
        for raw, label in TRANSLATION_LABELS:
            report = report.replace(raw, label)
        report = report.replace('"', " **")
        lines = ["Translation Server has locked those Branches:"]
        lines.extend(line for line in report.split("\n") if line.strip())
        return enriched_response(TRANSLATION_TITLE, "\n".join(lines) + "\n")

    def merge_release_branch(self, command: MergeReleaseBranchCommand) -> SlashResponse:
        branch = _require(command.release_branch, "You need to specify a release branch.")
        message = self.github.open_merge_pull_request(branch)
        return enriched_response(f"Merge Release Branch {branch} to Master", message)

    def run_loadtest(self, command: LoadtestCommand) -> SlashResponse:
        build_tag = _require(
            command.build_tag, "You need to specify a build tag. A branch or pr-0000."
        )
        self.runner.invoke(
            self.settings.kube_deploy_job,
            {
                "BUILD_TAG": build_tag,
                "KUBE_BRANCH": "master",
                "KUBE_CONFIG_FILE": "values_loadtest.yaml",
                "TEST_LENGTH_MINUTES": str(command.length),
                "PPROF_DELAY": str(command.delay),
            },
        )
        return standard_response(f"Loadtesting: {build_tag}", IN_CHANNEL)

    def _translation_job_failure(
        self, job: str, parameters: dict[str, str]
    ) -> SlashResponse | None:
        result = ""
        try:
            result = self.poller.run_and_wait(job, parameters)
        except AppError as exc:
            logger.error("Translation job %s failed: %s", job, exc)
        if result == SUCCESS:
            return None
        logger.error("Translation job %s finished with %s", job, result or "no result")
        return enriched_response(
            TRANSLATION_TITLE,
            "Translation Job Fail. Please Check the Jenkins Logs. "
            f"Jenkins Status: {result or 'unknown'}",
            color=ERROR_COLOR,
        )
