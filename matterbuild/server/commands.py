"""Slash command requests and their parsing into typed command variants."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, NoReturn, Union

from matterbuild.server.errors import ValidationError


class Action(str, Enum):
    CUT_RELEASE = "cut-release"
    DUMP_JOB_CONFIG = "dump-job-config"
    SET_CI_BRANCH = "set-ci-branch"
    RUN_JOB = "run-job"
    SET_PRE_RELEASE_TARGET = "set-pre-release-target"
    CHECK_RELEASE_STATUS = "check-release-status"
    LOCK_TRANSLATION_BRANCHES = "lock-translation-branches"
    CHECK_TRANSLATION_BRANCHES = "check-translation-branches"
    MERGE_RELEASE_BRANCH = "merge-release-branch"
    RUN_LOADTEST = "run-loadtest"


# chat-facing command word, help line
COMMAND_WORDS: dict[Action, tuple[str, str]] = {
    Action.CUT_RELEASE: (
        "cut",
        "Cut a release. Version format 0.0.0-rc0, or 0.0.0 for final releases.",
    ),
    Action.DUMP_JOB_CONFIG: ("seeconf", "Dump the configuration of a build job."),
    Action.SET_CI_BRANCH: ("setci", "Set the branch target for the CI servers."),
    Action.RUN_JOB: ("runjob", "Run a job on Jenkins."),
    Action.SET_PRE_RELEASE_TARGET: ("setprerelease", "Set the target for pre-release."),
    Action.CHECK_RELEASE_STATUS: ("cutstatus", "Check the status of the Cut Release Job"),
    Action.LOCK_TRANSLATION_BRANCHES: (
        "lockpootle",
        "Lock the Translation server for a particular release branch or to master.",
    ),
    Action.CHECK_TRANSLATION_BRANCHES: (
        "getpootle",
        "Check the branches set in the Translation Server",
    ),
    Action.MERGE_RELEASE_BRANCH: (
        "merge",
        "Merge the specified release branch to master and create the pull request",
    ),
    Action.RUN_LOADTEST: (
        "loadtest",
        "Create a kubernetes cluster to loadtest a branch or pr-0000.",
    ),
}

HELP_WORDS = {"help", "--help", "-h"}


@dataclass(frozen=True)
class SlashCommand:
    """Incoming slash command form; unknown keys are ignored."""

    channel_id: str = ""
    channel_name: str = ""
    command: str = ""
    team_name: str = ""
    team_id: str = ""
    text: str = ""
    token: str = ""
    user_id: str = ""
    username: str = ""

    FORM_KEYS: ClassVar[dict[str, str]] = {
        "channel_id": "channel_id",
        "channel_name": "channel_name",
        "command": "command",
        "team_domain": "team_name",
        "team_id": "team_id",
        "text": "text",
        "token": "token",
        "user_id": "user_id",
        "user_name": "username",
    }

    @classmethod
    def from_form(cls, form: dict[str, Any]) -> "SlashCommand":
        values: dict[str, str] = {}
        for form_key, attribute in cls.FORM_KEYS.items():
            value = form.get(form_key)
            if isinstance(value, list):
                value = value[-1] if value else ""
            if value is not None:
                values[attribute] = str(value)
        return cls(**values)


@dataclass(frozen=True)
class CutReleaseCommand:
    action: ClassVar[Action] = Action.CUT_RELEASE
    version: str = ""
    backport: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class DumpJobConfigCommand:
    action: ClassVar[Action] = Action.DUMP_JOB_CONFIG
    job: str = ""


@dataclass(frozen=True)
class SetCIBranchCommand:
    action: ClassVar[Action] = Action.SET_CI_BRANCH
    branch: str = ""


@dataclass(frozen=True)
class RunJobCommand:
    action: ClassVar[Action] = Action.RUN_JOB
    job: str = ""


@dataclass(frozen=True)
class SetPreReleaseTargetCommand:
    action: ClassVar[Action] = Action.SET_PRE_RELEASE_TARGET
    target: str = ""


@dataclass(frozen=True)
class CheckReleaseStatusCommand:
    action: ClassVar[Action] = Action.CHECK_RELEASE_STATUS


@dataclass(frozen=True)
class LockTranslationBranchesCommand:
    action: ClassVar[Action] = Action.LOCK_TRANSLATION_BRANCHES
    plt: str = ""
    web: str = ""
    mobile: str = ""


@dataclass(frozen=True)
class CheckTranslationBranchesCommand:
    action: ClassVar[Action] = Action.CHECK_TRANSLATION_BRANCHES


@dataclass(frozen=True)
class MergeReleaseBranchCommand:
    action: ClassVar[Action] = Action.MERGE_RELEASE_BRANCH
    release_branch: str = ""


@dataclass(frozen=True)
class LoadtestCommand:
    action: ClassVar[Action] = Action.RUN_LOADTEST
    build_tag: str = ""
    length: int = 20
    delay: int = 15


Command = Union[
    CutReleaseCommand,
    DumpJobConfigCommand,
    SetCIBranchCommand,
    RunJobCommand,
    SetPreReleaseTargetCommand,
    CheckReleaseStatusCommand,
    LockTranslationBranchesCommand,
    CheckTranslationBranchesCommand,
    MergeReleaseBranchCommand,
    LoadtestCommand,
]


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise ValidationError(f"{self.prog}: {message}")

    def exit(self, status: int = 0, message: str | None = None) -> NoReturn:
        raise ValidationError(message or f"{self.prog}: exited with status {status}")


def _parser(word: str) -> _ArgumentParser:
    parser = _ArgumentParser(prog=word, add_help=False, allow_abbrev=False)
    parser.add_argument("args", nargs="*")
    return parser


def _first(args: list[str]) -> str:
    return args[0] if args else ""


def resolve_action(word: str) -> Action | None:
    """Match a command word or its descriptive alias exactly."""

    for action, (command_word, _help) in COMMAND_WORDS.items():
        if word == command_word or word == action.value:
            return action
    return None


def parse_command_text(text: str) -> Command | None:
    """Split ``text`` on whitespace and build the matching command variant.

    Returns ``None`` for empty text, help requests and unknown command words so
    callers can answer with usage information instead of an error.
    """

    words = text.strip().split()
    if not words or words[0] in HELP_WORDS:
        return None
    action = resolve_action(words[0])
    if action is None:
        return None
    word = COMMAND_WORDS[action][0]
    rest = words[1:]
    parser = _parser(word)

    if action == Action.CUT_RELEASE:
        parser.add_argument("--backport", action="store_true")
        parser.add_argument("--dryrun", action="store_true")
        parsed = parser.parse_args(rest)
        return CutReleaseCommand(
            version=_first(parsed.args), backport=parsed.backport, dry_run=parsed.dryrun
        )
    if action == Action.LOCK_TRANSLATION_BRANCHES:
        parser.add_argument("--plt", default="")
        parser.add_argument("--web", default="")
        parser.add_argument("--mobile", default="")
        parsed = parser.parse_args(rest)
        return LockTranslationBranchesCommand(
            plt=parsed.plt, web=parsed.web, mobile=parsed.mobile
        )
    if action == Action.MERGE_RELEASE_BRANCH:
        parser.add_argument("--release", default="")
        parsed = parser.parse_args(rest)
        return MergeReleaseBranchCommand(release_branch=parsed.release)
    if action == Action.RUN_LOADTEST:
        parser.add_argument("-l", "--length", type=int, default=20)
        parser.add_argument("-d", "--delay", type=int, default=15)
        parsed = parser.parse_args(rest)
        return LoadtestCommand(
            build_tag=_first(parsed.args), length=parsed.length, delay=parsed.delay
        )

    parsed = parser.parse_args(rest)
    argument = _first(parsed.args)
    if action == Action.DUMP_JOB_CONFIG:
        return DumpJobConfigCommand(job=argument)
    if action == Action.SET_CI_BRANCH:
        return SetCIBranchCommand(branch=argument)
    if action == Action.RUN_JOB:
        return RunJobCommand(job=argument)
    if action == Action.SET_PRE_RELEASE_TARGET:
        return SetPreReleaseTargetCommand(target=argument)
    if action == Action.CHECK_RELEASE_STATUS:
        return CheckReleaseStatusCommand()
    return CheckTranslationBranchesCommand()


def usage_text(trigger: str = "matterbuild") -> str:
    width = max(len(word) for word, _help in COMMAND_WORDS.values())
    lines = [
        "Control of the build system though slash commands!",
        "",
        "Usage:",
        f"  {trigger} [command]",
        "",
        "Available Commands:",
    ]
    for word, help_text in COMMAND_WORDS.values():
        lines.append(f"  {word.ljust(width)}  {help_text}")
    return "\n".join(lines) + "\n"

