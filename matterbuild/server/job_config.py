"""Edits of Jenkins job ``config.xml`` documents."""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET

from matterbuild.server.errors import AppError, ConfigUpdateFailed
from matterbuild.server.job_runner import JobRunner
from matterbuild.shared.settings import BuildSettings

logger = logging.getLogger(__name__)

DEFAULT_VALUE_PATH = (
    "./properties/hudson.model.ParametersDefinitionProperty/parameterDefinitions/"
    "hudson.model.StringParameterDefinition/defaultValue"
)
UPSTREAM_PROJECTS_PATH = "./triggers/jenkins.triggers.ReverseBuildTrigger/upstreamProjects"

_DECLARATION_RE = re.compile(r"^\s*<\?xml[^>]*\?>\s*")


def upstream_project_for(branch: str, settings: BuildSettings) -> str:
    """``master`` follows the enterprise build, anything else its platform branch."""

    if branch == "master":
        return settings.enterprise_upstream
    return f"{settings.platform_upstream_prefix}/{branch}"


def rewrite_ci_branch(config_xml: str, branch: str, upstream: str, job: str) -> str:
    declaration, root = _parse(config_xml, job)
    _set_text(root, DEFAULT_VALUE_PATH, branch, f"Unable to correct default branch element for {job}")
    _set_text(
        root, UPSTREAM_PROJECTS_PATH, upstream, f"Unable to correct build trigger element for {job}"
    )
    return _serialize(declaration, root, job)


def rewrite_default_value(config_xml: str, value: str, job: str) -> str:
    declaration, root = _parse(config_xml, job)
    _set_text(root, DEFAULT_VALUE_PATH, value, f"Unable to find element for target of {job}")
    return _serialize(declaration, root, job)


class JobConfigEditor:
    """Read-modify-write of remote job configurations."""

    def __init__(self, runner: JobRunner, settings: BuildSettings) -> None:
        self.runner = runner
        self.settings = settings

    def set_ci_server_branch(self, branch: str) -> None:
        upstream = upstream_project_for(branch, self.settings)
        for job in self.settings.ci_server_jobs:
            config_xml = self.runner.get_job_config(job)
            updated = rewrite_ci_branch(config_xml, branch, upstream, job)
            self._save(job, updated)
        logger.info("CI servers now pointed at %s (upstream %s)", branch, upstream)

    def set_pre_release_target(self, target: str) -> None:
        job = self.settings.pre_release_job
        config_xml = self.runner.get_job_config(job)
        updated = rewrite_default_value(config_xml, target, job)
        self._save(job, updated)
        logger.info("Pre-release target set to %s", target)

    def _save(self, job: str, config_xml: str) -> None:
        try:
            self.runner.update_job_config(job, config_xml)
        except ConfigUpdateFailed:
            raise
        except AppError as exc:
            raise ConfigUpdateFailed(f"Unable to save job for {job}", exc) from exc


def _parse(config_xml: str, job: str) -> tuple[str, ET.Element]:
    # expat rejects the XML 1.1 declaration Jenkins writes, so it is carried separately
    match = _DECLARATION_RE.match(config_xml)
    declaration = match.group(0).strip() if match else ""
    body = config_xml[match.end() :] if match else config_xml
    try:
        # comments and processing instructions survive the rewrite
        parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True, insert_pis=True))
        return declaration, ET.fromstring(body, parser=parser)
    except ET.ParseError as exc:
        raise ConfigUpdateFailed(f"Unable to read job configuration for {job}", exc) from exc


def _set_text(root: ET.Element, path: str, value: str, missing_message: str) -> None:
    element = root.find(path)
    if element is None:
        raise ConfigUpdateFailed(missing_message)
    element.text = value


def _serialize(declaration: str, root: ET.Element, job: str) -> str:
    try:
        body = ET.tostring(root, encoding="unicode")
    except (TypeError, ValueError) as exc:
        raise ConfigUpdateFailed(f"Unable to write out final job config for {job}", exc) from exc
    if declaration:
        return f"{declaration}\n{body}"
    return body
