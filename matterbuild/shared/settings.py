"""Immutable runtime settings loaded once at startup."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

ENV_PREFIX = "MATTERBUILD_"
DEFAULT_CONFIG_PATH = "config.json"

_LIST_FIELDS = {"ci_server_jobs", "allowed_tokens", "allowed_users", "release_users"}
_SECRET_FIELDS = {"jenkins_password", "github_token"}
_INT_FIELDS = {"slash_command_workers"}


@dataclass(frozen=True)
class BuildSettings:
    """Read-only configuration shared by every request and background task."""

    listen_address: str = "127.0.0.1:8086"
    jenkins_url: str = ""
    jenkins_username: str = ""
    jenkins_password: str = ""
    job_runner: str = ""
    release_job: str = "mattermost-platform-release"
    pre_checks_job: str = "mattermost-platform-release-prechecks"
    pre_release_job: str = "mattermost-platform-pre-release"
    release_deploy_job: str = "build-pushes/job/release-gitlab.mattermost.com"
    translation_server_job: str = "translation-server-lock"
    check_translation_server_job: str = "translation-server-check"
    kube_deploy_job: str = "kube-deploy-loadtest"
    slash_command_workers: int = 64
    ci_server_jobs: tuple[str, ...] = ()
    allowed_tokens: tuple[str, ...] = ()
    allowed_users: tuple[str, ...] = ()
    release_users: tuple[str, ...] = ()
    github_repo: str = "mattermost/mattermost-server"
    github_token: str = ""
    release_artifact_base: str = "http://releases.mattermost.com"
    enterprise_upstream: str = "mattermost-enterprise"
    platform_upstream_prefix: str = "mattermost-platform"
    extra: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "BuildSettings":
        known = {item.name for item in fields(cls)} - {"extra"}
        values: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            name = _normalize_key(key)
            if name not in known:
                extra[key] = value
                continue
            values[name] = _coerce(name, value)
        return cls(**values, extra=extra)

    def with_env(self, env: dict[str, str] | None = None) -> "BuildSettings":
        source = env if env is not None else os.environ
        overrides: dict[str, Any] = {}
        for item in fields(self):
            if item.name == "extra":
                continue
            raw = source.get(f"{ENV_PREFIX}{item.name.upper()}")
            if raw is None:
                continue
            overrides[item.name] = _coerce(item.name, raw)
        if not overrides:
            return self
        merged = asdict(self)
        merged.update(overrides)
        return BuildSettings(**merged)

    def redacted(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("extra", None)
        for name in _SECRET_FIELDS:
            payload[name] = _redact_secret(payload[name])
        payload["allowed_tokens"] = [_redact_secret(token) for token in self.allowed_tokens]
        for name in _LIST_FIELDS - {"allowed_tokens"}:
            payload[name] = list(payload[name])
        return payload


def load_settings(
    path: str | Path | None = None, env: dict[str, str] | None = None
) -> BuildSettings:
    """Read the config file (JSON or YAML) and apply MATTERBUILD_* overrides."""

    source = env if env is not None else os.environ
    config_path = Path(path or source.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_PATH))
    data: dict[str, Any] = {}
    if config_path.exists():
        text = config_path.read_text(encoding="utf-8")
        if config_path.suffix in {".yml", ".yaml"}:
            loaded = yaml.safe_load(text) or {}
        else:
            loaded = json.loads(text) if text.strip() else {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration root must be a mapping: {config_path}")
        data = loaded
    return BuildSettings.from_mapping(data).with_env(source)


def _normalize_key(key: str) -> str:
    # legacy config.json files use CamelCase keys
    if "_" in key or key.islower():
        return key.lower()
    out: list[str] = []
    for index, char in enumerate(key):
        if char.isupper() and index:
            after_lower = not key[index - 1].isupper()
            before_lower = index + 1 < len(key) and key[index + 1].islower()
            if after_lower or before_lower:
                out.append("_")
        out.append(char.lower())
    return "".join(out)


def _coerce(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        return int(value)
    if name in _LIST_FIELDS:
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return tuple(str(part).strip() for part in value if str(part).strip())
    if value is None:
        return ""
    return str(value).strip()


def _redact_secret(secret: str) -> str:
    if not secret:
        return "unset"
    if len(secret) <= 8:
        return "***"
    return f"{secret[:4]}...{secret[-4:]}"
