"""Error kinds raised by job execution, authorization and command handling."""

from __future__ import annotations

from enum import Enum


class AppError(Exception):
    """User-renderable failure carrying an optional underlying cause."""

    def __init__(self, description: str, parent: BaseException | None = None) -> None:
        super().__init__(description)
        self.description = description
        self.parent = parent

    def __str__(self) -> str:
        if self.parent is not None:
            return f"{self.description} |:| {self.parent}"
        return self.description


class ConnectionFailed(AppError):
    pass


class JobNotFound(AppError):
    pass


class InvokeRejected(AppError):
    pass


class TransientPollError(AppError):
    pass


class BuildUnreachable(AppError):
    pass


class PollCancelled(AppError):
    pass


class ValidationError(AppError):
    pass


class ConfigUpdateFailed(AppError):
    pass


class UnauthorizedReason(str, Enum):
    BAD_TOKEN = "bad_token"
    USER_NOT_ALLOWED = "user_not_allowed"
    RELEASE_USER_NOT_ALLOWED = "release_user_not_allowed"


class Unauthorized(AppError):
    def __init__(self, reason: UnauthorizedReason, description: str) -> None:
        super().__init__(description)
        self.reason = reason
