"""Token and identity checks for incoming slash commands."""

from __future__ import annotations

import logging

from matterbuild.server.commands import Action, SlashCommand
from matterbuild.server.errors import Unauthorized, UnauthorizedReason
from matterbuild.shared.settings import BuildSettings

logger = logging.getLogger(__name__)

RESTRICTED_ACTIONS = frozenset({Action.CUT_RELEASE})


class AuthorizationGate:
    """Stateless allow-list checks, evaluated from scratch on every request."""

    def __init__(self, settings: BuildSettings) -> None:
        self.settings = settings

    def check_caller(self, request: SlashCommand) -> None:
        if request.token not in self.settings.allowed_tokens:
            logger.warning("Rejected slash command with unknown token from %s", request.user_id)
            raise Unauthorized(
                UnauthorizedReason.BAD_TOKEN, "Token for slash command is incorrect"
            )
        if request.user_id not in self.settings.allowed_users:
            logger.warning("Rejected slash command from non-allowed user %s", request.user_id)
            raise Unauthorized(
                UnauthorizedReason.USER_NOT_ALLOWED,
                "You don't have permissions to use this command.",
            )

    def check_action(self, request: SlashCommand, action: Action) -> None:
        if action not in RESTRICTED_ACTIONS:
            return
        if request.user_id not in self.settings.release_users:
            logger.warning("User %s is not allowed to run %s", request.user_id, action.value)
            raise Unauthorized(
                UnauthorizedReason.RELEASE_USER_NOT_ALLOWED,
                "You don't have permissions to use this command.",
            )

    def authorize(self, request: SlashCommand, action: Action) -> None:
        self.check_caller(request)
        self.check_action(request, action)
