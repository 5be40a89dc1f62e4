"""Pydantic contracts for slash command responses."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

IN_CHANNEL = "in_channel"
EPHEMERAL = "ephemeral"

INFO_COLOR = "#0060aa"
ERROR_COLOR = "#ee2116"


class SlashAttachment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = ""
    text: str = ""
    color: str = INFO_COLOR


class SlashResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    response_type: Literal["in_channel", "ephemeral"] = EPHEMERAL
    text: str = ""
    attachments: list[SlashAttachment] = Field(default_factory=list)

    def as_payload(self) -> dict[str, Any]:
        payload = self.model_dump()
        if not self.attachments:
            payload.pop("attachments")
        return payload


def standard_response(text: str, style: str = IN_CHANNEL) -> SlashResponse:
    return SlashResponse(response_type=style, text=text)


def enriched_response(
    title: str, text: str, color: str = INFO_COLOR, style: str = IN_CHANNEL
) -> SlashResponse:
    return SlashResponse(
        response_type=style,
        attachments=[SlashAttachment(title=title, text=text, color=color)],
    )


def error_response(error: BaseException) -> SlashResponse:
    return SlashResponse(response_type=EPHEMERAL, text=str(error))
