"""Slash command application surface with a minimal ASGI HTTP layer."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable
from urllib.parse import parse_qs

from matterbuild.server.actions import CommandHandlers
from matterbuild.server.auth import AuthorizationGate
from matterbuild.server.background import BackgroundTasks
from matterbuild.server.commands import (
    SlashCommand,
    parse_command_text,
    resolve_action,
    usage_text,
)
from matterbuild.server.errors import AppError
from matterbuild.server.github_client import GitHubClient
from matterbuild.server.job_config import JobConfigEditor
from matterbuild.server.job_runner import JobRunner, build_job_runner
from matterbuild.server.poller import BuildPoller
from matterbuild.server.releases import FutureReleaseProbe, ReleaseOrchestrator
from matterbuild.server.responses import (
    EPHEMERAL,
    SlashResponse,
    enriched_response,
    error_response,
)
from matterbuild.shared.logging_config import configure_logging
from matterbuild.shared.settings import BuildSettings, load_settings

logger = logging.getLogger(__name__)

SLASH_COMMAND_PATH = "/slash_command"


class ServerApp:
    """Wires the job runner, poller, release workflow and gate from one settings value."""

    def __init__(
        self,
        settings: BuildSettings | None = None,
        runner: JobRunner | None = None,
        tasks: BackgroundTasks | None = None,
        sleep: Callable[[float], None] | None = None,
        probe: FutureReleaseProbe | None = None,
        github: GitHubClient | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.shutdown_event = threading.Event()
        self.runner = runner or build_job_runner(self.settings)
        self.tasks = tasks or BackgroundTasks()
        self.poller = BuildPoller(self.runner, sleep=sleep, cancel_event=self.shutdown_event)
        self.editor = JobConfigEditor(self.runner, self.settings)
        self.gate = AuthorizationGate(self.settings)
        self.releases = ReleaseOrchestrator(
            settings=self.settings,
            runner=self.runner,
            poller=self.poller,
            editor=self.editor,
            tasks=self.tasks,
            probe=probe or FutureReleaseProbe(self.settings.release_artifact_base),
        )
        self.handlers = CommandHandlers(
            settings=self.settings,
            runner=self.runner,
            poller=self.poller,
            editor=self.editor,
            releases=self.releases,
            github=github
            or GitHubClient(repo=self.settings.github_repo, token=self.settings.github_token),
        )

    def dispatch(self, request: SlashCommand) -> SlashResponse:
        """Authorize, parse and run one command; failures become ephemeral payloads."""

        try:
            self.gate.check_caller(request)
            words = request.text.split()
            action = resolve_action(words[0]) if words else None
            if action is not None:
                # permission is decided on the command word, before its flags are read
                self.gate.check_action(request, action)
            command = parse_command_text(request.text)
            if command is None:
                trigger = request.command.lstrip("/") or "matterbuild"
                return enriched_response("Information", usage_text(trigger), style=EPHEMERAL)
            logger.info(
                "User %s runs %s", request.username or request.user_id, command.action.value
            )
            return self.handlers.handle(command)
        except AppError as exc:
            logger.info("Command %r failed: %s", request.text, exc)
            return error_response(exc)
        except Exception as exc:
            logger.exception("Unexpected failure running %r", request.text)
            return error_response(AppError("Internal error while running the command.", exc))

    def handle_slash_command(self, form: dict[str, Any]) -> dict[str, Any]:
        return self.dispatch(SlashCommand.from_form(form)).as_payload()

    def shutdown(self) -> None:
        self.shutdown_event.set()


class ASGIServer:
    """Minimal ASGI adapter exposing the slash command endpoint.

    Slash commands run on a dedicated pool of ``slash_command_workers``
    threads, separate from the loop's default executor.
    """

    def __init__(self, service: ServerApp | None = None) -> None:
        self.service = service or create_app()
        self.executor = ThreadPoolExecutor(
            max_workers=max(1, self.service.settings.slash_command_workers),
            thread_name_prefix="matterbuild-slash",
        )

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope.get("type") == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope.get("type") != "http":
            await self._send_json(send, 500, {"error": "unsupported_scope"})
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "")
        body = await self._read_body(receive)

        try:
            if method == "GET" and path == "/":
                await self._send_text(send, 200, "This is the matterbuild server.")
                return

            if method == "GET" and path == "/health":
                await self._send_json(send, 200, {"status": "ok"})
                return

            if method == "POST" and path == SLASH_COMMAND_PATH:
                form = self._parse_form(body)
                # polls block for minutes; keep them off the event loop
                loop = asyncio.get_running_loop()
                payload = await loop.run_in_executor(
                    self.executor, self.service.handle_slash_command, form
                )
                await self._send_json(send, 200, payload)
                return

            await self._send_json(send, 404, {"error": "not_found"})
        except Exception as exc:  # pragma: no cover
            logger.exception("Unhandled error serving %s %s", method, path)
            await self._send_json(
                send,
                200,
                error_response(AppError("Unable to process the request.", exc)).as_payload(),
            )

    async def _lifespan(self, receive: Any, send: Any) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                configure_logging()
                logger.info("Starting matterbuild on %s", self.service.settings.listen_address)
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                self.service.shutdown()
                self.executor.shutdown(wait=False, cancel_futures=True)
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _read_body(self, receive: Any) -> bytes:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] != "http.request":
                continue
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    def _parse_form(self, body: bytes) -> dict[str, str]:
        if not body:
            return {}
        try:
            parsed = parse_qs(body.decode("utf-8"), keep_blank_values=True)
        except UnicodeDecodeError:
            return {}
        return {key: values[-1] for key, values in parsed.items() if values}

    async def _send_json(self, send: Any, status: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send({"type": "http.response.body", "body": body})

    async def _send_text(self, send: Any, status: int, text: str) -> None:
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(b"content-type", b"text/plain; charset=utf-8")],
            }
        )
        await send({"type": "http.response.body", "body": text.encode("utf-8")})


def split_listen_address(address: str) -> tuple[str, int]:
    host, _, port = address.rpartition(":")
    if not port.isdigit():
        raise ValueError(f"Invalid listen address: {address}")
    return host or "0.0.0.0", int(port)


def create_app(settings: BuildSettings | None = None) -> ServerApp:
    return ServerApp(settings=settings)


app = ASGIServer()


def main() -> int:
    parser = argparse.ArgumentParser(description="matterbuild ASGI server entrypoint")
    parser.add_argument(
        "--print-startup",
        action="store_true",
        help="print the supported uvicorn startup command and exit",
    )
    args = parser.parse_args()

    if args.print_startup:
        host, port = split_listen_address(app.service.settings.listen_address)
        print(f"uvicorn matterbuild.server.app:app --host {host} --port {port}")
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
