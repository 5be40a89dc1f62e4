"""matterbuild operator CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from matterbuild.server.errors import ValidationError
from matterbuild.server.releases import parse_release_version
from matterbuild.shared.logging_config import configure_logging
from matterbuild.shared.settings import load_settings

app = typer.Typer(add_completion=False, help="matterbuild: slash-command bridge to Jenkins")


def _config_option() -> Optional[Path]:
    return typer.Option(None, "--config", help="Path to config.json or config.yaml")


@app.command()
def serve(
    config: Optional[Path] = _config_option(),
    host: str = typer.Option("", "--host"),
    port: int = typer.Option(0, "--port"),
) -> None:
    """Run the slash command server with uvicorn."""
    import uvicorn

    from matterbuild.server.app import ASGIServer, ServerApp, split_listen_address

    configure_logging()
    settings = load_settings(config)
    default_host, default_port = split_listen_address(settings.listen_address)
    uvicorn.run(
        ASGIServer(service=ServerApp(settings=settings)),
        host=host or default_host,
        port=port or default_port,
    )


@app.command("parse-version")
def parse_version(
    version: str,
    backport: bool = typer.Option(False, "--backport"),
    dryrun: bool = typer.Option(False, "--dryrun"),
) -> None:
    """Show how a release version would be cut."""
    try:
        descriptor = parse_release_version(version, backport=backport, dry_run=dryrun)
    except ValidationError as exc:
        typer.echo(json.dumps({"error": str(exc)}, indent=2))
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(descriptor.as_dict(), indent=2))


@app.command("show-config")
def show_config(config: Optional[Path] = _config_option()) -> None:
    """Print the effective settings with secrets redacted."""
    typer.echo(json.dumps(load_settings(config).redacted(), indent=2))


@app.command()
def dispatch(
    text: str,
    user_id: str = typer.Option(..., "--user-id"),
    token: str = typer.Option(..., "--token"),
    username: str = typer.Option("", "--username"),
    config: Optional[Path] = _config_option(),
) -> None:
    """Run one command through the same gate and handlers as the server."""
    from matterbuild.server.app import ServerApp
    from matterbuild.server.background import BackgroundTasks

    configure_logging()
    # a CLI process would exit before a detached release continuation finishes
    service = ServerApp(settings=load_settings(config), tasks=BackgroundTasks(inline=True))
    payload = service.handle_slash_command(
        {
            "command": "/matterbuild",
            "text": text,
            "token": token,
            "user_id": user_id,
            "user_name": username,
        }
    )
    typer.echo(json.dumps(payload, indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
