"""Agentage CLI entry point — `agentage` command group."""

from __future__ import annotations

import click

from agentage.cli.commands.auth import login_cmd, logout_cmd, whoami_cmd


@click.group()
@click.version_option(package_name="agentage")
@click.option(
    "--api-url",
    default="http://localhost:3001",
    envvar="AGENTAGE_API_URL",
    show_default=True,
    help="Base URL of the Agentage API server",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """Agentage — sign in from the terminal and inspect your account.

    \b
    Quick start:
      agentage login
      agentage whoami --providers
      agentage logout

    API docs: http://localhost:3001/docs
    """
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url.rstrip("/")


cli.add_command(login_cmd)
cli.add_command(logout_cmd)
cli.add_command(whoami_cmd)


@cli.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True, help="Bind host")
@click.option("--port", default=3001, show_default=True, help="Bind port")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload (dev mode)")
def serve(host: str, port: int, reload: bool) -> None:
    """Start the Agentage API server."""
    import uvicorn

    uvicorn.run(
        "agentage.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    cli()
