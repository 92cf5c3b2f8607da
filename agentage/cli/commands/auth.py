"""CLI commands for signing in with the device authorization flow."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import click
import httpx

from agentage.cli.credentials import clear_credentials, load_credentials, save_credentials
from agentage.cli.output import console, device_code_panel, error, make_spinner, providers_table, user_detail

# Errors after which a fresh ``agentage login`` is the only way forward
_RESTART_ERRORS = {"expired_token", "access_denied"}


class DeviceLoginError(Exception):
    def __init__(self, error: str, description: str) -> None:
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description


def api_client(ctx: click.Context, token: str | None = None) -> httpx.Client:
    headers = {"Authorization": f"Bearer {token}"} if token else None
    return httpx.Client(
        base_url=ctx.obj["api_url"],
        headers=headers,
        timeout=15,
        transport=ctx.obj.get("transport"),
    )


def _error_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def poll_device_token(
    client: httpx.Client,
    device_code: str,
    interval: int,
    expires_in: int,
    sleep: Callable[[float], None] | None = None,
    clock: Callable[[], float] | None = None,
) -> dict[str, Any]:
    """Poll until the code is authorized; raise DeviceLoginError otherwise.

    ``slow_down`` permanently adds 5 seconds to the interval.
    """
    sleep = sleep or time.sleep
    clock = clock or time.monotonic
    deadline = clock() + expires_in
    while clock() < deadline:
        sleep(interval)
        r = client.post("/api/auth/device/token", json={"device_code": device_code})
        if r.status_code == 200:
            return r.json()

        body = _error_body(r)
        code = body.get("error")
        if code == "authorization_pending":
            continue
        if code == "slow_down":
            interval += 5
            continue
        raise DeviceLoginError(
            code or f"http_{r.status_code}",
            body.get("error_description") or body.get("detail") or r.text,
        )
    raise DeviceLoginError("expired_token", "The device code has expired")


@click.command("login")
@click.option("--browser/--no-browser", default=True, show_default=True,
              help="Open the verification page in a browser")
@click.pass_context
def login_cmd(ctx: click.Context, browser: bool) -> None:
    """Sign in from this terminal using a one-time code."""
    api_url: str = ctx.obj["api_url"]

    try:
        with api_client(ctx) as client:
            r = client.post("/api/auth/device/code", json={"provider": "github"})
            r.raise_for_status()
            code = r.json()

            console.print(device_code_panel(code))
            if browser:
                click.launch(code["verification_uri_complete"])

            with make_spinner() as progress:
                progress.add_task("Waiting for authorization in the browser…", total=None)
                token = poll_device_token(
                    client, code["device_code"], code["interval"], code["expires_in"]
                )
    except httpx.ConnectError:
        error(f"Cannot connect to API at {api_url}.")
        raise SystemExit(1)
    except httpx.HTTPStatusError as e:
        error(f"API error {e.response.status_code}: {e.response.text}")
        raise SystemExit(1)
    except DeviceLoginError as e:
        if e.error in _RESTART_ERRORS:
            error(f"{e.description}. Run `agentage login` again.")
        else:
            error(f"Login failed ({e.error}): {e.description}")
        raise SystemExit(1)

    path = save_credentials(api_url, token)
    user = token.get("user") or {}
    console.print(f"[green]✓[/green] Logged in as [bold]{user.get('email')}[/bold]")
    console.print(f"  Credentials saved to [dim]{path}[/dim]")


@click.command("logout")
def logout_cmd() -> None:
    """Forget the stored token."""
    if clear_credentials():
        console.print("[green]✓[/green] Logged out")
    else:
        console.print("[dim]Not logged in.[/dim]")


def _stored_token() -> str:
    creds = load_credentials()
    if creds is None:
        error("Not logged in. Run `agentage login` first.")
        raise SystemExit(1)
    return creds["access_token"]


@click.command("whoami")
@click.option("--providers", "show_providers", is_flag=True, default=False,
              help="Also list linked sign-in providers")
@click.pass_context
def whoami_cmd(ctx: click.Context, show_providers: bool) -> None:
    """Show the signed-in user."""
    token = _stored_token()
    api_url: str = ctx.obj["api_url"]

    try:
        with api_client(ctx, token) as client:
            r = client.get("/api/auth/me")
            if r.status_code in (401, 403):
                body = _error_body(r)
                error(f"{body.get('detail') or 'Not authorized'}. Run `agentage login` again.")
                raise SystemExit(1)
            r.raise_for_status()
            user = r.json()["user"]

            providers: list[dict[str, Any]] = []
            if show_providers:
                pr = client.get("/api/auth/providers")
                pr.raise_for_status()
                providers = pr.json()["providers"]
    except httpx.ConnectError:
        error(f"Cannot connect to API at {api_url}.")
        raise SystemExit(1)
    except httpx.HTTPStatusError as e:
        error(f"API error {e.response.status_code}: {e.response.text}")
        raise SystemExit(1)

    user_detail(user)
    if show_providers:
        console.print(providers_table(providers))
