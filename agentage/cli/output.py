"""Rich output helpers — device code panel, user detail, error display."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

console = Console()


def fmt_date(iso: str | None) -> str:
    if not iso:
        return "—"
    try:
        dt = datetime.fromisoformat(iso.replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return iso


def device_code_panel(code: dict[str, Any]) -> Panel:
    """What the user has to type, and where."""
    body = Text.assemble(
        ("Open ", "dim"),
        (code["verification_uri"], "bold underline"),
        ("\nand enter the code\n\n", "dim"),
        (f"  {code['user_code']}  ", "bold black on cyan"),
        (f"\n\nThe code expires in {code['expires_in'] // 60} minutes.", "dim"),
    )
    return Panel(body, title="[bold cyan]Device login", border_style="cyan", expand=False)


def user_detail(user: dict[str, Any]) -> None:
    """Print the signed-in user's profile."""
    console.rule(f"[bold cyan]{user.get('name') or user.get('email')}")

    fields = [
        ("ID", user.get("id")),
        ("Email", user.get("email")),
        ("Name", user.get("name")),
        ("Alias", user.get("verified_alias")),
        ("Role", user.get("role")),
        ("Providers", ", ".join(user.get("providers") or [])),
        ("Last login", fmt_date(user.get("last_login_at"))),
        ("Created", fmt_date(user.get("created_at"))),
    ]
    for label, value in fields:
        if value:
            console.print(f"  [dim]{label:<12}[/dim] {value}")


def providers_table(items: list[dict[str, Any]]) -> Table:
    table = Table(
        title=f"Linked providers ({len(items)})",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("Provider", style="bold")
    table.add_column("Email")
    table.add_column("Connected", style="dim")
    for p in items:
        table.add_row(p.get("name", ""), p.get("email", ""), fmt_date(p.get("connected_at")))
    return table


def error(message: str) -> None:
    console.print(f"[red]{message}[/red]")


def make_spinner() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )
