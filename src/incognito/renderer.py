"""
Incognito - Terminal Rendering

Rich tables for storage state snapshots and routed request outcomes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table

from incognito.models import FulfillResponse, StorageState

RESOLUTION_STYLES = {
    "continue": "green",
    "fulfill": "cyan",
    "abort": "red",
    "network": "bright_black",
}


def _expires(value: float) -> str:
    if value < 0:
        return "session"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M")


def render_storage_state(state: StorageState, console: Console) -> None:
    """Print cookies and local storage of a snapshot."""
    cookies = Table(title=f"Cookies ({len(state.cookies)})", title_justify="left")
    cookies.add_column("Name", style="bold")
    cookies.add_column("Value")
    cookies.add_column("Domain")
    cookies.add_column("Path")
    cookies.add_column("Expires")
    cookies.add_column("Flags", style="dim")
    for cookie in state.cookies:
        flags = [f for f, on in (("HttpOnly", cookie.http_only), ("Secure", cookie.secure)) if on]
        flags.append(f"SameSite={cookie.same_site}")
        value = cookie.value if len(cookie.value) <= 40 else cookie.value[:37] + "..."
        cookies.add_row(
            cookie.name, value, cookie.domain or "", cookie.path or "",
            _expires(cookie.expires), " ".join(flags),
        )
    console.print(cookies)

    if not state.origins:
        console.print("[dim]No local storage.[/]")
        return
    for origin in state.origins:
        storage = Table(title=f"Local storage: {origin.origin}", title_justify="left")
        storage.add_column("Key", style="bold")
        storage.add_column("Value")
        for item in origin.local_storage:
            storage.add_row(item.name, item.value)
        console.print(storage)


def describe_resolution(resolution: tuple[str, Any]) -> str:
    kind, detail = resolution
    if kind == "fulfill" and isinstance(detail, FulfillResponse):
        return f"{detail.status} {detail.headers.get('content-type', '')}".strip()
    if kind == "abort":
        return str(detail)
    if kind == "continue" and detail:
        parts = [f"{k}={v}" for k, v in detail.items() if k != "headers"]
        parts.extend(f"{k}={v}" for k, v in detail.get("headers", {}).items())
        return ", ".join(parts)
    return ""


def render_requests(rows: list[tuple[str, tuple[str, Any]]], console: Console) -> None:
    """Print (url, resolution) pairs as returned by LoopbackDriver.request()."""
    table = Table(title="Requests", title_justify="left")
    table.add_column("URL")
    table.add_column("Outcome")
    table.add_column("Detail", style="dim")
    for url, resolution in rows:
        kind = resolution[0]
        style = RESOLUTION_STYLES.get(kind, "")
        table.add_row(url, f"[{style}]{kind}[/]" if style else kind, describe_resolution(resolution))
    console.print(table)
