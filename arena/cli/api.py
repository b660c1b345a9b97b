"""HTTP plumbing shared by the CLI commands.

The CLI is a thin client: every command is one request to the Arena
service, rendered with rich.
"""

import os
from typing import Any

import requests
from rich.console import Console

from arena.utils.config import config

console = Console()


def _get_server_url() -> str:
    """Resolve the server URL from env or config."""
    return os.getenv("ARENA_SERVER_URL", config.server_url).rstrip("/")


def call(method: str, path: str, account: str | None = None, **kwargs: Any) -> Any | None:
    """Send one request and return the decoded body, or None after printing the error."""
    headers = {"X-Account-Id": account} if account else {}
    try:
        resp = requests.request(
            method,
            f"{_get_server_url()}{path}",
            headers=headers,
            timeout=10,
            **kwargs,
        )
    except requests.ConnectionError:
        console.print("[red]Cannot connect to Arena server.[/red] Is it running?")
        return None

    if resp.status_code == 204:
        return {}
    if resp.status_code >= 400:
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        console.print(f"[red]Error:[/red] {detail}")
        return None
    return resp.json()
