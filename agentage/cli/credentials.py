"""Local storage of the CLI's bearer token.

Stored as JSON in ``~/.agentage/credentials.json`` (``AGENTAGE_HOME``
overrides the directory), readable by the owner only.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def credentials_path() -> Path:
    home = os.environ.get("AGENTAGE_HOME")
    base = Path(home) if home else Path.home() / ".agentage"
    return base / "credentials.json"


def load_credentials() -> dict[str, Any] | None:
    path = credentials_path()
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict) or not data.get("access_token"):
        return None
    return data


def save_credentials(api_url: str, token: dict[str, Any]) -> Path:
    path = credentials_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "api_url": api_url,
        "access_token": token["access_token"],
        "token_type": token.get("token_type", "Bearer"),
        "expires_in": token.get("expires_in"),
        "user": token.get("user"),
    }
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    path.chmod(0o600)
    return path


def clear_credentials() -> bool:
    path = credentials_path()
    if not path.exists():
        return False
    path.unlink()
    return True
