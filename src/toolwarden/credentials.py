"""Remote approval credentials.

Looked up in order:
1. ``TOOLWARDEN_API_KEY`` (and optional ``TOOLWARDEN_API_URL``)
2. ``~/.toolwarden/credentials.json``, written by ``toolwarden login``
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.toolwarden.dev/v1/intercept"


@dataclass(frozen=True)
class Credentials:
    api_key: str
    api_url: str = DEFAULT_API_URL


def credentials_path() -> Path:
    return Path.home() / ".toolwarden" / "credentials.json"


def load_credentials(path: Path | None = None) -> Credentials | None:
    """Find credentials for the remote approval service.

    Returns:
        Credentials, or None when nothing usable is configured.
    """
    env_key = os.environ.get("TOOLWARDEN_API_KEY")
    if env_key:
        return Credentials(
            api_key=env_key,
            api_url=os.environ.get("TOOLWARDEN_API_URL") or DEFAULT_API_URL,
        )

    path = path or credentials_path()
    if not path.is_file():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable credentials at {path}: {e}")
        return None

    if not isinstance(data, dict) or not data.get("apiKey"):
        return None
    return Credentials(api_key=str(data["apiKey"]), api_url=str(data.get("apiUrl") or DEFAULT_API_URL))


def save_credentials(api_key: str, api_url: str = DEFAULT_API_URL, path: Path | None = None) -> Path:
    """Persist credentials (owner-readable only)."""
    path = path or credentials_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"apiKey": api_key, "apiUrl": api_url}, indent=2) + "\n", encoding="utf-8")
    path.chmod(0o600)
    return path
