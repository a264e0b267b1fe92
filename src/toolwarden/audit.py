"""Audit trail for executed tool calls.

The post-tool hook (``toolwarden log``) appends one JSON line per call
to ``~/.toolwarden/audit.log``. Lines are append-only; nothing is ever
rewritten. Arguments are redacted before they touch the disk so API
keys and passwords pasted into commands don't end up in the log.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MASK = "********"

_SECRET_NAME = r"[A-Za-z0-9_]*(?:api[_-]?key|token|secret|password|passwd)[A-Za-z0-9_]*"

_REDACTIONS = [
    # Authorization: Bearer <token>
    (re.compile(r"(authorization:\s*bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE), rf"\1{MASK}"),
    # api_key="...", GITHUB_TOKEN=..., password: "..."
    (re.compile(rf"\b({_SECRET_NAME}[\"']?\s*[:=]\s*[\"']?)[^\s\"',]+", re.IGNORECASE), rf"\1{MASK}"),
    # long alphanumeric blobs with both letters and digits
    (re.compile(r"\b(?=[A-Za-z0-9]*\d)(?=[A-Za-z0-9]*[A-Za-z])[A-Za-z0-9]{32,}\b"), MASK),
]

_SECRET_KEY = re.compile(rf"^{_SECRET_NAME}$", re.IGNORECASE)


def redact_secrets(text: str) -> str:
    """Mask credentials in free text, keeping their labels."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def redact_args(value: Any) -> Any:
    """Redact a JSON-like value; secret-named keys are masked outright."""
    if isinstance(value, str):
        return redact_secrets(value)
    if isinstance(value, dict):
        return {
            key: MASK if isinstance(key, str) and _SECRET_KEY.match(key) and isinstance(item, str)
            else redact_args(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_args(item) for item in value]
    return value


@dataclass
class AuditRecord:
    """A single executed tool call."""

    tool_name: str
    args: Any = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "toolName": self.tool_name,
            "args": self.args,
        }


class AuditLog:
    """Append-only JSONL log of tool calls."""

    def __init__(self, path: Path | None = None):
        self.path = path or (Path.home() / ".toolwarden" / "audit.log")

    def record(self, tool_name: str, args: Any = None) -> AuditRecord:
        """Append a tool call to the log.

        Returns:
            The record as written (with redacted args).
        """
        entry = AuditRecord(tool_name=tool_name, args=redact_args(args))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")
        return entry

    def entries(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Read back logged calls, oldest first (last ``limit`` if given)."""
        if not self.path.exists():
            return []

        results = []
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    results.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping corrupt audit line in {self.path}")
        return results[-limit:] if limit else results
