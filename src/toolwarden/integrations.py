"""Wire toolwarden into coding agents.

    toolwarden addto claude
    toolwarden addto gemini
    toolwarden addto cursor

Each target gets two hooks: ``toolwarden check`` before every tool call
and ``toolwarden log`` after it. Adding hooks is idempotent and happens
without asking. Rewriting existing MCP server entries to run through
``toolwarden proxy`` changes the user's config, so it is previewed and
confirmed first.
"""

import json
import logging
import shlex
from pathlib import Path
from typing import Any, Callable

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm

logger = logging.getLogger(__name__)

console = Console()

CHECK_COMMAND = "toolwarden check"
LOG_COMMAND = "toolwarden log"
PROXY_EXECUTABLE = "toolwarden"

ConfirmFn = Callable[[str], bool]


def _ask(question: str) -> bool:
    return Confirm.ask(question, default=True, console=console)


def read_json(path: Path) -> dict[str, Any]:
    """Load a JSON object, treating missing or corrupt files as empty."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


def _has_command(matchers: Any, command: str) -> bool:
    if not isinstance(matchers, list):
        return False
    return any(
        command in str(hook.get("command", ""))
        for matcher in matchers if isinstance(matcher, dict)
        for hook in matcher.get("hooks", []) if isinstance(hook, dict)
    )


def _add_matcher_hook(hooks: dict[str, Any], event: str, command: str, entry: dict[str, Any]) -> bool:
    if _has_command(hooks.get(event), command):
        return False
    if not isinstance(hooks.get(event), list):
        hooks[event] = []
    hooks[event].append({"matcher": ".*", "hooks": [entry]})
    console.print(f"  [green]✅ {event} hook added → {command}[/green]")
    return True


def servers_to_wrap(servers: dict[str, Any]) -> list[tuple[str, str]]:
    """MCP servers not yet running through the proxy, with their command lines."""
    pending = []
    for name, server in servers.items():
        if not isinstance(server, dict):
            continue
        command = server.get("command")
        if not command or command == PROXY_EXECUTABLE:
            continue
        original = shlex.join([command, *[str(arg) for arg in server.get("args") or []]])
        pending.append((name, original))
    return pending


def _wrap_servers(config: dict[str, Any], path: Path, confirm: ConfirmFn) -> bool:
    servers = config.get("mcpServers")
    if not isinstance(servers, dict):
        return False

    pending = servers_to_wrap(servers)
    if not pending:
        return False

    console.print("[bold]The following existing entries will be modified:[/bold]\n")
    console.print(f"  {path}")
    for name, original in pending:
        console.print(f'[dim]    • {escape(name)}: "{escape(original)}" → toolwarden proxy "{escape(original)}"[/dim]')
    console.print("")

    if not confirm("Wrap these MCP servers?"):
        console.print("[yellow]  Skipped MCP server wrapping.[/yellow]")
        return False

    for name, original in pending:
        servers[name] = {**servers[name], "command": PROXY_EXECUTABLE, "args": ["proxy", original]}
    write_json(path, config)
    console.print(f"\n  [green]✅ {len(pending)} MCP server(s) wrapped[/green]")
    return True


def _summary(agent: str, changed: bool) -> None:
    if changed:
        console.print(f"[bold green]🛡️  toolwarden is now protecting {agent}![/bold green]")
        console.print(f"[dim]    Restart {agent} for changes to take effect.[/dim]")
    else:
        console.print(f"[blue]ℹ️  toolwarden is already configured for {agent}.[/blue]")


def setup_claude(home: Path | None = None, confirm: ConfirmFn = _ask) -> bool:
    """Add hooks to ``~/.claude/settings.json`` and wrap ``~/.claude.json`` servers.

    Returns:
        True if anything was changed.
    """
    home = home or Path.home()
    settings_path = home / ".claude" / "settings.json"
    mcp_path = home / ".claude.json"

    settings = read_json(settings_path)
    hooks = settings.setdefault("hooks", {})
    added = _add_matcher_hook(
        hooks, "PreToolUse", CHECK_COMMAND,
        {"type": "command", "command": CHECK_COMMAND, "timeout": 60},
    )
    added |= _add_matcher_hook(
        hooks, "PostToolUse", LOG_COMMAND,
        {"type": "command", "command": LOG_COMMAND},
    )
    if added:
        write_json(settings_path, settings)

    wrapped = _wrap_servers(read_json(mcp_path), mcp_path, confirm)
    _summary("Claude Code", added or wrapped)
    return added or wrapped


def setup_gemini(home: Path | None = None, confirm: ConfirmFn = _ask) -> bool:
    """Add hooks and wrap servers in ``~/.gemini/settings.json``."""
    home = home or Path.home()
    settings_path = home / ".gemini" / "settings.json"

    settings = read_json(settings_path)
    hooks = settings.setdefault("hooks", {})
    added = _add_matcher_hook(
        hooks, "BeforeTool", CHECK_COMMAND,
        # Gemini CLI timeouts are in milliseconds
        {"name": "toolwarden-check", "type": "command", "command": CHECK_COMMAND, "timeout": 60000},
    )
    added |= _add_matcher_hook(
        hooks, "AfterTool", LOG_COMMAND,
        {"name": "toolwarden-log", "type": "command", "command": LOG_COMMAND},
    )
    if added:
        write_json(settings_path, settings)

    # Re-read so the hooks we just wrote survive server wrapping
    wrapped = _wrap_servers(read_json(settings_path), settings_path, confirm)
    _summary("Gemini CLI", added or wrapped)
    return added or wrapped


def setup_cursor(home: Path | None = None, confirm: ConfirmFn = _ask) -> bool:
    """Add hooks to ``~/.cursor/hooks.json`` and wrap ``~/.cursor/mcp.json`` servers."""
    home = home or Path.home()
    hooks_path = home / ".cursor" / "hooks.json"
    mcp_path = home / ".cursor" / "mcp.json"

    hooks_file = read_json(hooks_path) or {"version": 1}
    hooks = hooks_file.setdefault("hooks", {})

    added = False
    for event, subcommand in (("preToolUse", "check"), ("postToolUse", "log")):
        entries = hooks.get(event)
        if not isinstance(entries, list):
            entries = hooks[event] = []
        present = any(
            isinstance(entry, dict)
            and entry.get("command") == PROXY_EXECUTABLE
            and subcommand in (entry.get("args") or [])
            for entry in entries
        )
        if not present:
            entries.append({"command": PROXY_EXECUTABLE, "args": [subcommand]})
            console.print(f"  [green]✅ {event} hook added → toolwarden {subcommand}[/green]")
            added = True
    if added:
        write_json(hooks_path, hooks_file)

    wrapped = _wrap_servers(read_json(mcp_path), mcp_path, confirm)
    _summary("Cursor", added or wrapped)
    return added or wrapped


TARGETS: dict[str, Callable[..., bool]] = {
    "claude": setup_claude,
    "gemini": setup_gemini,
    "cursor": setup_cursor,
}
