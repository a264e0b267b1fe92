"""CLI interface for toolwarden.

Quick start:
    toolwarden init                        # Write the default policy
    toolwarden addto claude                # Hook into Claude Code
    toolwarden explain shell --args '{"command": "rm -rf src"}'
    toolwarden run npx some-mcp-server     # Check the command, then proxy it

Hook commands (called by agents, not people):
    toolwarden check '<payload>'           # Pre-tool: block or allow
    toolwarden log '<payload>'             # Post-tool: append to audit log
"""

import asyncio
import json
import logging
import shlex
import sys
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from toolwarden import __version__
from toolwarden.audit import AuditLog
from toolwarden.authorize import authorize_headless
from toolwarden.credentials import DEFAULT_API_URL, save_credentials
from toolwarden.integrations import TARGETS
from toolwarden.policy.config import default_config_document, get_resolver
from toolwarden.policy.engine import Decision, get_engine
from toolwarden.proxy import run_proxy, sanitize

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="toolwarden",
    help="Policy guard for AI agent tool calls",
    no_args_is_help=True,
)

console = Console()
# Hooks and the proxy own stdout
err_console = Console(stderr=True)

PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log decisions to stderr"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _read_payload(data: str | None) -> str:
    if data:
        return data
    if sys.stdin is None or sys.stdin.isatty():
        return ""
    return sys.stdin.read()


def _parse_hook_payload(raw: str) -> dict[str, Any] | None:
    if not raw.strip():
        return None
    payload = json.loads(raw)
    return payload if isinstance(payload, dict) else None


def block_document(reason: str) -> dict[str, Any]:
    """Hook output that makes Claude Code and Gemini CLI refuse the call."""
    return {
        "decision": "block",
        "reason": reason,
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "deny",
            "permissionDecisionReason": reason,
        },
    }


@app.command()
def check(
    data: str = typer.Argument(None, help="JSON tool call (read from stdin if omitted)"),
) -> None:
    """Pre-tool hook: evaluate a tool call before it runs.

    Always exits 0. A blocked call is reported on stdout in the format
    agents understand; anything unparseable is let through.
    """
    try:
        payload = _parse_hook_payload(_read_payload(data))
        if payload is None:
            return

        tool_name = sanitize(str(payload.get("tool_name") or ""))
        tool_input = payload.get("tool_input")
        result = asyncio.run(authorize_headless(tool_name, tool_input if tool_input is not None else {}))
    except Exception as e:
        logger.warning(f"Ignoring unreadable hook payload: {e}")
        return

    if result.approved:
        return

    reason = result.reason or f'toolwarden blocked "{tool_name}".'
    err_console.print(f"\n[red]🛡️  toolwarden security block: {escape(reason)}[/red]\n")
    typer.echo(json.dumps(block_document(reason)))


@app.command()
def log(
    data: str = typer.Argument(None, help="JSON tool call (read from stdin if omitted)"),
) -> None:
    """Post-tool hook: record an executed tool call in the audit log."""
    try:
        payload = _parse_hook_payload(_read_payload(data))
        if payload is None:
            return
        AuditLog().record(sanitize(str(payload.get("tool_name") or "unknown")), payload.get("tool_input"))
    except Exception as e:
        logger.warning(f"Could not write audit entry: {e}")


@app.command()
def login(
    api_key: str = typer.Argument(..., help="API key for remote approvals"),
    url: str = typer.Option(DEFAULT_API_URL, "--url", help="Approval service endpoint"),
) -> None:
    """Save credentials for remote approvals."""
    path = save_credentials(api_key, url)
    console.print(f"[green]✅ Credentials saved to {path}[/green]")
    console.print("[dim]Reviews will now be routed to the approval service.[/dim]")


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
) -> None:
    """Write the default policy to ~/.toolwarden/config.json."""
    path = get_resolver().global_path
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        console.print("Use --force to overwrite it.")
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(default_config_document(), indent=2) + "\n", encoding="utf-8")
    console.print(f"[green]✅ Default config written to {path}[/green]")
    console.print("Edit it, or drop a toolwarden.config.json into a project to override it there.")


@app.command()
def addto(
    target: str = typer.Argument(..., help="Agent to protect: claude, gemini or cursor"),
) -> None:
    """Install toolwarden hooks into a coding agent."""
    setup = TARGETS.get(target.lower())
    if setup is None:
        console.print(f"[red]Unknown target '{escape(target)}'. Choose from: {', '.join(TARGETS)}[/red]")
        raise typer.Exit(1)
    setup()


@app.command()
def explain(
    tool: str = typer.Argument(..., help="Tool name"),
    args: str = typer.Option(None, "--args", "-a", help="Tool arguments as JSON"),
) -> None:
    """Show how the policy classifies a tool call (nothing is run)."""
    try:
        parsed = json.loads(args) if args else {}
    except json.JSONDecodeError as e:
        console.print(f"[red]--args is not valid JSON: {e}[/red]")
        raise typer.Exit(2)

    engine = get_engine()
    decision, reason = engine.assess(tool, parsed)
    source = engine.resolver.source or "built-in defaults"
    color = "green" if decision is Decision.ALLOW else "red"

    console.print(Panel(
        f"[bold]Decision:[/bold] [{color}]{decision.value}[/{color}]\n"
        f"[bold]Reason:[/bold] {escape(reason)}\n"
        f"[bold]Environment:[/bold] {engine.environment}\n"
        f"[bold]Config:[/bold] {source}",
        title=f"toolwarden: {escape(tool)}",
    ))


@app.command(context_settings=PASSTHROUGH)
def proxy(
    command: list[str] = typer.Argument(..., help="Tool server command to run"),
) -> None:
    """Run a JSON-RPC tool server, authorizing its tool calls."""
    raise typer.Exit(run_proxy(command))


@app.command(context_settings=PASSTHROUGH)
def run(
    command: list[str] = typer.Argument(..., help="Command to check and run"),
) -> None:
    """Check a command against the policy, then run it through the proxy."""
    full_command = command[0] if len(command) == 1 else shlex.join(command)
    result = asyncio.run(authorize_headless("shell", {"command": full_command}))
    if not result.approved:
        err_console.print(f"\n[red]❌ toolwarden blocked: {escape(result.reason or 'Dangerous command detected.')}[/red]")
        raise typer.Exit(1)
    raise typer.Exit(run_proxy(command))


@app.command()
def version() -> None:
    """Show the toolwarden version."""
    console.print(f"toolwarden version {__version__}")


if __name__ == "__main__":
    app()
