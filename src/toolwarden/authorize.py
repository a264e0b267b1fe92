"""Authorization for tool calls the policy engine flags for review.

A ``review`` decision is resolved to approved/denied by, in order:

1. Remote approval, when credentials are configured. One POST to the
   approval service with a hard deadline; any failure is a denial.
2. The operator at an interactive terminal (default: deny).
3. Nothing: fail closed. The blocking entry point raises
   ``ApprovalUnavailable`` with instructions; the headless entry point
   returns a denial with the same instructions and never raises.
"""

import asyncio
import json
import logging
import os
import socket
import sys
from dataclasses import dataclass
from typing import Any, Callable, TextIO

import httpx
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm

from toolwarden.audit import redact_args
from toolwarden.credentials import Credentials, load_credentials
from toolwarden.policy.config import PROJECT_CONFIG_NAME
from toolwarden.policy.engine import Decision, PolicyEngine, get_engine

logger = logging.getLogger(__name__)

REMOTE_APPROVAL_TIMEOUT = 35.0
PREVIEW_LIMIT = 500

# Operator-facing output stays off stdout (hook and protocol channel)
console = Console(stderr=True)


class ToolwardenError(Exception):
    """Base class for toolwarden errors."""


class ApprovalUnavailable(ToolwardenError):
    """Raised when a call needs review but nobody can approve it."""

    def __init__(self, message: str, tool_name: str = ""):
        super().__init__(message)
        self.tool_name = tool_name


class ActionDenied(ToolwardenError):
    """Raised when a reviewer denied a protected call."""

    def __init__(self, message: str, tool_name: str = ""):
        super().__init__(message)
        self.tool_name = tool_name


@dataclass
class AuthorizationResult:
    approved: bool
    reason: str | None = None


def guidance_for(tool_name: str) -> str:
    """How to unblock a call that could not be reviewed."""
    return (
        f'toolwarden blocked "{tool_name}". Run \'toolwarden login\' to enable '
        f"remote approvals, or update {PROJECT_CONFIG_NAME} policy."
    )


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


def _preview(args: Any) -> str:
    text = json.dumps(redact_args(_jsonable(args)), indent=2)
    if len(text) > PREVIEW_LIMIT:
        text = text[:PREVIEW_LIMIT] + "\n  ... (truncated)"
    return text


class TerminalPrompter:
    """Asks the operator at a terminal to approve a call.

    Args:
        output: Console to render the request on.
        stream: Where to read the answer from. Defaults to stdin; the
            proxy passes ``/dev/tty`` because its stdin belongs to the child.
    """

    def __init__(self, output: Console | None = None, stream: TextIO | None = None):
        self.console = output or console
        self.stream = stream

    def available(self) -> bool:
        return self.stream is not None or sys.stdout.isatty()

    def confirm(self, tool_name: str, args: Any, reason: str = "") -> bool:
        self.console.print(
            Panel(
                f"[bold]Action:[/bold] [red]{escape(tool_name)}[/red]\n"
                f"[bold]Args:[/bold]\n[dim]{escape(_preview(args))}[/dim]"
                + (f"\n[dim]Policy: {escape(reason)}[/dim]" if reason else ""),
                title="🛑 toolwarden",
                border_style="red",
            )
        )
        return Confirm.ask("Authorize?", default=False, console=self.console, stream=self.stream)


class Authorizer:
    """Resolves policy decisions into approved/denied.

    Args:
        engine: Policy engine to consult.
        credentials: Callable returning remote credentials (or None).
        prompter: Terminal prompter for interactive review.
        timeout: Deadline for the remote approval call, in seconds.
        transport: Optional httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        engine: PolicyEngine | None = None,
        credentials: Callable[[], Credentials | None] = load_credentials,
        prompter: TerminalPrompter | None = None,
        timeout: float = REMOTE_APPROVAL_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.engine = engine or get_engine()
        self.credentials = credentials
        self.prompter = prompter or TerminalPrompter()
        self.timeout = timeout
        self.transport = transport

    async def authorize_action(self, tool_name: str, args: Any = None) -> bool:
        """Blocking form, used by the SDK wrapper.

        Returns:
            True if the call may run.

        Raises:
            ApprovalUnavailable: Review needed but no remote credentials
                and no terminal.
        """
        decision, reason = self.engine.assess(tool_name, args)
        if decision is Decision.ALLOW:
            return True

        approved = await self._review(tool_name, args, reason)
        if approved is None:
            raise ApprovalUnavailable(guidance_for(tool_name), tool_name=tool_name)
        return approved

    async def authorize_headless(self, tool_name: str, args: Any = None) -> AuthorizationResult:
        """Non-throwing form, used by hooks and the proxy.

        Never raises: any failure becomes a denial with a reason.
        """
        try:
            decision, reason = self.engine.assess(tool_name, args)
            if decision is Decision.ALLOW:
                return AuthorizationResult(approved=True)

            approved = await self._review(tool_name, args, reason)
            if approved is None:
                return AuthorizationResult(approved=False, reason=guidance_for(tool_name))
            return AuthorizationResult(approved=approved)
        except Exception as e:
            logger.error(f"Authorization of {tool_name!r} failed: {e}")
            return AuthorizationResult(
                approved=False,
                reason=f'toolwarden could not evaluate "{tool_name}": {e}',
            )

    async def _review(self, tool_name: str, args: Any, reason: str) -> bool | None:
        """Resolve a review. None means nobody was available to decide."""
        creds = self.credentials()
        override = self.engine.config.environment(self.engine.environment)
        slack_channel = override.slack_channel if override else None

        if creds is not None and creds.api_key:
            console.print(f"[blue]toolwarden: routing approval to {slack_channel or 'default channel'}...[/blue]")
            return await self.request_remote_approval(tool_name, args, creds, slack_channel)

        if self.prompter.available():
            return await asyncio.to_thread(self.prompter.confirm, tool_name, args, reason)

        logger.info(f"No reviewer available for {tool_name!r}; denying")
        return None

    async def request_remote_approval(
        self,
        tool_name: str,
        args: Any,
        creds: Credentials,
        slack_channel: str | None = None,
    ) -> bool:
        """Ask the remote approval service. One attempt; failure is denial."""
        headers = {"Authorization": f"Bearer {creds.api_key}"}

        try:
            payload: dict[str, Any] = {
                "toolName": tool_name,
                "args": _jsonable(args),
                "context": {
                    "hostname": socket.gethostname(),
                    "cwd": os.getcwd(),
                    "platform": sys.platform,
                },
            }
            if slack_channel:
                payload["slackChannel"] = slack_channel

            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await asyncio.wait_for(
                    client.post(creds.api_url, json=payload, headers=headers),
                    timeout=self.timeout,
                )
            response.raise_for_status()
            data = response.json()
        except asyncio.TimeoutError:
            logger.error(f"Remote approval timed out after {self.timeout}s")
            return False
        except Exception as e:
            logger.error(f"Remote approval failed: {e}")
            return False

        approved = isinstance(data, dict) and data.get("approved") is True
        message = data.get("message") if isinstance(data, dict) else None
        if approved:
            console.print(f"[green]toolwarden: {message or 'Approved'}[/green]")
        else:
            console.print(f"[red]toolwarden: {message or 'Denied'}[/red]")
        return approved


_authorizer: Authorizer | None = None


def get_authorizer() -> Authorizer:
    """Get the process-wide authorizer."""
    global _authorizer
    if _authorizer is None:
        _authorizer = Authorizer()
    return _authorizer


async def authorize_action(tool_name: str, args: Any = None) -> bool:
    return await get_authorizer().authorize_action(tool_name, args)


async def authorize_headless(tool_name: str, args: Any = None) -> AuthorizationResult:
    return await get_authorizer().authorize_headless(tool_name, args)
