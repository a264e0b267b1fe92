"""toolwarden - policy guard for AI agent tool calls.

Every tool call an agent makes is classified as ``allow`` or ``review``
before it runs. Reviews go to a remote approver or to the operator at
the terminal; with neither available the call is blocked.

Modules:
    - policy: glob matching, shell analysis, layered config, the engine
    - authorize: turning review decisions into approved/denied
    - sdk: ``protect()`` wrapper for in-process functions
    - proxy: JSON-RPC proxy for stdio tool servers
    - integrations: hook wiring for Claude Code, Gemini CLI and Cursor
    - audit: redacted JSONL log of executed calls
"""

__version__ = "0.1.0"

from toolwarden.authorize import (
    ActionDenied,
    ApprovalUnavailable,
    AuthorizationResult,
    Authorizer,
    ToolwardenError,
    authorize_action,
    authorize_headless,
)
from toolwarden.policy import ConfigResolver, Decision, PolicyEngine, evaluate_policy
from toolwarden.sdk import protect

__all__ = [
    "ActionDenied",
    "ApprovalUnavailable",
    "AuthorizationResult",
    "Authorizer",
    "ToolwardenError",
    "authorize_action",
    "authorize_headless",
    "ConfigResolver",
    "Decision",
    "PolicyEngine",
    "evaluate_policy",
    "protect",
]
