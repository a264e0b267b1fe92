"""Policy engine for agent tool calls.

Decides, for a tool name and its arguments, whether the call may run
(``allow``) or needs a human to look at it first (``review``). The
decision is a pure function of the call and the resolved configuration.

Evaluation order:

1. Ignored tools are always allowed (highest precedence).
2. Shell tools (``toolInspection``) have their command analyzed. Actions
   covered by a path rule are classified by their operands; otherwise any
   dangerous word in the command, or strict mode, means review.
3. Every other tool is judged by the words in its name, or strict mode.

Ambiguity resolves to review: a rule that matches an action whose
operands are unknown or only partly allowed never allows.
"""

import logging
import re
from enum import Enum
from typing import Any

from toolwarden.policy.config import (
    Configuration,
    ConfigResolver,
    Rule,
    active_environment_name,
    get_resolver,
)
from toolwarden.policy.matching import matches
from toolwarden.policy.shell import analyze

logger = logging.getLogger(__name__)

_NAME_SEPARATORS = re.compile(r"[_.\-\s]+")


class Decision(str, Enum):
    """Outcome of a policy evaluation."""

    ALLOW = "allow"
    REVIEW = "review"


def tokenize_tool_name(tool_name: str) -> list[str]:
    """Split a tool name on ``_``, ``.``, ``-`` and whitespace."""
    return [token for token in _NAME_SEPARATORS.split(tool_name.lower()) if token]


def lookup_path(value: Any, dot_path: str) -> Any | None:
    """Read a nested field by dot-path, e.g. ``"params.command"``.

    Dict keys are looked up by name and list items by index. Any shape
    mismatch along the way yields None instead of an error.
    """
    current = value
    for part in dot_path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


class PolicyEngine:
    """Evaluates tool calls against the resolved configuration.

    This is the single decision point. The SDK wrapper, the hook
    commands and the proxy all ask it before anything runs.
    """

    def __init__(
        self,
        resolver: ConfigResolver | None = None,
        environment: str | None = None,
    ):
        self.resolver = resolver or get_resolver()
        self._environment = environment

    @property
    def config(self) -> Configuration:
        return self.resolver.resolve()

    @property
    def environment(self) -> str:
        return self._environment or active_environment_name()

    def evaluate(self, tool_name: str, args: Any = None) -> Decision:
        """Classify a tool call.

        Args:
            tool_name: Name of the tool the agent wants to call.
            args: The call's arguments, any JSON-like value.

        Returns:
            Decision.ALLOW or Decision.REVIEW.
        """
        decision, _ = self.assess(tool_name, args)
        return decision

    def assess(self, tool_name: str, args: Any = None) -> tuple[Decision, str]:
        """Classify a tool call and explain why.

        Returns:
            (decision, reason) tuple.
        """
        config = self.config

        if matches(tool_name, config.policy.ignored_tools):
            return Decision.ALLOW, f"'{tool_name}' is an ignored tool"

        command = self.extract_command(tool_name, args)
        if command is not None:
            decision, reason, rule_applied = self.check_command(command, config)
        else:
            decision, reason = self.check_tool_name(tool_name, config)
            rule_applied = False

        if decision is Decision.REVIEW and not rule_applied:
            override = config.environment(self.environment)
            if override is not None and override.require_approval is False:
                return Decision.ALLOW, f"Approval not required in '{self.environment}'"

        logger.debug(f"Policy: {tool_name} -> {decision.value} ({reason})")
        return decision, reason

    def extract_command(self, tool_name: str, args: Any) -> str | None:
        """Pull the shell command out of a shell tool's arguments.

        Returns:
            The command string, or None if this is not a shell tool or the
            configured field is missing or empty.
        """
        for pattern, dot_path in self.config.policy.tool_inspection.items():
            if matches(tool_name, [pattern]):
                value = lookup_path(args, dot_path)
                if isinstance(value, str) and value.strip():
                    return value
                return None
        return None

    def check_command(self, command: str, config: Configuration) -> tuple[Decision, str, bool]:
        """Classify a shell command.

        Returns:
            (decision, reason, rule_applied) tuple. ``rule_applied`` is True
            when a path rule produced the decision.
        """
        analysis = analyze(command)

        matched: list[tuple[str, Rule]] = []
        for action in analysis.actions:
            rule = self.find_rule(action, config.policy.rules)
            if rule is not None:
                matched.append((action, rule))

        if matched:
            for action, rule in matched:
                decision, reason = self.check_paths(rule, analysis.paths)
                if decision is Decision.REVIEW:
                    return decision, f"'{action}': {reason}", True
            return Decision.ALLOW, "All operands covered by allowPaths", True

        dangerous = {word.lower() for word in config.policy.dangerous_words}
        hits = [token for token in analysis.tokens if token in dangerous]
        if hits:
            return Decision.REVIEW, f"Command contains dangerous word '{hits[0]}'", False
        if config.strict:
            return Decision.REVIEW, "Strict mode requires approval", False
        return Decision.ALLOW, "No dangerous words in command", False

    def check_tool_name(self, tool_name: str, config: Configuration) -> tuple[Decision, str]:
        """Classify a non-shell tool by the words in its name."""
        dangerous = {word.lower() for word in config.policy.dangerous_words}
        hits = [token for token in tokenize_tool_name(tool_name) if token in dangerous]
        if hits:
            return Decision.REVIEW, f"Tool name contains dangerous word '{hits[0]}'"
        if config.strict:
            return Decision.REVIEW, "Strict mode requires approval"
        return Decision.ALLOW, "No dangerous words in tool name"

    @staticmethod
    def find_rule(action: str, rules: tuple[Rule, ...]) -> Rule | None:
        """First rule whose action matches (exactly, by glob, or by basename)."""
        basename = action.rstrip("/").rsplit("/", 1)[-1] if "/" in action else None
        for rule in rules:
            wanted = rule.action.lower()
            if action == wanted or matches(action, [wanted]):
                return rule
            if basename and (basename == wanted or matches(basename, [wanted])):
                return rule
        return None

    @staticmethod
    def check_paths(rule: Rule, paths: list[str]) -> tuple[Decision, str]:
        """Classify a rule-matched action by its operands."""
        if not paths:
            return Decision.REVIEW, "no operands to check against the rule"

        blocked = [path for path in paths if matches(path, rule.block_paths)]
        if blocked:
            return Decision.REVIEW, f"'{blocked[0]}' matches blockPaths"

        uncovered = [path for path in paths if not matches(path, rule.allow_paths)]
        if not uncovered:
            return Decision.ALLOW, "all operands match allowPaths"
        return Decision.REVIEW, f"'{uncovered[0]}' is not in allowPaths"


_engine: PolicyEngine | None = None


def get_engine() -> PolicyEngine:
    """Get the process-wide policy engine."""
    global _engine
    if _engine is None:
        _engine = PolicyEngine()
    return _engine


def evaluate_policy(tool_name: str, args: Any = None) -> Decision:
    """Evaluate a tool call with the process-wide engine."""
    return get_engine().evaluate(tool_name, args)
