"""Decision core for toolwarden.

Everything needed to turn a tool call into ``allow`` or ``review``:

- matching: glob patterns with globstar, case-insensitive
- shell: command analysis that sees through quoting, escapes,
  chaining and substitution
- config: layered configuration (project, global, built-in)
- engine: the policy engine itself
"""

from toolwarden.policy.config import (
    Configuration,
    ConfigResolver,
    EnvironmentOverride,
    Policy,
    Rule,
    Settings,
    get_resolver,
    reset_config,
)
from toolwarden.policy.engine import (
    Decision,
    PolicyEngine,
    evaluate_policy,
    get_engine,
    lookup_path,
)
from toolwarden.policy.matching import matches
from toolwarden.policy.shell import ShellAnalysis, analyze

__all__ = [
    "Configuration",
    "ConfigResolver",
    "EnvironmentOverride",
    "Policy",
    "Rule",
    "Settings",
    "get_resolver",
    "reset_config",
    "Decision",
    "PolicyEngine",
    "evaluate_policy",
    "get_engine",
    "lookup_path",
    "matches",
    "ShellAnalysis",
    "analyze",
]
