"""Layered configuration for the policy engine.

Configuration is read from the first source that exists and parses:

1. ``toolwarden.config.json`` in the working directory (project)
2. ``~/.toolwarden/config.json`` (user-global)
3. Built-in defaults

The winning file is used wholesale: each top-level section it defines
(``settings``, ``policy``, ``environments``) replaces the built-in
section, and sections it leaves out fall back to the built-ins. Nothing
is merged between the project and global files.

A file that is not valid JSON (or does not validate) is skipped with a
warning. Unknown keys are reported but never fatal.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = "toolwarden.config.json"
ENVIRONMENT_VARIABLE = "TOOLWARDEN_ENV"
DEFAULT_ENVIRONMENT = "development"

DANGEROUS_WORDS: tuple[str, ...] = (
    "delete", "drop", "remove", "terminate", "refund",
    "write", "update", "destroy", "rm", "rmdir", "purge", "format",
)

IGNORED_TOOLS: tuple[str, ...] = (
    "list_*", "get_*", "read_*", "describe_*",
    "read", "write", "edit", "multiedit", "glob", "grep", "ls",
    "notebookread", "notebookedit", "todoread", "todowrite",
    "webfetch", "websearch", "exitplanmode", "askuserquestion",
)

TOOL_INSPECTION: dict[str, str] = {
    "bash": "command",               # Claude Code
    "shell": "command",              # Gemini CLI
    "run_shell_command": "command",  # Gemini CLI (older)
    "terminal.execute": "command",
}


class FrozenDict(dict):
    """A dict that refuses changes once built.

    Frozen models only stop attribute assignment; mapping fields use this
    so a resolved configuration cannot be edited in place.
    """

    def _read_only(self, *args, **kwargs):
        raise TypeError(f"{type(self).__name__} is read-only")

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only

    def __reduce__(self):
        return type(self), (dict(self),)


class _Section(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)


class Settings(_Section):
    mode: Literal["standard", "strict"] = "standard"


class Rule(_Section):
    """Path classification for one shell action (e.g. ``rm``)."""

    action: str
    allow_paths: tuple[str, ...] = Field(default=(), alias="allowPaths")
    block_paths: tuple[str, ...] = Field(default=(), alias="blockPaths")


def _default_rules() -> tuple[Rule, ...]:
    return (
        Rule(action="rm", allow_paths=("**/node_modules/**", "dist/**", "build/**", ".DS_Store")),
    )


class Policy(_Section):
    dangerous_words: tuple[str, ...] = Field(default=DANGEROUS_WORDS, alias="dangerousWords")
    ignored_tools: tuple[str, ...] = Field(default=IGNORED_TOOLS, alias="ignoredTools")
    tool_inspection: dict[str, str] = Field(
        default_factory=lambda: FrozenDict(TOOL_INSPECTION), alias="toolInspection")
    rules: tuple[Rule, ...] = Field(default_factory=_default_rules)

    @field_validator("tool_inspection")
    @classmethod
    def freeze_inspection(cls, value: dict[str, str]) -> dict[str, str]:
        return FrozenDict(value)


class EnvironmentOverride(_Section):
    require_approval: bool | None = Field(default=None, alias="requireApproval")
    slack_channel: str | None = Field(default=None, alias="slackChannel")


class Configuration(_Section):
    """A resolved, immutable configuration snapshot."""

    version: str | None = None
    settings: Settings = Field(default_factory=Settings)
    policy: Policy = Field(default_factory=Policy)
    environments: dict[str, EnvironmentOverride] = Field(default_factory=FrozenDict)

    @field_validator("environments")
    @classmethod
    def freeze_environments(cls, value: dict[str, EnvironmentOverride]) -> dict[str, EnvironmentOverride]:
        return FrozenDict(value)

    @property
    def strict(self) -> bool:
        return self.settings.mode == "strict"

    def environment(self, name: str) -> EnvironmentOverride | None:
        return self.environments.get(name)


DEFAULT_CONFIG = Configuration()


def active_environment_name() -> str:
    """Name of the environment whose overrides apply to this process."""
    return os.environ.get(ENVIRONMENT_VARIABLE) or DEFAULT_ENVIRONMENT


def default_config_document() -> dict[str, Any]:
    """The built-in configuration as a JSON-ready document."""
    document = DEFAULT_CONFIG.model_dump(mode="json", by_alias=True, exclude={"environments"})
    document["version"] = "1.0"
    return document


def _unknown_keys(model: BaseModel, prefix: str = "") -> list[str]:
    found = [f"{prefix}{key}" for key in (model.model_extra or {})]
    for name in type(model).model_fields:
        value = getattr(model, name)
        if isinstance(value, BaseModel):
            found.extend(_unknown_keys(value, f"{prefix}{name}."))
        elif isinstance(value, dict):
            for key, child in value.items():
                if isinstance(child, BaseModel):
                    found.extend(_unknown_keys(child, f"{prefix}{name}.{key}."))
        elif isinstance(value, tuple):
            for index, child in enumerate(value):
                if isinstance(child, BaseModel):
                    found.extend(_unknown_keys(child, f"{prefix}{name}[{index}]."))
    return found


class ConfigResolver:
    """Resolves and caches the configuration for one process.

    Construct one and pass it to the components that need it; call
    ``reset()`` to force the next ``resolve()`` to re-read the files.
    """

    def __init__(self, cwd: Path | None = None, home: Path | None = None):
        self._cwd = cwd
        self._home = home
        self._cached: Configuration | None = None
        self.source: Path | None = None

    @property
    def project_path(self) -> Path:
        return (self._cwd or Path.cwd()) / PROJECT_CONFIG_NAME

    @property
    def global_path(self) -> Path:
        return (self._home or Path.home()) / ".toolwarden" / "config.json"

    def resolve(self) -> Configuration:
        """Return the cached configuration, loading it on first use."""
        if self._cached is not None:
            return self._cached

        for path in (self.project_path, self.global_path):
            config = self._load(path)
            if config is not None:
                logger.debug(f"Using configuration from {path}")
                self.source = path
                self._cached = config
                return config

        self.source = None
        self._cached = DEFAULT_CONFIG
        return self._cached

    def reset(self) -> None:
        """Drop the cached configuration."""
        self._cached = None
        self.source = None

    def _load(self, path: Path) -> Configuration | None:
        if not path.is_file():
            return None

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Invalid config at {path}, skipping: {e}")
            return None

        if not isinstance(raw, dict):
            logger.warning(f"Invalid config at {path}, skipping: top level must be an object")
            return None

        try:
            config = Configuration.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Invalid config at {path}, skipping: {e}")
            return None

        for key in _unknown_keys(config):
            logger.warning(f"Unknown config key '{key}' in {path}")
        return config


_resolver: ConfigResolver | None = None


def get_resolver() -> ConfigResolver:
    """Get the process-wide resolver."""
    global _resolver
    if _resolver is None:
        _resolver = ConfigResolver()
    return _resolver


def reset_config() -> None:
    """Forget the process-wide configuration (reload on next use)."""
    get_resolver().reset()
