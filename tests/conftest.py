"""Shared fixtures.

Every test runs with HOME and the working directory pointed at a temp
dir, no TOOLWARDEN_* variables, and fresh process-wide singletons, so
nothing reads or writes the real ~/.toolwarden.
"""

import json
from pathlib import Path

import pytest

from toolwarden import authorize
from toolwarden.policy import config, engine


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    home = tmp_path / "home"
    project = tmp_path / "project"
    home.mkdir()
    project.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(project)
    for var in ("TOOLWARDEN_ENV", "TOOLWARDEN_API_KEY", "TOOLWARDEN_API_URL"):
        monkeypatch.delenv(var, raising=False)

    monkeypatch.setattr(config, "_resolver", None)
    monkeypatch.setattr(engine, "_engine", None)
    monkeypatch.setattr(authorize, "_authorizer", None)
    return home, project


@pytest.fixture
def home(isolated_env) -> Path:
    return isolated_env[0]


@pytest.fixture
def project(isolated_env) -> Path:
    return isolated_env[1]


@pytest.fixture
def resolver(home, project):
    """Resolver bound to the temp project and home."""
    return config.ConfigResolver(cwd=project, home=home)


@pytest.fixture
def write_config():
    """Write a config document to a path, creating parents."""

    def _write(path: Path, document) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        text = document if isinstance(document, str) else json.dumps(document)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


class FakePrompter:
    """Stands in for the terminal: fixed availability and answer."""

    def __init__(self, available: bool = True, answer: bool = False):
        self._available = available
        self.answer = answer
        self.calls: list[tuple] = []

    def available(self) -> bool:
        return self._available

    def confirm(self, tool_name, args, reason=""):
        self.calls.append((tool_name, args, reason))
        return self.answer


@pytest.fixture
def prompter_factory():
    return FakePrompter
