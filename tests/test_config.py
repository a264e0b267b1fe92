"""Tests for layered configuration."""

import json
import logging
import pickle

import pytest

from toolwarden.policy.config import (
    DANGEROUS_WORDS,
    DEFAULT_CONFIG,
    ConfigResolver,
    active_environment_name,
    default_config_document,
    get_resolver,
    reset_config,
)


class TestDefaults:

    def test_no_files_means_builtin_defaults(self, resolver):
        config = resolver.resolve()
        assert config == DEFAULT_CONFIG
        assert resolver.source is None
        assert config.settings.mode == "standard"
        assert "delete" in config.policy.dangerous_words
        assert config.policy.tool_inspection["bash"] == "command"
        assert config.policy.rules[0].action == "rm"

    def test_default_document_round_trips(self, resolver, home, write_config):
        document = default_config_document()
        assert document["version"] == "1.0"
        assert "environments" not in document
        assert document["policy"]["dangerousWords"] == list(DANGEROUS_WORDS)
        assert document["policy"]["rules"][0]["allowPaths"]

        write_config(resolver.global_path, document)
        assert resolver.resolve().policy == DEFAULT_CONFIG.policy


class TestPrecedence:

    def test_project_beats_global(self, resolver, write_config):
        write_config(resolver.global_path, {"settings": {"mode": "strict"}})
        write_config(resolver.project_path, {"settings": {"mode": "standard"}})
        assert resolver.resolve().settings.mode == "standard"
        assert resolver.source == resolver.project_path

    def test_global_used_without_project(self, resolver, write_config):
        write_config(resolver.global_path, {"settings": {"mode": "strict"}})
        assert resolver.resolve().strict
        assert resolver.source == resolver.global_path

    def test_empty_list_in_project_shadows_global(self, resolver, write_config):
        write_config(resolver.global_path, {"policy": {"dangerousWords": ["delete"]}})
        write_config(resolver.project_path, {"policy": {"dangerousWords": []}})
        assert resolver.resolve().policy.dangerous_words == ()

    def test_missing_section_falls_back_to_builtin(self, resolver, write_config):
        write_config(resolver.project_path, {"settings": {"mode": "strict"}})
        config = resolver.resolve()
        assert config.strict
        assert config.policy == DEFAULT_CONFIG.policy

    def test_present_section_replaces_builtin_section(self, resolver, write_config):
        write_config(resolver.project_path, {"policy": {"rules": []}})
        policy = resolver.resolve().policy
        assert policy.rules == ()
        # fields the file leaves out keep their built-in values
        assert policy.dangerous_words == DANGEROUS_WORDS


class TestInvalidFiles:

    def test_malformed_project_falls_through_to_global(self, resolver, write_config, caplog):
        write_config(resolver.project_path, "{not json")
        write_config(resolver.global_path, {"settings": {"mode": "strict"}})
        with caplog.at_level(logging.WARNING, logger="toolwarden.policy.config"):
            config = resolver.resolve()
        assert config.strict
        assert "Invalid config" in caplog.text

    def test_schema_violation_is_skipped(self, resolver, write_config):
        write_config(resolver.project_path, {"settings": {"mode": "paranoid"}})
        assert resolver.resolve() == DEFAULT_CONFIG

    def test_non_object_is_skipped(self, resolver, write_config):
        write_config(resolver.project_path, "[1, 2, 3]")
        assert resolver.resolve() == DEFAULT_CONFIG

    def test_unknown_keys_warn_but_load(self, resolver, write_config, caplog):
        write_config(resolver.project_path, {
            "settings": {"mode": "strict", "colour": "red"},
            "telemetry": True,
        })
        with caplog.at_level(logging.WARNING, logger="toolwarden.policy.config"):
            config = resolver.resolve()
        assert config.strict
        assert "settings.colour" in caplog.text
        assert "telemetry" in caplog.text


class TestCaching:

    def test_resolve_is_cached_until_reset(self, resolver, write_config):
        assert not resolver.resolve().strict
        write_config(resolver.project_path, {"settings": {"mode": "strict"}})
        assert not resolver.resolve().strict

        resolver.reset()
        assert resolver.resolve().strict

    def test_process_wide_resolver(self, project, write_config):
        assert get_resolver() is get_resolver()
        assert not get_resolver().resolve().strict

        write_config(project / "toolwarden.config.json", {"settings": {"mode": "strict"}})
        reset_config()
        assert get_resolver().resolve().strict


class TestEnvironments:

    def test_active_environment_defaults_to_development(self):
        assert active_environment_name() == "development"

    def test_active_environment_from_variable(self, monkeypatch):
        monkeypatch.setenv("TOOLWARDEN_ENV", "production")
        assert active_environment_name() == "production"

    def test_environment_overrides_parse(self, resolver, write_config):
        write_config(resolver.project_path, {
            "environments": {
                "development": {"requireApproval": False},
                "production": {"requireApproval": True, "slackChannel": "#ops"},
            },
        })
        config = resolver.resolve()
        assert config.environment("development").require_approval is False
        assert config.environment("production").slack_channel == "#ops"
        assert config.environment("staging") is None

    def test_resolver_paths(self, home, project):
        resolver = ConfigResolver(cwd=project, home=home)
        assert resolver.project_path == project / "toolwarden.config.json"
        assert resolver.global_path == home / ".toolwarden" / "config.json"
        assert json.loads(json.dumps(default_config_document()))


class TestImmutability:

    def test_default_inspection_map_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_CONFIG.policy.tool_inspection["bash"] = "nothing"
        with pytest.raises(TypeError):
            DEFAULT_CONFIG.policy.tool_inspection.clear()
        assert DEFAULT_CONFIG.policy.tool_inspection["bash"] == "command"

    def test_resolved_mappings_are_read_only(self, resolver, write_config):
        write_config(resolver.project_path, {
            "policy": {"toolInspection": {"exec": "script"}},
            "environments": {"production": {"requireApproval": True}},
        })
        config = resolver.resolve()
        with pytest.raises(TypeError):
            config.policy.tool_inspection.update({"bash": "command"})
        with pytest.raises(TypeError):
            del config.environments["production"]
        assert resolver.resolve().environment("production").require_approval is True

    def test_read_only_maps_still_serialize_and_copy(self):
        assert default_config_document()["policy"]["toolInspection"]["shell"] == "command"
        copied = pickle.loads(pickle.dumps(DEFAULT_CONFIG.policy.tool_inspection))
        assert copied == DEFAULT_CONFIG.policy.tool_inspection
