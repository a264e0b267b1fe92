"""Tests for the policy engine."""

import pytest

from toolwarden.policy import Decision, PolicyEngine, evaluate_policy, lookup_path
from toolwarden.policy.engine import tokenize_tool_name


@pytest.fixture
def engine(resolver):
    return PolicyEngine(resolver=resolver)


def shell(command: str) -> dict:
    return {"command": command}


class TestShellCommands:

    @pytest.mark.parametrize("command", [
        "rm -rf node_modules",
        "rm -rf ./subdir/node_modules",
        "rm -rf dist",
        "rm -rf build/cache",
        "rm .DS_Store",
    ])
    def test_rule_allows_covered_operands(self, engine, command):
        assert engine.evaluate("bash", shell(command)) is Decision.ALLOW

    @pytest.mark.parametrize("command", [
        "rm -rf src",
        "rm -rf /etc",
        "/usr/bin/rm file.txt",
        "echo hi | rm",
        "rm -rf node_modules src",
        "git commit && rm test.sh",
        "rm -rf node_modules/../../etc",
        "rm -rf dist/../src",
        "rm -rf build/../../../home/user",
        "rm -rf ./node_modules/../.git",
        "rm${IFS}-rf${IFS}/",
        "rm$IFS-rf$IFS/etc",
    ])
    def test_rule_reviews_uncovered_operands(self, engine, command):
        assert engine.evaluate("bash", shell(command)) is Decision.REVIEW

    @pytest.mark.parametrize("command", [
        "r\\m -rf /",
        "$(echo rm) -rf /",
        "find . -delete",
        "npm update",
        "bash -c 'rm -rf /'",
        "DROP_TABLES=1 psql -c 'drop table users'",
    ])
    def test_disguised_or_dangerous_commands_are_reviewed(self, engine, command):
        assert engine.evaluate("bash", shell(command)) is Decision.REVIEW

    @pytest.mark.parametrize("command", [
        "ls -la",
        "cat /etc/hosts",
        "git status",
        "npm install",
        "echo hello",
        "pwd",
        "node --version",
    ])
    def test_safe_commands_are_allowed(self, engine, command):
        assert engine.evaluate("bash", shell(command)) is Decision.ALLOW

    @pytest.mark.parametrize("tool", ["Shell", "SHELL", "run_shell_command", "terminal.execute"])
    def test_shell_tool_names_are_case_insensitive(self, engine, tool):
        assert engine.evaluate(tool, shell("rm -rf /")) is Decision.REVIEW

    def test_missing_command_field_uses_tool_name(self, engine):
        assert engine.evaluate("bash", {}) is Decision.ALLOW
        assert engine.evaluate("bash", {"command": "   "}) is Decision.ALLOW
        assert engine.evaluate("bash", None) is Decision.ALLOW

    def test_block_paths_win_over_allow_paths(self, resolver, write_config):
        write_config(resolver.project_path, {"policy": {"rules": [
            {"action": "rm", "allowPaths": ["**"], "blockPaths": ["**/.git/**"]},
        ]}})
        engine = PolicyEngine(resolver=resolver)
        assert engine.evaluate("bash", shell("rm -rf tmp")) is Decision.ALLOW
        assert engine.evaluate("bash", shell("rm -rf repo/.git")) is Decision.REVIEW

    def test_rule_action_glob(self, resolver, write_config):
        write_config(resolver.project_path, {"policy": {"rules": [
            {"action": "git*", "allowPaths": ["status", "log"]},
        ]}})
        engine = PolicyEngine(resolver=resolver)
        assert engine.evaluate("bash", shell("git status")) is Decision.ALLOW
        assert engine.evaluate("bash", shell("git push")) is Decision.REVIEW

    def test_custom_inspection_dot_path(self, resolver, write_config):
        write_config(resolver.project_path, {"policy": {"toolInspection": {
            "mcp_*_exec": "params.script",
        }}})
        engine = PolicyEngine(resolver=resolver)
        args = {"params": {"script": "rm -rf /"}}
        assert engine.evaluate("mcp_box_exec", args) is Decision.REVIEW
        assert engine.evaluate("mcp_box_exec", {"params": {"script": "ls"}}) is Decision.ALLOW


class TestToolNames:

    @pytest.mark.parametrize("tool", ["confirm_action", "check_permissions", "search_docs"])
    def test_harmless_names_allowed(self, engine, tool):
        assert engine.evaluate(tool) is Decision.ALLOW

    @pytest.mark.parametrize("tool", ["delete_user", "aws.rds.rm_database", "db-drop-table", "Purge Cache"])
    def test_dangerous_words_in_name_reviewed(self, engine, tool):
        assert engine.evaluate(tool) is Decision.REVIEW

    def test_words_match_whole_tokens_only(self, engine):
        # "format" is dangerous; "formatting" is a different token
        assert engine.evaluate("apply_formatting") is Decision.ALLOW

    def test_tokenize(self):
        assert tokenize_tool_name("AWS.rds-rm_database now") == ["aws", "rds", "rm", "database", "now"]


class TestModes:

    def test_strict_mode_reviews_everything(self, resolver, write_config):
        write_config(resolver.project_path, {"settings": {"mode": "strict"}})
        engine = PolicyEngine(resolver=resolver)
        assert engine.evaluate("search_docs") is Decision.REVIEW
        assert engine.evaluate("bash", shell("ls")) is Decision.REVIEW

    def test_strict_mode_without_dangerous_words(self, resolver, write_config):
        write_config(resolver.project_path, {
            "settings": {"mode": "strict"},
            "policy": {"dangerousWords": []},
        })
        engine = PolicyEngine(resolver=resolver)
        assert engine.evaluate("search_docs") is Decision.REVIEW

    def test_ignored_tools_allowed_even_in_strict_mode(self, resolver, write_config):
        write_config(resolver.project_path, {"settings": {"mode": "strict"}})
        engine = PolicyEngine(resolver=resolver)
        assert engine.evaluate("list_users") is Decision.ALLOW
        assert engine.evaluate("Read") is Decision.ALLOW

    def test_ignored_tool_beats_dangerous_word(self, engine):
        assert engine.evaluate("get_deleted_items") is Decision.ALLOW

    def test_strict_mode_still_honors_rules(self, resolver, write_config):
        write_config(resolver.project_path, {"settings": {"mode": "strict"}})
        engine = PolicyEngine(resolver=resolver)
        assert engine.evaluate("bash", shell("rm -rf node_modules")) is Decision.ALLOW


class TestEnvironments:

    @pytest.fixture
    def relaxed_dev(self, resolver, write_config):
        write_config(resolver.project_path, {"environments": {
            "development": {"requireApproval": False},
            "production": {"requireApproval": True},
        }})
        return resolver

    def test_no_approval_needed_in_relaxed_environment(self, relaxed_dev):
        engine = PolicyEngine(resolver=relaxed_dev, environment="development")
        assert engine.evaluate("delete_user") is Decision.ALLOW
        assert engine.evaluate("bash", shell("npm update")) is Decision.ALLOW

    def test_rule_verdicts_are_not_overridden(self, relaxed_dev):
        engine = PolicyEngine(resolver=relaxed_dev, environment="development")
        assert engine.evaluate("bash", shell("rm -rf src")) is Decision.REVIEW

    def test_other_environment_unaffected(self, relaxed_dev):
        engine = PolicyEngine(resolver=relaxed_dev, environment="production")
        assert engine.evaluate("delete_user") is Decision.REVIEW

    def test_environment_from_variable(self, relaxed_dev, monkeypatch):
        engine = PolicyEngine(resolver=relaxed_dev)
        assert engine.evaluate("delete_user") is Decision.ALLOW
        monkeypatch.setenv("TOOLWARDEN_ENV", "production")
        assert engine.evaluate("delete_user") is Decision.REVIEW


class TestAssess:

    def test_reason_names_the_word(self, engine):
        decision, reason = engine.assess("delete_user")
        assert decision is Decision.REVIEW
        assert "delete" in reason

    def test_reason_names_the_operand(self, engine):
        decision, reason = engine.assess("bash", shell("rm -rf src"))
        assert decision is Decision.REVIEW
        assert "src" in reason


class TestLookupPath:

    def test_nested_dicts_and_lists(self):
        value = {"a": {"b": [{"c": "found"}]}}
        assert lookup_path(value, "a.b.0.c") == "found"

    @pytest.mark.parametrize("path", ["a.x", "a.b.5", "a.b.0.c.d", "a.b.first"])
    def test_mismatches_yield_none(self, path):
        assert lookup_path({"a": {"b": [{"c": "found"}]}}, path) is None

    def test_non_container(self):
        assert lookup_path("text", "command") is None
        assert lookup_path(None, "command") is None


class TestProcessWide:

    def test_evaluate_policy_uses_defaults(self):
        assert evaluate_policy("delete_user") is Decision.REVIEW
        assert evaluate_policy("bash", {"command": "ls"}) is Decision.ALLOW
