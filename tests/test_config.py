"""
Tests for trace_agent/config.py - Configuration Resolver.

Covers:
- Source precedence (environment > caller > file > defaults)
- Environment layer construction
- Configuration file loading (JSON and Python)
- Typed field-level merge and ignored options
- Clamping
"""
import json
from types import MappingProxyType

import pytest

from trace_agent.config import (
    DEFAULT_PLUGINS,
    ENV_CONFIG_FILE,
    ResolvedConfig,
    env_config,
    load_config_file,
    merge_config,
    resolve_config,
)
from trace_agent.core.errors import ConfigurationError
from trace_agent.core.types import TRACE_SERVICE_LABEL_VALUE_LIMIT


@pytest.fixture
def json_config_file(tmp_path):
    """Write a JSON configuration file and return its path."""

    def _write(content):
        path = tmp_path / "trace-config.json"
        path.write_text(json.dumps(content))
        return str(path)

    return _write


# =============================================================================
# Precedence Tests
# =============================================================================

class TestPrecedence:
    """Tests for the order configuration sources are layered in."""

    def test_defaults_only(self):
        config = resolve_config(environ={})

        assert isinstance(config, ResolvedConfig)
        assert config.enabled is True
        assert config.log_level == 1
        assert config.project_id is None
        assert config.cls_mechanism == "auto"
        assert config.maximum_label_value_size == 512
        assert dict(config.plugins) == DEFAULT_PLUGINS
        assert config.force_new is False
        assert config.issues == ()

    def test_environment_wins_over_all_sources(self, json_config_file):
        path = json_config_file({"log_level": 2, "project_id": "from-file"})
        environ = {
            ENV_CONFIG_FILE: path,
            "GCLOUD_TRACE_LOGLEVEL": "4",
            "GCLOUD_PROJECT": "from-env",
        }

        config = resolve_config({"log_level": 3, "project_id": "from-caller"}, environ=environ)

        assert config.log_level == 4
        assert config.project_id == "from-env"

    def test_caller_wins_over_file(self, json_config_file):
        path = json_config_file({"maximum_label_value_size": 100})

        config = resolve_config(
            {"maximum_label_value_size": 200}, environ={ENV_CONFIG_FILE: path}
        )

        assert config.maximum_label_value_size == 200

    def test_file_wins_over_defaults(self, json_config_file):
        path = json_config_file({"flush_delay_seconds": 5, "cls_mechanism": "none"})

        config = resolve_config(environ={ENV_CONFIG_FILE: path})

        assert config.flush_delay_seconds == 5
        assert config.cls_mechanism == "none"

    def test_empty_environment_variable_never_overrides_caller(self):
        environ = {"GCLOUD_PROJECT": "", "GCLOUD_TRACE_LOGLEVEL": "", "GAE_SERVICE": ""}

        config = resolve_config(
            {"project_id": "caller", "log_level": 3, "service_context": {"service": "web"}},
            environ=environ,
        )

        assert config.project_id == "caller"
        assert config.log_level == 3
        assert config.service_context.service == "web"

    def test_environment_read_at_call_time(self, monkeypatch):
        monkeypatch.setenv("GCLOUD_PROJECT", "first")
        assert resolve_config().project_id == "first"

        monkeypatch.setenv("GCLOUD_PROJECT", "second")
        assert resolve_config().project_id == "second"

    def test_caller_config_not_mutated(self):
        raw = {"plugins": {"custom": "pkg.mod:Instrumentor"}, "force_new": True}
        snapshot = json.loads(json.dumps(raw))

        resolve_config(raw, environ={"GCLOUD_PROJECT": "p"})

        assert raw == snapshot


# =============================================================================
# Environment Layer Tests
# =============================================================================

class TestEnvConfig:
    """Tests for env_config."""

    def test_service_context_from_gae_variables(self):
        config = env_config({
            "GAE_SERVICE": "api",
            "GAE_VERSION": "v7",
            "GAE_MINOR_VERSION": "12345",
        })

        assert config["service_context"] == {
            "service": "api",
            "version": "v7",
            "minor_version": "12345",
        }

    def test_legacy_module_variables(self):
        config = env_config({"GAE_MODULE_NAME": "worker", "GAE_MODULE_VERSION": "v2"})

        assert config["service_context"] == {"service": "worker", "version": "v2"}

    def test_new_variables_preferred_over_legacy(self):
        config = env_config({"GAE_SERVICE": "new", "GAE_MODULE_NAME": "old"})

        assert config["service_context"]["service"] == "new"

    def test_unset_variables_omitted(self):
        assert env_config({}) == {}

    def test_non_integer_log_level_reported(self):
        issues = []

        config = env_config({"GCLOUD_TRACE_LOGLEVEL": "verbose"}, issues)

        assert "log_level" not in config
        assert len(issues) == 1
        assert "GCLOUD_TRACE_LOGLEVEL" in issues[0]

    def test_service_context_merges_key_wise_with_caller(self):
        config = resolve_config(
            {"service_context": {"service": "caller-svc", "version": "caller-v"}},
            environ={"GAE_VERSION": "env-v"},
        )

        assert config.service_context.service == "caller-svc"
        assert config.service_context.version == "env-v"
        assert config.service_context.minor_version is None


# =============================================================================
# Configuration File Tests
# =============================================================================

class TestConfigFile:
    """Tests for load_config_file."""

    def test_json_file(self, json_config_file):
        path = json_config_file({"enabled": False})

        assert load_config_file(path) == {"enabled": False}

    def test_python_file(self, tmp_path):
        path = tmp_path / "trace_config.py"
        path.write_text("config = {'log_level': 4, 'buffer_size': 10}\n")

        assert load_config_file(str(path)) == {"log_level": 4, "buffer_size": 10}

    def test_python_file_without_config_mapping(self, tmp_path):
        path = tmp_path / "trace_config.py"
        path.write_text("settings = {}\n")

        with pytest.raises(ConfigurationError):
            load_config_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config_file(str(tmp_path / "missing.json"))

        assert exc_info.value.config_key == ENV_CONFIG_FILE

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_config_file(str(path))

    def test_non_mapping_json(self, json_config_file):
        path = json_config_file([1, 2, 3])

        with pytest.raises(ConfigurationError):
            load_config_file(path)

    def test_relative_path_resolved_against_cwd(self, tmp_path, monkeypatch):
        (tmp_path / "relative.json").write_text('{"buffer_size": 7}')
        monkeypatch.chdir(tmp_path)

        config = resolve_config(environ={ENV_CONFIG_FILE: "relative.json"})

        assert config.buffer_size == 7

    def test_force_new_in_file_ignored(self, json_config_file):
        path = json_config_file({"force_new": True})

        config = resolve_config(environ={ENV_CONFIG_FILE: path})

        assert config.force_new is False
        assert any("force_new" in issue for issue in config.issues)


# =============================================================================
# Typed Merge Tests
# =============================================================================

class TestTypedMerge:
    """Tests for merge_config and ignored options."""

    def test_foreign_typed_scalar_ignored(self):
        config = resolve_config({"log_level": "debug", "enabled": "yes"}, environ={})

        assert config.log_level == 1
        assert config.enabled is True
        assert len(config.issues) == 2

    def test_bool_not_accepted_as_number(self):
        config = resolve_config({"maximum_label_value_size": True}, environ={})

        assert config.maximum_label_value_size == 512

    def test_unknown_option_reported(self):
        config = resolve_config({"samplingRate": 10}, environ={})

        assert any("samplingRate" in issue for issue in config.issues)

    def test_none_means_not_set(self):
        config = resolve_config({"cls_mechanism": None}, environ={})

        assert config.cls_mechanism == "auto"
        assert config.issues == ()

    def test_plugin_map_poisoning_ignored(self):
        config = resolve_config({"plugins": "not-an-object"}, environ={})

        assert isinstance(config.plugins, MappingProxyType)
        assert dict(config.plugins) == DEFAULT_PLUGINS
        assert any("plugins" in issue for issue in config.issues)

    def test_caller_plugins_layered_on_defaults(self):
        config = resolve_config({"plugins": {"custom": "pkg.mod:Instrumentor"}}, environ={})

        assert config.plugins["custom"] == "pkg.mod:Instrumentor"
        for name in DEFAULT_PLUGINS:
            assert name in config.plugins

    def test_plugin_set_to_none_removed(self):
        config = resolve_config({"plugins": {"redis": None}}, environ={})

        assert "redis" not in config.plugins

    def test_non_string_plugin_target_ignored(self):
        config = resolve_config({"plugins": {"bad": 42}}, environ={})

        assert "bad" not in config.plugins

    def test_non_mapping_caller_config_ignored(self):
        config = resolve_config(["enabled", False], environ={})

        assert config.enabled is True
        assert len(config.issues) == 1

    def test_merge_does_not_mutate_inputs(self):
        base = {"plugins": {"a": "x:Y"}}
        overlay = {"plugins": {"b": "z:W"}}

        merged = merge_config(base, overlay, "test", [])

        assert base == {"plugins": {"a": "x:Y"}}
        assert merged["plugins"] == {"a": "x:Y", "b": "z:W"}

    def test_result_is_immutable(self):
        config = resolve_config(environ={})

        with pytest.raises(Exception):
            config.log_level = 3
        with pytest.raises(TypeError):
            config.plugins["new"] = "a:B"


# =============================================================================
# Clamping Tests
# =============================================================================

class TestClamping:
    """Tests for post-merge clamping."""

    def test_negative_log_level(self):
        assert resolve_config({"log_level": -5}, environ={}).log_level == 0

    def test_log_level_above_maximum(self):
        assert resolve_config({"log_level": 99}, environ={}).log_level == 4

    def test_environment_log_level_clamped(self):
        config = resolve_config(environ={"GCLOUD_TRACE_LOGLEVEL": "12"})

        assert config.log_level == 4
        assert config.log_level_name == "debug"

    def test_label_size_clamped_to_ceiling(self):
        config = resolve_config({"maximum_label_value_size": 10 ** 9}, environ={})

        assert config.maximum_label_value_size == TRACE_SERVICE_LABEL_VALUE_LIMIT

    def test_label_size_below_ceiling_kept(self):
        config = resolve_config({"maximum_label_value_size": 1024}, environ={})

        assert config.maximum_label_value_size == 1024


class TestForceNew:
    """Tests for the force_new flag."""

    def test_taken_from_caller(self):
        assert resolve_config({"force_new": True}, environ={}).force_new is True

    def test_defaults_to_false(self):
        assert resolve_config({}, environ={}).force_new is False

    def test_not_in_issues(self):
        assert resolve_config({"force_new": True}, environ={}).issues == ()
