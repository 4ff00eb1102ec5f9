"""
Tests for EngineSettings loading.

Covers:
- Defaults with no file and an empty environment
- YAML file values, flat and nested under ``engine:``
- Environment overrides win over the file
- Rejection of unknown keys and invalid values
"""

import logging

import pytest

from approval_config.settings import DEFAULT_PRIORITY_ALIASES, EngineSettings, load_settings
from approval_kernel.domain.workflow import ParallelApprovalPolicy
from approval_kernel.exceptions import ConfigurationError


def _write(tmp_path, text):
    path = tmp_path / "approval.yaml"
    path.write_text(text)
    return path


class TestDefaults:

    def test_defaults(self):
        settings = load_settings(env={})
        assert settings == EngineSettings()
        assert settings.parallel_policy == ParallelApprovalPolicy.ALL_REQUIRED
        assert settings.default_escalation_role == "admin"
        assert settings.priority_aliases == DEFAULT_PRIORITY_ALIASES

    def test_log_level_number(self):
        assert EngineSettings(log_level="WARNING").log_level_number == logging.WARNING


class TestYamlFile:

    def test_flat_file(self, tmp_path):
        path = _write(tmp_path, (
            "database_url: postgresql://approvals@db/approvals\n"
            "parallel_policy: first_response\n"
            "escalation_interval_seconds: 60\n"
        ))
        settings = load_settings(path, env={})
        assert settings.database_url == "postgresql://approvals@db/approvals"
        assert settings.parallel_policy == ParallelApprovalPolicy.FIRST_RESPONSE
        assert settings.escalation_interval_seconds == 60.0

    def test_nested_engine_section(self, tmp_path):
        path = _write(tmp_path, "engine:\n  default_escalation_role: controller\n")
        assert load_settings(path, env={}).default_escalation_role == "controller"

    def test_priority_aliases_extend_defaults(self, tmp_path):
        path = _write(tmp_path, "priority_aliases:\n  urgent: 500\n")
        aliases = load_settings(path, env={}).priority_aliases
        assert aliases["urgent"] == 500
        assert aliases["high"] == 100

    def test_empty_file_uses_defaults(self, tmp_path):
        assert load_settings(_write(tmp_path, ""), env={}) == EngineSettings()

    @pytest.mark.parametrize("text", [
        "colour: blue\n",
        "parallel_policy: majority\n",
        "escalation_interval_seconds: 0\n",
        "escalation_batch_size: many\n",
        "log_level: LOUD\n",
        "default_escalation_role: ''\n",
        "priority_aliases:\n  urgent: soon\n",
        "- just\n- a list\n",
    ])
    def test_invalid_values_rejected(self, tmp_path, text):
        with pytest.raises(ConfigurationError):
            load_settings(_write(tmp_path, text), env={})


class TestEnvironment:

    def test_env_overrides_file(self, tmp_path):
        path = _write(tmp_path, "default_escalation_role: controller\n")
        settings = load_settings(path, env={"APPROVAL_DEFAULT_ESCALATION_ROLE": "cfo"})
        assert settings.default_escalation_role == "cfo"

    def test_env_values_coerced(self):
        settings = load_settings(env={
            "APPROVAL_ESCALATION_INTERVAL": "90",
            "APPROVAL_LOG_LEVEL": "debug",
            "APPROVAL_PARALLEL_POLICY": "FIRST_RESPONSE",
        })
        assert settings.escalation_interval_seconds == 90.0
        assert settings.log_level == "DEBUG"
        assert settings.parallel_policy == ParallelApprovalPolicy.FIRST_RESPONSE

    def test_bad_env_value_rejected(self):
        with pytest.raises(ConfigurationError):
            load_settings(env={"APPROVAL_ESCALATION_INTERVAL": "-5"})

    def test_unrelated_env_ignored(self):
        assert load_settings(env={"APPROVAL_UNKNOWN": "x", "HOME": "/root"}) == EngineSettings()
