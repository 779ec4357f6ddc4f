import os

import pytest
from pydantic import ValidationError

from evermore_agents.config import AgentConfig
from evermore_agents.routing import ModelProfile
from evermore_agents.tools import ToolPermission


class TestAgentConfig:
    def test_defaults(self):
        config = AgentConfig()
        assert config.max_steps == 5
        assert config.timeout_ms == 30000
        assert config.token_budget == 8000
        assert config.cost_budget_cents == 20
        assert config.max_replan_attempts == 2
        assert config.skip_intent_for_simple
        assert config.simple_query_threshold == 50
        assert config.enable_companion_features
        assert config.model_profile == ModelProfile.BALANCED
        assert config.tool_permissions == {}

    def test_invalid_values_are_rejected(self):
        with pytest.raises(ValidationError):
            AgentConfig(max_steps=0)
        with pytest.raises(ValidationError):
            AgentConfig(intent_confidence_threshold=1.5)

    def test_assignment_is_validated(self):
        config = AgentConfig()
        with pytest.raises(ValidationError):
            config.token_budget = -1

    def test_permissions_from_json_string(self):
        config = AgentConfig(tool_permissions='{"echo": "DENIED"}')
        assert config.tool_permissions == {"echo": ToolPermission.DENIED}


class TestConfigFromEnv:
    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("EVERMORE_MAX_STEPS", "7")
        monkeypatch.setenv("EVERMORE_MODEL_PROFILE", "quality_optimized")
        monkeypatch.setenv("EVERMORE_ENABLE_COMPANION_FEATURES", "false")
        config = AgentConfig.from_env(dotenv_path="/nonexistent/.env")
        assert config.max_steps == 7
        assert config.model_profile == ModelProfile.QUALITY_OPTIMIZED
        assert not config.enable_companion_features

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("EVERMORE_MAX_STEPS", "7")
        assert AgentConfig.from_env(dotenv_path="/nonexistent/.env", max_steps=3).max_steps == 3

    def test_reads_dotenv_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("EVERMORE_TOKEN_BUDGET", raising=False)
        monkeypatch.delenv("EVERMORE_TOOL_PERMISSIONS", raising=False)
        dotenv_file = tmp_path / ".env"
        dotenv_file.write_text("EVERMORE_TOKEN_BUDGET=1234\nEVERMORE_TOOL_PERMISSIONS='{\"echo\": \"DENIED\"}'\n")
        try:
            config = AgentConfig.from_env(dotenv_path=str(dotenv_file))
        finally:
            os.environ.pop("EVERMORE_TOKEN_BUDGET", None)
            os.environ.pop("EVERMORE_TOOL_PERMISSIONS", None)
        assert config.token_budget == 1234
        assert config.tool_permissions == {"echo": ToolPermission.DENIED}
