from unittest.mock import patch

import pytest

from evermore_agents.agents import CompanionReActAgent
from evermore_agents.monitoring import LogLevel


# Import fixture modules as plugins
pytest_plugins = ["tests.fixtures.models", "tests.fixtures.tools"]

original_companion_agent_init = CompanionReActAgent.__init__


@pytest.fixture(autouse=True)
def patch_companion_agent_with_suppressed_logging():
    with patch.object(CompanionReActAgent, "__init__", autospec=True) as mock_init:

        def init_with_suppressed_logging(self, *args, verbosity_level=LogLevel.OFF, **kwargs):
            original_companion_agent_init(self, *args, verbosity_level=verbosity_level, **kwargs)

        mock_init.side_effect = init_with_suppressed_logging
        yield
