import subprocess
import sys


def test_import_evermore_agents():
    # Create a new Python process to test the import
    cmd = [sys.executable, "-c", "import evermore_agents; evermore_agents.CompanionReActAgent"]
    result = subprocess.run(cmd, capture_output=True, text=True)

    # Check if the import was successful
    assert result.returncode == 0, (
        "Import failed with error: "
        + (result.stderr.splitlines()[-1] if result.stderr else "No error message")
        + "\n"
        + result.stderr
    )


def test_public_names():
    import evermore_agents

    for name in ["AgentConfig", "AgentStateMachine", "ModelRouter", "ToolRegistry", "WellbeingGuard", "RunResult"]:
        assert hasattr(evermore_agents, name)
