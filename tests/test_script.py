"""Command line script input handling."""

import importlib.util
from pathlib import Path
from unittest.mock import MagicMock

import pytest

SCRIPT_PATH = Path(__file__).resolve().parent.parent / "scripts" / "crosschain-transfer.py"


@pytest.fixture()
def script(monkeypatch, private_key):
    spec = importlib.util.spec_from_file_location("crosschain_transfer_script", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    orchestrator = MagicMock()
    monkeypatch.setattr(module, "create_transfer_orchestrator", lambda **kwargs: orchestrator)
    monkeypatch.setattr(module, "setup_console_logging", lambda **kwargs: None)
    monkeypatch.setenv("PRIVATE_KEY", private_key)
    monkeypatch.setenv("SKIP_CONFIRM", "true")
    for name in ("COMMAND", "SOURCE_CHAIN", "DESTINATION_CHAIN", "RECIPIENT", "DRY_RUN", "CHAINS"):
        monkeypatch.delenv(name, raising=False)
    module.orchestrator = orchestrator
    return module


@pytest.mark.parametrize(
    "env",
    [
        {"AMOUNT": "ten"},
        {"AMOUNT": "0.0000001"},
        {"AMOUNT": "1", "SOURCE_CHAIN": "sepolia", "DESTINATION_CHAIN": "sepolia"},
    ],
)
def test_transfer_bad_input(script, monkeypatch, capsys, env):
    """Bad input exits with an error message instead of a traceback."""
    for name, value in env.items():
        monkeypatch.setenv(name, value)

    with pytest.raises(SystemExit) as exc_info:
        script.main()

    assert exc_info.value.code == 1
    assert "Invalid input" in capsys.readouterr().out
    script.orchestrator.transfer.assert_not_called()


def test_gateway_transfer_bad_amount(script, monkeypatch, capsys):
    monkeypatch.setenv("COMMAND", "gateway-transfer")
    monkeypatch.setenv("AMOUNT", "-")

    with pytest.raises(SystemExit) as exc_info:
        script.main()

    assert exc_info.value.code == 1
    assert "Invalid input" in capsys.readouterr().out
    script.orchestrator.gateway_transfer.assert_not_called()
