import pytest
from click.testing import CliRunner

from webpilot.command.webpilot_server import build_gateway, run
from webpilot.config.gateway_config import GatewayConfig


def test_cli_help_lists_transport_options():
    result = CliRunner().invoke(run, ["--help"])

    assert result.exit_code == 0
    for option in ("--transport", "--port", "--headless / --headed", "--max-sessions"):
        assert option in result.output


def test_cli_rejects_unknown_transport():
    result = CliRunner().invoke(run, ["--transport", "carrier-pigeon"])

    assert result.exit_code == 2


@pytest.mark.asyncio
async def test_build_gateway_wires_one_registry(engine):
    config = GatewayConfig()
    config.sessions.max_sessions = 3
    gateway = build_gateway(config, engine=engine)

    response = await gateway.dispatcher.handle(
        {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "list_sessions"}}
    )

    assert gateway.sessions is gateway.dispatcher.sessions
    assert gateway.sessions.max_sessions == 3
    assert response["result"]["structuredContent"]["stats"]["max_sessions"] == 3
    assert not gateway.maintenance.running
