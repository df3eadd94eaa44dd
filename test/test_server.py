"""
HTTP behaviour of /deploy-token and /health
"""

from dataclasses import replace

import pytest
from conftest import FACTORY, TOKEN, FakeRunner, failed, ok

from deployer.orchestrator import DeploymentOrchestrator
from deployer.server import create_app, parse_deploy_request
from deployer.errors import ValidationError

BODY = {"name": "Test", "symbol": "TST", "initialSupply": 1000}


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
async def client(aiohttp_client, settings, runner):
    orchestrator = DeploymentOrchestrator(settings, runner=runner)
    return await aiohttp_client(create_app(settings, orchestrator))


async def test_health(client):
    resp = await client.get("/health")

    assert resp.status == 200
    data = await resp.json()
    assert data["status"] == "ok"
    assert data["timestamp"].endswith("Z")


async def test_successful_deployment(client, runner):
    resp = await client.post("/deploy-token", json=BODY)

    assert resp.status == 200
    data = await resp.json()
    assert data["success"] is True
    assert data["tokenAddress"] == TOKEN
    assert data["message"] == "Token deployed and registered successfully"
    assert TOKEN in data["deployOutput"]
    for key in ("activateOutput", "cacheOutput", "initOutput", "registerOutput"):
        assert key in data
    assert runner.argv_for("register")[-1] == str(1000 * 10 ** 18)


async def test_string_supply_is_accepted(client, runner):
    resp = await client.post("/deploy-token", json={**BODY, "initialSupply": "1000"})

    assert resp.status == 200
    assert runner.argv_for("initialize")[-1] == "1000"


async def test_missing_symbol_is_rejected_before_any_command(client, runner):
    resp = await client.post("/deploy-token", json={"name": "Test", "initialSupply": 1000})

    assert resp.status == 400
    assert (await resp.json()) == {"error": "name, symbol and initialSupply are required"}
    assert runner.calls == []


@pytest.mark.parametrize("body", [
    {"name": "Test", "symbol": "TST", "initialSupply": 1.5},
    {"name": "Test", "symbol": "TST", "initialSupply": -3},
    {"name": "Test", "symbol": "TST", "initialSupply": "lots"},
    {"name": "Test", "symbol": "TST", "initialSupply": 1, "factoryAddress": "0x1234"},
    ["not", "an", "object"],
])
async def test_invalid_bodies_get_400(client, runner, body):
    resp = await client.post("/deploy-token", json=body)

    assert resp.status == 400
    assert "error" in await resp.json()
    assert runner.calls == []


async def test_invalid_json_gets_400(client, runner):
    resp = await client.post("/deploy-token", data="{not json", headers={"Content-Type": "application/json"})

    assert resp.status == 400
    data = await resp.json()
    assert data["error"] == "Invalid JSON in request body"
    assert runner.calls == []


async def test_body_that_is_not_utf8_gets_json_400(client, runner):
    resp = await client.post("/deploy-token", data=b'{"name": "\xff"}',
                             headers={"Content-Type": "application/json"})

    assert resp.status == 400
    assert resp.content_type == "application/json"
    assert (await resp.json())["error"] == "Invalid JSON in request body"
    assert runner.calls == []


async def test_oversized_integer_gets_json_400(client, runner):
    body = '{"name": "Test", "symbol": "TST", "initialSupply": ' + "9" * 5000 + "}"
    resp = await client.post("/deploy-token", data=body, headers={"Content-Type": "application/json"})

    assert resp.status == 400
    assert resp.content_type == "application/json"
    assert "error" in await resp.json()
    assert runner.calls == []


async def test_dash_prefixed_name_is_deployed(client, runner):
    resp = await client.post("/deploy-token", json={**BODY, "name": "-1x"})

    assert resp.status == 200
    argv = runner.argv_for("initialize")
    assert argv[argv.index("--") + 1:][-3] == "-1x"


async def test_missing_secrets_get_500(aiohttp_client, settings):
    runner = FakeRunner()
    unconfigured = replace(settings, private_key=None)
    app = create_app(unconfigured, DeploymentOrchestrator(unconfigured, runner=runner))
    client = await aiohttp_client(app)

    resp = await client.post("/deploy-token", json=BODY)

    assert resp.status == 500
    assert "PRIVATE_KEY and RPC_ENDPOINT" in (await resp.json())["error"]
    assert runner.calls == []


async def test_unparseable_deploy_output_gets_500(aiohttp_client, settings):
    runner = FakeRunner(deploy=ok("Finished release target(s)\n"))
    client = await aiohttp_client(create_app(settings, DeploymentOrchestrator(settings, runner=runner)))

    resp = await client.post("/deploy-token", json=BODY)

    assert resp.status == 500
    data = await resp.json()
    assert "parse deployed token contract address" in data["error"]
    assert data["details"]["failedStage"] == "deploy"
    assert runner.labels(include_background=True) == ["deploy"]


async def test_deploy_tool_exit_reports_flow_failure(aiohttp_client, settings):
    runner = FakeRunner(deploy=failed("error: insufficient funds for gas"))
    client = await aiohttp_client(create_app(settings, DeploymentOrchestrator(settings, runner=runner)))

    resp = await client.post("/deploy-token", json=BODY)

    assert resp.status == 500
    data = await resp.json()
    assert data["error"] == "Deployment flow failed"
    assert data["details"]["failedStage"] == "deploy"
    assert "insufficient funds" in data["details"]["stderr"]


async def test_factory_without_code_gets_500_with_details(aiohttp_client, settings):
    runner = FakeRunner(factory_code=ok("0x"))
    client = await aiohttp_client(create_app(settings, DeploymentOrchestrator(settings, runner=runner)))

    resp = await client.post("/deploy-token", json=BODY)

    assert resp.status == 500
    data = await resp.json()
    assert data["error"] == "Deployment flow failed"
    details = data["details"]
    assert details["errorType"] == "PreconditionFault"
    assert FACTORY in details["message"]
    assert details["tokenAddress"] == TOKEN
    assert [s["step"] for s in details["steps"]][:4] == ["deploy", "activate", "cache_bid", "initialize"]
    assert "register" not in runner.labels()


async def test_cors_headers_and_preflight(client):
    resp = await client.get("/health")
    assert resp.headers["Access-Control-Allow-Origin"] == "*"

    preflight = await client.options("/deploy-token")
    assert preflight.status == 204
    assert "POST" in preflight.headers["Access-Control-Allow-Methods"]


def test_parse_request_keeps_optional_factory():
    other = "0x1111111111111111111111111111111111111111"
    request = parse_deploy_request({**BODY, "factoryAddress": other})

    assert request.factory_address == other
    assert request.initial_supply == 1000


def test_parse_request_rejects_zero_supply():
    with pytest.raises(ValidationError):
        parse_deploy_request({**BODY, "initialSupply": 0})
