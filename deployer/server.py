"""
HTTP surface for the deployment pipeline

POST /deploy-token  - run the full pipeline for one token
GET  /health        - liveness probe
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web

from deployer.config import DeployerSettings, resolve_config
from deployer.errors import ConfigurationError, PipelineFault, ValidationError
from deployer.models import DeploymentOutcome, DeploymentRequest, Step, is_address
from deployer.orchestrator import ADDRESS_PARSE_FAILURE, DeploymentOrchestrator
from deployer.services.units import parse_whole_units

SETTINGS_KEY = web.AppKey("settings", DeployerSettings)
ORCHESTRATOR_KEY = web.AppKey("orchestrator", DeploymentOrchestrator)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,HEAD,PUT,PATCH,POST,DELETE",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

SUCCESS_MESSAGE = "Token deployed and registered successfully"

logger = logging.getLogger('stylus_deployer.server')


def parse_deploy_request(body) -> DeploymentRequest:
    """Validate a /deploy-token body; raises ValidationError"""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    name = body.get("name")
    symbol = body.get("symbol")
    initial_supply = body.get("initialSupply")
    factory_address = body.get("factoryAddress") or None

    if not name or not symbol or initial_supply in (None, "", 0, "0"):
        raise ValidationError("name, symbol and initialSupply are required")
    if not isinstance(name, str) or not isinstance(symbol, str):
        raise ValidationError("name and symbol must be strings")

    for label, value in (("name", name), ("symbol", symbol)):
        if not value.strip():
            raise ValidationError(f"{label} cannot be blank")
        if any(ord(ch) < 32 or ord(ch) == 127 for ch in value):
            raise ValidationError(f"{label} cannot contain control characters")

    try:
        supply = parse_whole_units(initial_supply)
    except ValueError as e:
        raise ValidationError(str(e))
    if supply == 0:
        raise ValidationError("initialSupply must be greater than zero")

    if factory_address is not None and not is_address(factory_address):
        raise ValidationError("factoryAddress must be 0x followed by 40 hex digits")

    return DeploymentRequest(name=name, symbol=symbol, initial_supply=supply,
                             factory_address=factory_address)


def success_body(outcome: DeploymentOutcome) -> dict:
    return {
        "tokenAddress": outcome.token_address,
        "factoryAddress": outcome.factory_address,
        "deployOutput": outcome.output_for(Step.DEPLOY),
        "activateOutput": outcome.output_for(Step.ACTIVATE),
        "cacheOutput": outcome.output_for(Step.CACHE_BID),
        "initOutput": outcome.output_for(Step.INITIALIZE),
        "registerOutput": outcome.output_for(Step.REGISTER),
        "success": True,
        "message": SUCCESS_MESSAGE,
    }


def failure_body(outcome: DeploymentOutcome) -> dict:
    fault = outcome.failure_detail
    if isinstance(fault, PipelineFault):
        details = fault.to_dict()
        if fault.context:
            details["context"] = fault.context
    else:
        details = {"message": str(fault), "stdout": "", "stderr": ""}
    details["tokenAddress"] = outcome.token_address
    details["steps"] = [result.to_dict() for result in outcome.steps]

    body = {"error": "Deployment flow failed", "details": details}
    if isinstance(fault, PipelineFault) and fault.stage == Step.DEPLOY.value:
        body["deployOutput"] = f"{fault.stdout}\n{fault.stderr}"
        if fault.message == ADDRESS_PARSE_FAILURE:
            body["error"] = fault.message
    return body


async def _read_json(request: web.Request):
    raw = await request.read()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw.decode('utf-8'))
    except (ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError, UnicodeDecodeError and oversized ints
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON in request body", "details": str(e)}),
            content_type="application/json",
        )


async def deploy_token(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    orchestrator = request.app[ORCHESTRATOR_KEY]

    body = await _read_json(request)
    try:
        deploy_request = parse_deploy_request(body)
        config = resolve_config(deploy_request, settings)
    except ValidationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except ConfigurationError as e:
        logger.error(f"Refusing deployment: {e}")
        return web.json_response({"error": str(e)}, status=500)

    outcome = await orchestrator.deploy(config)
    if outcome.success:
        return web.json_response(success_body(outcome))
    return web.json_response(failure_body(outcome), status=500)


async def health(request: web.Request) -> web.Response:
    timestamp = datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')
    return web.json_response({"status": "ok", "timestamp": timestamp})


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(CORS_HEADERS)
        raise
    response.headers.update(CORS_HEADERS)
    return response


async def _shutdown_orchestrator(app: web.Application):
    await app[ORCHESTRATOR_KEY].shutdown()


def create_app(settings: DeployerSettings, orchestrator: Optional[DeploymentOrchestrator] = None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[SETTINGS_KEY] = settings
    app[ORCHESTRATOR_KEY] = orchestrator or DeploymentOrchestrator(settings)

    app.router.add_post('/deploy-token', deploy_token)
    app.router.add_get('/health', health)
    app.on_cleanup.append(_shutdown_orchestrator)
    return app
