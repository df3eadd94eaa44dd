"""
Shared fixtures: settings, a scripted stand-in for the process runner
"""

import asyncio
import inspect

import pytest

from deployer.config import DeployerSettings, resolve_config
from deployer.models import DeploymentRequest
from deployer.orchestrator import DeploymentOrchestrator
from deployer.services.command_builder import (
    INIT_SIGNATURE,
    REGISTER_SIGNATURE,
    TOKEN_INFO_SIGNATURE,
    TOTAL_TOKENS_SIGNATURE,
)
from deployer.services.process_runner import ProcessResult

PRIVATE_KEY = "0x" + "11" * 32
RPC_ENDPOINT = "http://127.0.0.1:8547"
FACTORY = "0xed088fd93517b0d0c3a3e4d2e2c419fb58570556"
TOKEN = "0xAbCdEf0123456789abcdef0123456789ABCDEF01"
INIT_TX = "0x" + "ab" * 32
REGISTER_TX = "0x" + "cd" * 32


def ok(stdout: str = "", stderr: str = "") -> ProcessResult:
    return ProcessResult(stdout=stdout, stderr=stderr, returncode=0)


def failed(stderr: str = "", stdout: str = "", code: int = 1) -> ProcessResult:
    return ProcessResult(stdout=stdout, stderr=stderr, returncode=code, error=f"exited with status {code}")


def timed_out() -> ProcessResult:
    return ProcessResult(returncode=-9, error="timed out after 1s", timed_out=True)


def sent(tx_hash: str, status: int = 1) -> ProcessResult:
    label = "(success)" if status else "(failed)"
    return ok(
        f"blockHash            0x{'0' * 63}1\n"
        f"blockNumber          1234\n"
        f"status               {status} {label}\n"
        f"transactionHash      {tx_hash}\n"
    )


def default_responses() -> dict:
    return {
        "deploy": ok(
            "stripped custom section from user wasm to remove any sensitive data\n"
            f"Deployed code at address {TOKEN}\n"
            f"deployment tx hash: 0x{'1' * 64}\n"
        ),
        "activate": ok("activating program\nactivated"),
        "cache_bid": ok("placed bid"),
        "initialize": sent(INIT_TX),
        "factory_activate": ok("activated"),
        "factory_code": ok("0x608060405234801561001057600080fd5b50\n"),
        "factory_probe": ok("0x0000000000000000000000000000000000000000000000000000000000000005\n"),
        "token_code": ok("0xeff000000000000000000000deadbeef\n"),
        "registration_check": failed("Error: server returned an error response: execution reverted: TokenNotFound"),
        "simulate_register": ok("0x\n"),
        "register": sent(REGISTER_TX),
        "receipt": sent(INIT_TX),
    }


def label_for(argv) -> str:
    """Which pipeline command an argv belongs to"""
    head = tuple(argv[:3])
    if head == ("cargo", "stylus", "deploy"):
        return "deploy"
    if head == ("cargo", "stylus", "activate"):
        address = argv[argv.index("--address") + 1]
        return "factory_activate" if address.lower() == FACTORY.lower() else "activate"
    if head == ("cargo", "stylus", "cache"):
        return "cache_bid"
    if argv[:2] == ("cast", "send"):
        return "initialize" if INIT_SIGNATURE in argv else "register"
    if argv[:2] == ("cast", "call"):
        if "--from" in argv:
            return "simulate_register"
        if TOKEN_INFO_SIGNATURE in argv:
            return "registration_check"
        if TOTAL_TOKENS_SIGNATURE in argv:
            return "factory_probe"
    if argv[:2] == ("cast", "code"):
        return "factory_code" if argv[2].lower() == FACTORY.lower() else "token_code"
    if argv[:2] == ("cast", "receipt"):
        return "receipt"
    if REGISTER_SIGNATURE in argv:
        return "register"
    raise AssertionError(f"unexpected command {argv}")


class FakeRunner:
    """Answers each command from a table keyed by label_for().

    A value may be a ProcessResult, a list (consumed in order, last one
    repeats) or a callable / coroutine function taking the argv.
    """

    def __init__(self, **overrides):
        self.responses = default_responses()
        self.responses.update(overrides)
        self.calls = []

    async def run(self, command, cwd=None, env=None, timeout=None):
        argv = tuple(command)
        label = label_for(argv)
        self.calls.append({"label": label, "argv": argv, "cwd": cwd, "env": env, "timeout": timeout})
        await asyncio.sleep(0)

        response = self.responses[label]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if callable(response):
            response = response(argv)
            if inspect.isawaitable(response):
                response = await response
        return response

    def labels(self, include_background: bool = False):
        return [c["label"] for c in self.calls if include_background or c["label"] != "factory_activate"]

    def argv_for(self, label: str):
        for call in self.calls:
            if call["label"] == label:
                return call["argv"]
        raise AssertionError(f"{label} was never run")


@pytest.fixture
def settings():
    return DeployerSettings(
        private_key=PRIVATE_KEY,
        rpc_endpoint=RPC_ENDPOINT,
        factory_address=FACTORY,
        token_dir="/srv/contracts/erc20-token",
        factory_dir="/srv/contracts/token-factory",
        read_timeout=2.0,
        send_timeout=5.0,
        deploy_timeout=5.0,
        confirm_timeout=1.0,
        confirm_initial_delay=0.0,
        confirm_max_delay=0.0,
    )


@pytest.fixture
def make_config(settings):
    def _make(name="Test", symbol="TST", supply=1000, factory_address=None):
        request = DeploymentRequest(name=name, symbol=symbol, initial_supply=supply,
                                    factory_address=factory_address)
        return resolve_config(request, settings)
    return _make


@pytest.fixture
async def make_orchestrator(settings):
    created = []

    def _make(runner):
        orchestrator = DeploymentOrchestrator(settings, runner=runner)
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        await orchestrator.shutdown()
