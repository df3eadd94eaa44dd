"""
Stylus token deployment orchestrator

Runs deploy -> activate -> cache bid -> init -> factory checks ->
register as one strictly sequential pipeline per request. Every step
shells out to cargo-stylus or cast; this module decides what each
step's output means for the rest of the run.
"""

import asyncio
import logging
from typing import List, Optional, Set, Tuple

from eth_account import Account

from deployer.config import DeployerSettings
from deployer.errors import (
    DuplicateRegistrationFault,
    ExecutionFault,
    PipelineFault,
    PreconditionFault,
    TimeoutFault,
)
from deployer.models import (
    DeploymentOutcome,
    PipelineState,
    ResolvedConfig,
    Step,
    StepResult,
    is_zero_address,
)
from deployer.services.command_builder import (
    TOKEN_INFO_SIGNATURE,
    TOTAL_TOKENS_SIGNATURE,
    CommandBuilder,
    CommandSpec,
)
from deployer.services import output_parser
from deployer.services.process_runner import ProcessResult, ProcessRunner
from deployer.services.units import to_minimal_units

ADDRESS_PARSE_FAILURE = "Failed to parse deployed token contract address from deploy output"


class DeploymentOrchestrator:
    """Entry point for pipeline runs; holds no per-request state"""

    def __init__(self, settings: DeployerSettings, runner: Optional[ProcessRunner] = None,
                 builder: Optional[CommandBuilder] = None):
        self.settings = settings
        self.runner = runner or ProcessRunner(max_output_bytes=settings.max_output_bytes)
        self.builder = builder or CommandBuilder(max_fee_per_gas_gwei=settings.max_fee_per_gas_gwei)
        self.logger = logging.getLogger('stylus_deployer.orchestrator')
        self._background: Set[asyncio.Task] = set()

    async def deploy(self, config: ResolvedConfig) -> DeploymentOutcome:
        """Run the whole pipeline for one request; never raises PipelineFault"""
        run = PipelineRun(self, config)
        return await run.execute()

    def spawn_background(self, coro, label: str) -> asyncio.Task:
        """Start a task nobody awaits; failures land in the log"""
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def _done(finished: asyncio.Task):
            self._background.discard(finished)
            if finished.cancelled():
                self.logger.info(f"Background task '{label}' cancelled")
                return
            error = finished.exception()
            if error is not None:
                self.logger.error(f"Background task '{label}' failed: {error!r}")

        task.add_done_callback(_done)
        return task

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background)

    async def shutdown(self):
        """Cancel and drain detached tasks so none outlive the server"""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.logger.info(f"Drained {len(tasks)} background task(s)")


class PipelineRun:
    """State for a single request's pass through the pipeline"""

    def __init__(self, orchestrator: DeploymentOrchestrator, config: ResolvedConfig):
        self.orchestrator = orchestrator
        self.config = config
        self.settings = orchestrator.settings
        self.builder = orchestrator.builder
        self.runner = orchestrator.runner
        self.logger = orchestrator.logger
        self.stage = Step.DEPLOY.value
        self.outcome = DeploymentOutcome(token_address=None, factory_address=config.factory_address)

    @property
    def steps(self) -> List[StepResult]:
        return self.outcome.steps

    async def execute(self) -> DeploymentOutcome:
        cfg = self.config
        self.logger.info(
            f"Starting deployment of {cfg.name} ({cfg.symbol}), supply {cfg.initial_supply}, "
            f"factory {cfg.factory_address}"
        )
        try:
            self._check_request()
            self.outcome.state = PipelineState.VALIDATED

            token_address = await self._deploy()
            self.outcome.token_address = token_address
            self.outcome.state = PipelineState.DEPLOYED

            await self._idempotent(
                self.builder.activate(cfg.token_dir, token_address, cfg.private_key, cfg.rpc_endpoint)
            )
            self.outcome.state = PipelineState.ACTIVATED

            await self._idempotent(
                self.builder.cache_bid(cfg.token_dir, token_address, self.settings.cache_bid_amount,
                                       cfg.private_key, cfg.rpc_endpoint)
            )
            self.outcome.state = PipelineState.CACHED

            await self._initialize(token_address)
            self.outcome.state = PipelineState.INITIALIZED

            self._activate_factory()
            self.outcome.state = PipelineState.FACTORY_ACTIVATED

            await self._verify_code(cfg.factory_address, Step.FACTORY_CODE, "Factory")
            await self._probe_factory()
            self.outcome.state = PipelineState.FACTORY_VERIFIED

            await self._verify_code(token_address, Step.TOKEN_CODE, "Token")
            self.outcome.state = PipelineState.TOKEN_VERIFIED

            await self._register(token_address)
            self.outcome.state = PipelineState.REGISTERED

        except PipelineFault as fault:
            self._fail(fault)
        except Exception as e:
            self.logger.exception(f"Unexpected error during '{self.stage}'")
            self._fail(ExecutionFault(self.stage, f"Unexpected error during {self.stage}: {e}"))
        else:
            self.outcome.success = True
            self.outcome.state = PipelineState.COMPLETED
            self.logger.info(f"Token {self.outcome.token_address} deployed and registered")
        return self.outcome

    def _fail(self, fault: PipelineFault):
        self.outcome.success = False
        self.outcome.failure_detail = fault
        self.outcome.state = PipelineState.FAILED
        self.logger.error(f"Pipeline failed at '{fault.stage}' ({fault.kind}): {fault.message}")

    # steps ----------------------------------------------------------------

    def _check_request(self):
        cfg = self.config
        self.stage = "validate"
        if not cfg.name or not cfg.name.strip():
            raise PreconditionFault(self.stage, "Invalid name: cannot be empty")
        if not cfg.symbol or not cfg.symbol.strip():
            raise PreconditionFault(self.stage, "Invalid symbol: cannot be empty")
        if not cfg.initial_supply:
            raise PreconditionFault(self.stage, "Invalid initial supply: cannot be zero")
        if not cfg.private_key or not cfg.rpc_endpoint:
            raise PreconditionFault(self.stage, "Signing key and RPC endpoint are required")

    async def _deploy(self) -> str:
        cfg = self.config
        spec = self.builder.deploy(cfg.token_dir, cfg.private_key, cfg.rpc_endpoint)
        result = await self._execute(spec, self.settings.deploy_timeout)
        self._require_success(spec, result, "Token contract deployment failed")

        address = output_parser.extract_address(result.combined_output)
        if not address:
            raise ExecutionFault(
                spec.step.value,
                ADDRESS_PARSE_FAILURE,
                result.stdout, result.stderr,
            )
        if is_zero_address(address):
            raise PreconditionFault(spec.step.value, "Deploy output reported the zero address",
                                    result.stdout, result.stderr)

        self._record(spec.step, result)
        self.logger.info(f"Token contract deployed at {address}")
        return address

    async def _idempotent(self, spec: CommandSpec):
        """Activation and cache bid: 'already done' failures are absorbed"""
        result = await self._execute(spec, self.settings.send_timeout)
        if result.ok:
            self._record(spec.step, result)
            return

        if result.timed_out:
            raise TimeoutFault(spec.step.value, f"{spec.step.value} timed out: {result.error}",
                               result.stdout, result.stderr)

        verdict = output_parser.classify(f"{result.stderr}\n{result.stdout}", spec.step)
        if verdict.fatal:
            raise ExecutionFault(spec.step.value, f"{spec.step.value} failed: {result.error}",
                                 result.stdout, result.stderr)

        self.logger.info(f"{spec.step.value}: {verdict.reason}, continuing")
        self.steps.append(StepResult(step=spec.step, succeeded=False, ignored_failure_reason=verdict.reason))

    async def _initialize(self, token_address: str):
        cfg = self.config
        spec = self.builder.initialize(cfg.token_dir, token_address, cfg.private_key, cfg.rpc_endpoint,
                                       cfg.name, cfg.symbol, cfg.initial_supply)
        result = await self._execute(spec, self.settings.send_timeout)
        self._require_success(spec, result, "Token initialization failed")
        self._record(spec.step, result)
        await self._await_confirmation(spec.step, result)

    def _activate_factory(self):
        cfg = self.config
        self.stage = Step.FACTORY_ACTIVATE.value
        spec = self.builder.activate(cfg.factory_dir, cfg.factory_address, cfg.private_key,
                                     cfg.rpc_endpoint, step=Step.FACTORY_ACTIVATE)
        self.orchestrator.spawn_background(self._factory_activation(spec), f"activate factory {cfg.factory_address}")

    async def _factory_activation(self, spec: CommandSpec):
        result = await self.runner.run(spec.argv, cwd=spec.cwd, env=spec.env,
                                       timeout=self.settings.send_timeout)
        if result.ok:
            self.logger.info(f"Factory {self.config.factory_address} activated")
            return
        verdict = output_parser.classify(f"{result.stderr}\n{result.stdout}", spec.step)
        if verdict.benign:
            self.logger.info(f"Factory activation skipped: {verdict.reason}")
        else:
            self.logger.warning(
                f"Factory activation attempt failed (may already be activated): {result.error}\n{result.stderr}"
            )

    async def _verify_code(self, address: str, step: Step, label: str):
        spec = self.builder.read_code(address, self.config.rpc_endpoint, step=step)
        result = await self._execute(spec, self.settings.read_timeout)
        if not result.ok:
            # The probe itself is advisory; only a definite "no code" answer is fatal
            self.logger.warning(f"{label} code check unavailable ({result.error}), continuing")
            self.steps.append(StepResult(step=step, stdout=result.stdout, stderr=result.stderr,
                                         succeeded=False, ignored_failure_reason=result.error))
            return

        if not output_parser.has_contract_code(result.stdout):
            raise PreconditionFault(
                step.value,
                f"{label} contract has no code at address {address}. Contract may not be deployed.",
                result.stdout, result.stderr, context={"address": address},
            )
        self._record(step, result)
        self.logger.info(f"{label} contract verified at {address}")

    async def _probe_factory(self):
        spec = self.builder.read_view(self.config.factory_address, TOTAL_TOKENS_SIGNATURE, [],
                                      self.config.rpc_endpoint, step=Step.FACTORY_PROBE)
        result = await self._execute(spec, self.settings.read_timeout)
        if result.ok:
            self.logger.info(f"Factory contract is callable, total tokens: {result.stdout.strip()}")
        else:
            self.logger.warning(f"Factory view function test failed: {result.error} {result.stderr.strip()}")

    async def _register(self, token_address: str):
        cfg = self.config
        self.stage = Step.REGISTER.value

        if is_zero_address(token_address):
            raise PreconditionFault(self.stage, "Invalid token address: cannot be zero address")
        if is_zero_address(cfg.factory_address):
            raise PreconditionFault(self.stage, "Invalid factory address: cannot be zero address")

        # init() took whole units and scaled them; the factory stores base units
        quantity = to_minimal_units(cfg.initial_supply)

        await self._check_not_registered(token_address)
        simulation_error = await self._simulate_register(token_address, quantity)

        spec = self.builder.register(cfg.factory_address, cfg.private_key, cfg.rpc_endpoint,
                                     token_address, cfg.name, cfg.symbol, quantity, cwd=cfg.factory_dir)
        self.logger.info(
            f"Registering token {token_address} with name \"{cfg.name}\", symbol \"{cfg.symbol}\", "
            f"supply {cfg.initial_supply} ({quantity} base units)"
        )
        result = await self._execute(spec, self.settings.send_timeout)
        context = {
            "factoryAddress": cfg.factory_address,
            "tokenAddress": token_address,
            "name": cfg.name,
            "symbol": cfg.symbol,
            "initialSupply": str(cfg.initial_supply),
            "quantity": str(quantity),
        }

        if result.timed_out:
            raise TimeoutFault(
                self.stage,
                f"Token registration timed out after {self.settings.send_timeout}s. The transaction may "
                f"still be mined; check the factory record for {token_address} before retrying.",
                result.stdout, result.stderr, context=context,
            )

        if not result.ok:
            raw_error = (result.stderr or result.stdout).strip()
            self._registration_failed(token_address, quantity, result, result.error, raw_error,
                                      simulation_error, context)

        self._record(spec.step, result)
        tx_hash, status = await self._confirm(spec.step, result)
        if status is False:
            # Mined but reverted
            self._registration_failed(token_address, quantity, result, f"transaction {tx_hash} reverted",
                                      f"execution reverted in mined transaction {tx_hash}", simulation_error, context)

    def _registration_failed(self, token_address: str, quantity: int, result: ProcessResult, error: str,
                             raw_error: str, simulation_error: Optional[str], context: dict):
        cfg = self.config
        if output_parser.mentions_duplicate_registration(f"{raw_error}\n{result.stderr}"):
            raise DuplicateRegistrationFault(
                self.stage, f"Token {token_address} is already registered in factory {cfg.factory_address}",
                result.stdout, result.stderr, context=context,
            )
        details = raw_error
        if simulation_error:
            details = f"Simulation error: {simulation_error}. Actual send error: {details}"
        details = output_parser.with_revert_hints(details)
        raise ExecutionFault(
            self.stage,
            f"Token registration FAILED (required step). "
            f"Factory: {cfg.factory_address}, Token: {token_address}, "
            f"Name: \"{cfg.name}\", Symbol: \"{cfg.symbol}\", Supply: {quantity}. "
            f"Error: {error}. \nDetails: {details}",
            result.stdout, result.stderr, context=context,
        )

    async def _check_not_registered(self, token_address: str):
        """Read the factory's record so a duplicate fails before anything is signed"""
        cfg = self.config
        spec = self.builder.read_view(cfg.factory_address, TOKEN_INFO_SIGNATURE, [token_address],
                                      cfg.rpc_endpoint, step=Step.REGISTRATION_CHECK)
        result = await self._execute(spec, self.settings.read_timeout)
        if result.ok and output_parser.is_registered(result.stdout):
            raise DuplicateRegistrationFault(
                Step.REGISTER.value,
                f"Token {token_address} is already registered in factory. "
                f"Cannot register the same token twice.",
                result.stdout, result.stderr,
                context={"factoryAddress": cfg.factory_address, "tokenAddress": token_address},
            )
        if result.timed_out:
            self.logger.warning("Registration pre-check timed out, proceeding with registration")
        else:
            self.logger.info("Token not found in factory (expected for new tokens), proceeding with registration")

    async def _simulate_register(self, token_address: str, quantity: int) -> Optional[str]:
        cfg = self.config
        try:
            sender = Account.from_key(cfg.private_key).address
        except Exception as e:
            self.logger.warning(f"Skipping registration dry-run, signing key unusable locally: {e}")
            return None

        spec = self.builder.simulate_register(cfg.factory_address, sender, cfg.rpc_endpoint,
                                              token_address, cfg.name, cfg.symbol, quantity)
        result = await self._execute(spec, self.settings.read_timeout)
        if result.ok:
            self.logger.info("Registration dry-run succeeded")
            return None
        error = f"{result.stderr}\n{result.stdout}".strip() or result.error
        self.logger.error(f"Registration dry-run failed: {error}")
        return error

    async def _await_confirmation(self, step: Step, send_result: ProcessResult):
        tx_hash, status = await self._confirm(step, send_result)
        if status is False:
            raise ExecutionFault(step.value, f"Transaction {tx_hash} reverted during {step.value}",
                                 send_result.stdout, send_result.stderr)

    async def _confirm(self, step: Step, send_result: ProcessResult) -> Tuple[Optional[str], Optional[bool]]:
        """Use the receipt `cast send` printed, else poll `cast receipt`"""
        tx_hash = output_parser.extract_receipt_transaction_hash(send_result.combined_output)
        status = output_parser.receipt_status(send_result.stdout)
        if status is None:
            if not tx_hash:
                self.logger.warning(f"{step.value}: no transaction hash in output, not waiting for a receipt")
                return None, None
            status = await self._poll_receipt(tx_hash)

        if status:
            self.logger.info(f"{step.value}: transaction {tx_hash} confirmed")
        elif status is False:
            self.logger.error(f"{step.value}: transaction {tx_hash} reverted")
        return tx_hash, status

    async def _poll_receipt(self, tx_hash: str) -> Optional[bool]:
        """Exponential backoff until a status shows up or the deadline passes"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.confirm_timeout
        delay = self.settings.confirm_initial_delay
        spec = self.builder.receipt(tx_hash, self.config.rpc_endpoint)
        self.logger.info(f"Waiting for transaction {tx_hash} to be confirmed...")

        while True:
            result = await self._execute(spec, self.settings.read_timeout)
            if result.ok:
                status = output_parser.receipt_status(result.stdout)
                if status is not None:
                    return status
            remaining = deadline - loop.time()
            if remaining <= 0:
                self.logger.warning(f"No receipt for {tx_hash} within {self.settings.confirm_timeout}s, continuing")
                return None
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, self.settings.confirm_max_delay)

    # plumbing -------------------------------------------------------------

    async def _execute(self, spec: CommandSpec, timeout: float) -> ProcessResult:
        self.stage = spec.step.value
        self.logger.debug(f"[{spec.step.value}] {spec.display()} (cwd={spec.cwd})")
        result = await self.runner.run(spec.argv, cwd=spec.cwd, env=spec.env, timeout=timeout)
        if not result.ok:
            self.logger.debug(f"[{spec.step.value}] {result.error}: {result.stderr.strip()}")
        return result

    def _require_success(self, spec: CommandSpec, result: ProcessResult, message: str):
        if result.ok:
            return
        if result.timed_out:
            raise TimeoutFault(spec.step.value, f"{message}: {result.error}", result.stdout, result.stderr)
        raise ExecutionFault(spec.step.value, f"{message}: {result.error}", result.stdout, result.stderr)

    def _record(self, step: Step, result: ProcessResult):
        self.steps.append(StepResult(step=step, stdout=result.stdout, stderr=result.stderr))
