"""
Builds the cargo-stylus and cast command lines for each pipeline step

Nothing here executes anything. Commands are argument vectors that the
runner passes straight to the OS without a shell, so request strings
(name, symbol) travel as single arguments and are never parsed as shell
text. `CommandSpec.display()` gives a shell-quoted, key-redacted
rendering for logs. Calls that carry request strings put them after a
`--` so a name such as "-1x" stays a positional argument.
"""

import shlex
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

from deployer.models import Step, validate_address

INIT_SIGNATURE = "init(string,string,uint256)"
REGISTER_SIGNATURE = "register_token(address,string,string,uint256)"
TOKEN_INFO_SIGNATURE = "get_token_info(address)"
TOTAL_TOKENS_SIGNATURE = "get_total_tokens_deployed()"

DEFAULT_MAX_FEE_PER_GAS_GWEI = "0.1"

REDACTED = "***"


@dataclass(frozen=True)
class CommandSpec:
    """One fully materialized external command"""
    step: Step
    argv: Tuple[str, ...]
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    secrets: Tuple[str, ...] = ()
    read_only: bool = False

    def display(self) -> str:
        """Shell-quoted command line with secrets replaced"""
        rendered = shlex.join(self.argv)
        for secret in self.secrets:
            if secret:
                rendered = rendered.replace(secret, REDACTED)
        return rendered


class CommandBuilder:
    """Materializes the command for each step; one method per step"""

    def __init__(self, max_fee_per_gas_gwei: str = DEFAULT_MAX_FEE_PER_GAS_GWEI,
                 cargo: str = "cargo", cast: str = "cast"):
        self.max_fee_per_gas_gwei = str(max_fee_per_gas_gwei)
        self.cargo = cargo
        self.cast = cast

    # cargo stylus ---------------------------------------------------------

    def deploy(self, contract_dir: str, signing_key: str, rpc_endpoint: str) -> CommandSpec:
        argv = (
            self.cargo, "stylus", "deploy",
            f"--private-key={signing_key}",
            f"--endpoint={rpc_endpoint}",
            "--no-verify",
            "--max-fee-per-gas-gwei", self.max_fee_per_gas_gwei,
        )
        return self._signed(Step.DEPLOY, argv, contract_dir, signing_key, rpc_endpoint)

    def activate(self, contract_dir: str, address: str, signing_key: str, rpc_endpoint: str,
                 step: Step = Step.ACTIVATE) -> CommandSpec:
        validate_address(address, "contract address")
        argv = (
            self.cargo, "stylus", "activate",
            "--address", address,
            f"--private-key={signing_key}",
            f"--endpoint={rpc_endpoint}",
            "--max-fee-per-gas-gwei", self.max_fee_per_gas_gwei,
        )
        return self._signed(step, argv, contract_dir, signing_key, rpc_endpoint)

    def cache_bid(self, contract_dir: str, address: str, bid_amount: int, signing_key: str,
                  rpc_endpoint: str) -> CommandSpec:
        validate_address(address, "contract address")
        if isinstance(bid_amount, bool) or not isinstance(bid_amount, int) or bid_amount < 0:
            raise ValueError(f"bid_amount must be a non-negative int, got {bid_amount!r}")
        argv = (
            self.cargo, "stylus", "cache", "bid",
            address, str(bid_amount),
            f"--private-key={signing_key}",
            f"--endpoint={rpc_endpoint}",
            "--max-fee-per-gas-gwei", self.max_fee_per_gas_gwei,
        )
        return self._signed(Step.CACHE_BID, argv, contract_dir, signing_key, rpc_endpoint)

    # cast -----------------------------------------------------------------

    def initialize(self, contract_dir: str, address: str, signing_key: str, rpc_endpoint: str,
                   name: str, symbol: str, whole_units: int) -> CommandSpec:
        """`init(name, symbol, supply)`; the token scales supply to base units itself"""
        validate_address(address, "token address")
        argv = (
            self.cast, "send",
            f"--private-key={signing_key}",
            "--rpc-url", rpc_endpoint,
            "--",
            address,
            INIT_SIGNATURE,
            self._text_arg(name, "name"), self._text_arg(symbol, "symbol"), self._uint_arg(whole_units),
        )
        return self._signed(Step.INITIALIZE, argv, contract_dir, signing_key, rpc_endpoint)

    def register(self, factory_address: str, signing_key: str, rpc_endpoint: str,
                 token_address: str, name: str, symbol: str, quantity: int,
                 cwd: Optional[str] = None) -> CommandSpec:
        """`register_token(...)`; quantity must already be in the unit the factory expects"""
        argv = (
            self.cast, "send",
            f"--private-key={signing_key}",
            "--rpc-url", rpc_endpoint,
            "--",
        ) + self._register_call(factory_address, token_address, name, symbol, quantity)
        return self._signed(Step.REGISTER, argv, cwd, signing_key, rpc_endpoint)

    def simulate_register(self, factory_address: str, sender: str, rpc_endpoint: str,
                          token_address: str, name: str, symbol: str, quantity: int) -> CommandSpec:
        """Dry-run of the registration through eth_call; no signing key involved"""
        validate_address(sender, "sender address")
        argv = (
            self.cast, "call",
            "--from", sender,
            "--rpc-url", rpc_endpoint,
            "--",
        ) + self._register_call(factory_address, token_address, name, symbol, quantity)
        return self._read(Step.SIMULATE_REGISTER, argv, rpc_endpoint)

    def read_code(self, address: str, rpc_endpoint: str, step: Step = Step.TOKEN_CODE) -> CommandSpec:
        validate_address(address, "contract address", allow_zero=True)
        argv = (self.cast, "code", address, "--rpc-url", rpc_endpoint)
        return self._read(step, argv, rpc_endpoint)

    def read_view(self, address: str, function_signature: str, args: Sequence, rpc_endpoint: str,
                  step: Step = Step.FACTORY_PROBE) -> CommandSpec:
        validate_address(address, "contract address")
        argv = (self.cast, "call", address, function_signature) + tuple(str(arg) for arg in args) + (
            "--rpc-url", rpc_endpoint,
        )
        return self._read(step, argv, rpc_endpoint)

    def receipt(self, tx_hash: str, rpc_endpoint: str) -> CommandSpec:
        argv = (self.cast, "receipt", tx_hash, "--rpc-url", rpc_endpoint)
        return self._read(Step.CONFIRM, argv, rpc_endpoint)

    # helpers --------------------------------------------------------------

    def _register_call(self, factory_address, token_address, name, symbol, quantity) -> Tuple[str, ...]:
        validate_address(factory_address, "factory address")
        validate_address(token_address, "token address")
        return (
            factory_address,
            REGISTER_SIGNATURE,
            token_address, self._text_arg(name, "name"), self._text_arg(symbol, "symbol"),
            self._uint_arg(quantity),
        )

    @staticmethod
    def _text_arg(value: str, label: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{label} cannot be empty")
        if any(ord(ch) < 32 or ord(ch) == 127 for ch in value):
            raise ValueError(f"{label} cannot contain control characters")
        return value

    @staticmethod
    def _uint_arg(value: int) -> str:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"expected a non-negative int, got {value!r}")
        return str(value)

    @staticmethod
    def _signed(step: Step, argv: Tuple[str, ...], cwd: Optional[str], signing_key: str,
                rpc_endpoint: str) -> CommandSpec:
        if not signing_key:
            raise ValueError(f"{step.value} requires a signing key")
        return CommandSpec(
            step=step,
            argv=argv,
            cwd=cwd,
            env={"PRIVATE_KEY": signing_key, "RPC_ENDPOINT": rpc_endpoint},
            secrets=(signing_key,),
        )

    @staticmethod
    def _read(step: Step, argv: Tuple[str, ...], rpc_endpoint: str) -> CommandSpec:
        return CommandSpec(step=step, argv=argv, env={"RPC_ENDPOINT": rpc_endpoint}, read_only=True)
