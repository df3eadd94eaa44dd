"""
Deployment data models for the Stylus token pipeline
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from eth_utils import is_0x_prefixed, is_hex_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class Step(str, Enum):
    """Names of the external commands the pipeline runs"""
    DEPLOY = "deploy"
    ACTIVATE = "activate"
    CACHE_BID = "cache_bid"
    INITIALIZE = "initialize"
    CONFIRM = "confirm"
    FACTORY_ACTIVATE = "factory_activate"
    FACTORY_CODE = "factory_code"
    FACTORY_PROBE = "factory_probe"
    TOKEN_CODE = "token_code"
    REGISTRATION_CHECK = "registration_check"
    SIMULATE_REGISTER = "simulate_register"
    REGISTER = "register"


class PipelineState(str, Enum):
    """Orchestrator states, in the order they are reached"""
    VALIDATED = "Validated"
    DEPLOYED = "Deployed"
    ACTIVATED = "Activated"
    CACHED = "Cached"
    INITIALIZED = "Initialized"
    FACTORY_ACTIVATED = "FactoryActivated"
    FACTORY_VERIFIED = "FactoryVerified"
    TOKEN_VERIFIED = "TokenVerified"
    REGISTERED = "Registered"
    COMPLETED = "Completed"
    FAILED = "Failed"


def is_address(value) -> bool:
    """True for a 0x-prefixed 40 hex digit string (any case)"""
    return isinstance(value, str) and is_0x_prefixed(value) and is_hex_address(value)


def is_zero_address(value: str) -> bool:
    return value.lower() == ZERO_ADDRESS


def validate_address(value, label: str = "address", allow_zero: bool = False) -> str:
    """Check the 0x + 40 hex shape and return the address unchanged.

    Raises ValueError so callers can wrap it in the error type that fits
    where the address came from (request body, environment, tool output).
    """
    if not is_address(value):
        raise ValueError(f"Invalid {label}: expected 0x followed by 40 hex digits, got {value!r}")
    if not allow_zero and is_zero_address(value):
        raise ValueError(f"Invalid {label}: cannot be zero address")
    return value


@dataclass(frozen=True)
class DeploymentRequest:
    """A validated request to deploy and register one token"""
    name: str
    symbol: str
    initial_supply: int  # whole units, as entered by the caller
    factory_address: Optional[str] = None


@dataclass(frozen=True)
class ResolvedConfig:
    """Request plus the secrets and paths a single pipeline run needs"""
    request: DeploymentRequest
    private_key: str
    rpc_endpoint: str
    factory_address: str
    token_dir: str
    factory_dir: str

    @property
    def name(self) -> str:
        return self.request.name

    @property
    def symbol(self) -> str:
        return self.request.symbol

    @property
    def initial_supply(self) -> int:
        return self.request.initial_supply


@dataclass(frozen=True)
class StepResult:
    """Captured output of one pipeline step"""
    step: Step
    stdout: str = ""
    stderr: str = ""
    succeeded: bool = True
    ignored_failure_reason: Optional[str] = None  # set when a failure was classified benign

    @property
    def combined_output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "succeeded": self.succeeded,
            "ignoredFailureReason": self.ignored_failure_reason,
        }


@dataclass
class DeploymentOutcome:
    """Final result of one pipeline run, success or failure"""
    token_address: Optional[str]
    factory_address: Optional[str]
    steps: List[StepResult] = field(default_factory=list)
    success: bool = False
    failure_detail: Optional[Exception] = None
    state: PipelineState = PipelineState.VALIDATED

    def output_for(self, step: Step) -> str:
        """Combined stdout/stderr of the first result recorded for a step"""
        for result in self.steps:
            if result.step == step:
                return result.combined_output
        return ""
