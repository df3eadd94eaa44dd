from .deployment import (
    ZERO_ADDRESS,
    DeploymentOutcome,
    DeploymentRequest,
    PipelineState,
    ResolvedConfig,
    Step,
    StepResult,
    is_address,
    is_zero_address,
    validate_address,
)

__all__ = [
    "ZERO_ADDRESS",
    "DeploymentOutcome",
    "DeploymentRequest",
    "PipelineState",
    "ResolvedConfig",
    "Step",
    "StepResult",
    "is_address",
    "is_zero_address",
    "validate_address",
]
