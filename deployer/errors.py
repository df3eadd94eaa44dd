"""
Error types raised by the deployment pipeline
"""

from typing import Optional


class DeployerError(Exception):
    """Base class for every error the deployer raises on purpose"""


class ValidationError(DeployerError):
    """Request body is missing fields or carries unusable values"""


class ConfigurationError(DeployerError):
    """Required secrets or settings are missing or malformed"""


class PipelineFault(DeployerError):
    """A pipeline step failed; carries the step name and raw tool output"""

    kind = "PipelineFault"

    def __init__(self, stage: str, message: str, stdout: str = "", stderr: str = "",
                 context: Optional[dict] = None):
        self.stage = stage
        self.message = message
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "failedStage": self.stage,
            "errorType": self.kind,
        }


class ExecutionFault(PipelineFault):
    """External command could not run, overflowed its buffers or exited non-zero"""

    kind = "ExecutionFault"


class PreconditionFault(PipelineFault):
    """Explicit check failed: missing contract code, zero address, empty parameters"""

    kind = "PreconditionFault"


class TimeoutFault(PipelineFault):
    """External command exceeded its time bound"""

    kind = "TimeoutFault"


class DuplicateRegistrationFault(PipelineFault):
    """Token is already recorded by the factory"""

    kind = "DuplicateRegistrationFault"
