"""
Settings, per-request config resolution and logging setup
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from deployer.errors import ConfigurationError, ValidationError
from deployer.models import DeploymentRequest, ResolvedConfig, validate_address
from deployer.services.process_runner import DEFAULT_MAX_OUTPUT_BYTES

# Factory used when neither the request nor FACTORY_ADDRESS names one
DEFAULT_FACTORY_ADDRESS = "0xed088fd93517b0d0c3a3e4d2e2c419fb58570556"

LOGGER_NAME = 'stylus_deployer'
LOG_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'


@dataclass(frozen=True)
class DeployerSettings:
    """Process-wide settings read once from the environment"""
    private_key: Optional[str] = None
    rpc_endpoint: Optional[str] = None
    factory_address: str = DEFAULT_FACTORY_ADDRESS
    token_dir: str = "erc20-token"
    factory_dir: str = "token-factory"
    host: str = "0.0.0.0"
    port: int = 4000
    max_fee_per_gas_gwei: str = "0.1"
    cache_bid_amount: int = 1
    read_timeout: float = 10.0
    send_timeout: float = 60.0
    deploy_timeout: float = 600.0
    confirm_timeout: float = 60.0
    confirm_initial_delay: float = 0.5
    confirm_max_delay: float = 4.0
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "DeployerSettings":
        """Load settings from os.environ, after reading .env when asked"""
        if dotenv:
            load_dotenv()

        root = os.getenv('CONTRACTS_ROOT', os.getcwd())
        factory_address = os.getenv('FACTORY_ADDRESS') or DEFAULT_FACTORY_ADDRESS
        try:
            validate_address(factory_address, "FACTORY_ADDRESS")
        except ValueError as e:
            raise ConfigurationError(str(e))

        return cls(
            private_key=os.getenv('PRIVATE_KEY') or None,
            rpc_endpoint=os.getenv('RPC_ENDPOINT') or None,
            factory_address=factory_address,
            token_dir=os.getenv('TOKEN_CONTRACT_DIR', os.path.join(root, 'erc20-token')),
            factory_dir=os.getenv('FACTORY_CONTRACT_DIR', os.path.join(root, 'token-factory')),
            host=os.getenv('HOST', '0.0.0.0'),
            port=_env_number('PORT', 4000, int),
            max_fee_per_gas_gwei=os.getenv('MAX_FEE_PER_GAS_GWEI', '0.1'),
            cache_bid_amount=_env_number('CACHE_BID_AMOUNT', 1, int),
            read_timeout=_env_number('READ_TIMEOUT_SECONDS', 10.0, float),
            send_timeout=_env_number('SEND_TIMEOUT_SECONDS', 60.0, float),
            deploy_timeout=_env_number('DEPLOY_TIMEOUT_SECONDS', 600.0, float),
            confirm_timeout=_env_number('CONFIRM_TIMEOUT_SECONDS', 60.0, float),
            max_output_bytes=_env_number('MAX_OUTPUT_BYTES', DEFAULT_MAX_OUTPUT_BYTES, int),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        )


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigurationError(f"{name} cannot be negative")
    return value


def resolve_config(request: DeploymentRequest, settings: DeployerSettings) -> ResolvedConfig:
    """Combine a validated request with secrets and the effective factory.

    Factory priority: request body, then FACTORY_ADDRESS, then the
    compiled-in default (already folded into settings).
    """
    if not settings.private_key or not settings.rpc_endpoint:
        raise ConfigurationError("PRIVATE_KEY and RPC_ENDPOINT must be set as environment variables")

    factory_address = request.factory_address or settings.factory_address
    try:
        validate_address(factory_address, "factoryAddress")
    except ValueError as e:
        raise ValidationError(str(e))

    return ResolvedConfig(
        request=request,
        private_key=settings.private_key,
        rpc_endpoint=settings.rpc_endpoint,
        factory_address=factory_address,
        token_dir=settings.token_dir,
        factory_dir=settings.factory_dir,
    )


def setup_logging(level: str = "INFO", log_dir: str = 'logs') -> logging.Logger:
    """Console plus file logging for the stylus_deployer logger tree"""
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    os.makedirs(log_dir, exist_ok=True)
    logger.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(os.path.join(log_dir, 'deployer.log'), encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # aiohttp's access log is noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    return logger
