"""
Configuration Management Module

Immutable run configuration for the blaster.

Values are layered: built-in defaults, then an optional YAML file, then
environment variables (a .env file is loaded first), then explicit overrides
coming from the command line. Private keys are only ever taken from the
environment or overrides and are never written back to disk.
"""

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass, asdict, field, replace

import yaml
from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address
from web3 import Web3

from utils import ConfigurationError, validate_call_data

# Setup basic logging for this module
import logging
logger = logging.getLogger("tx_blaster.config")


@dataclass(frozen=True)
class BlastConfig:
    """Blaster configuration settings."""

    # Network
    rpc_url: str = "https://carrot.megaeth.com/rpc"
    chain_id: int = 6342
    request_timeout: int = 30

    # Target call
    target: str = "0xbe43d66327ca5b77e7f14870a94a3058511103d3"
    call_data: str = "0x05632f40"
    total_tx: int = 500

    # Gas settings
    max_fee_gwei: str = "0.009"
    priority_fee_gwei: Optional[str] = None  # falls back to max_fee_gwei
    gas_limit: int = 90000

    # Retry policy
    max_retries: int = 5
    max_congestion_retries: int = 5
    max_nonce_resyncs: int = 10
    nonce_refresh_attempts: int = 3

    # Pacing (milliseconds)
    congestion_backoff_ms: int = 1000
    inter_tx_delay_ms: int = 10
    inter_wallet_start_delay_ms: int = 0

    # Wallets
    private_keys: Tuple[str, ...] = field(default=(), repr=False)

    # Operation
    dry_run: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = "./logs/blaster.log"
    event_log: Optional[str] = None

    @property
    def max_fee_wei(self) -> int:
        return Web3.to_wei(Decimal(str(self.max_fee_gwei)), "gwei")

    @property
    def priority_fee_wei(self) -> int:
        return Web3.to_wei(Decimal(str(self.priority_fee_gwei or self.max_fee_gwei)), "gwei")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding private keys)."""
        data = asdict(self)
        data.pop("private_keys")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlastConfig":
        """Create BlastConfig from dictionary, ignoring unknown keys."""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        keys = valid_fields.get("private_keys")
        if isinstance(keys, str):
            valid_fields["private_keys"] = parse_private_keys(keys)
        elif keys is not None:
            valid_fields["private_keys"] = tuple(keys)
        return cls(**valid_fields)

    def with_overrides(self, **changes) -> "BlastConfig":
        """Return a copy with the non-None values of `changes` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def validate(self, require_keys: bool = True) -> "BlastConfig":
        """
        Check every value that would otherwise fail later, mid-run.

        Returns a copy with the target address checksummed and integer
        fields converted to int.

        Raises:
            ConfigurationError: On the first invalid value
        """
        if require_keys and not self.private_keys:
            raise ConfigurationError("Set PRIVATE_KEYS (comma-separated) in the environment or .env")

        if not isinstance(self.rpc_url, str) or not self.rpc_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"RPC URL must be http(s): {self.rpc_url}")

        if not is_address(self.target):
            raise ConfigurationError(f"Invalid target address: {self.target}")

        if not validate_call_data(self.call_data):
            raise ConfigurationError(f"Call data must be 0x-prefixed hex: {self.call_data}")

        # YAML may hand us strings ("10") or junk ("ten"); normalize before range checks
        integers = {}
        for name in POSITIVE_INT_FIELDS + NON_NEGATIVE_INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            try:
                integers[name] = int(value)
            except (TypeError, ValueError):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if isinstance(value, float) and value != integers[name]:
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")

        for name in POSITIVE_INT_FIELDS:
            if integers[name] <= 0:
                raise ConfigurationError(f"{name} must be positive, got {integers[name]}")

        for name in NON_NEGATIVE_INT_FIELDS:
            if integers[name] < 0:
                raise ConfigurationError(f"{name} cannot be negative, got {integers[name]}")

        for name in ("max_fee_gwei", "priority_fee_gwei"):
            value = getattr(self, name)
            if value is None:
                continue
            try:
                if Decimal(str(value)) < 0:
                    raise ConfigurationError(f"{name} cannot be negative, got {value}")
            except InvalidOperation:
                raise ConfigurationError(f"{name} is not a number: {value}")

        if self.priority_fee_wei > self.max_fee_wei:
            raise ConfigurationError("priority_fee_gwei cannot exceed max_fee_gwei")

        return replace(self, target=to_checksum_address(self.target), **integers)


POSITIVE_INT_FIELDS = ("chain_id", "gas_limit", "max_retries", "max_congestion_retries",
                       "nonce_refresh_attempts", "request_timeout")
NON_NEGATIVE_INT_FIELDS = ("total_tx", "max_nonce_resyncs", "congestion_backoff_ms",
                           "inter_tx_delay_ms", "inter_wallet_start_delay_ms")


def parse_private_keys(raw: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated key list, trimming blanks."""
    if not raw:
        return ()
    return tuple(pk.strip() for pk in raw.split(",") if pk.strip())


# Environment variable -> (field, converter)
ENV_FIELDS = {
    "RPC_URL": ("rpc_url", str),
    "CHAIN_ID": ("chain_id", int),
    "TARGET": ("target", str),
    "CALL_DATA": ("call_data", str),
    "TOTAL_TX": ("total_tx", int),
    "MAX_FEE_GWEI": ("max_fee_gwei", str),
    "PRIVATE_KEYS": ("private_keys", parse_private_keys),
}


class ConfigManager:
    """Loads the layered configuration and writes the default template."""

    def __init__(self, config_path: Path = Path("./blaster_config.yaml"),
                 env_file: Optional[str] = ".env"):
        self.config_path = Path(config_path)
        self.env_file = env_file

    def read_raw_config(self) -> Dict[str, Any]:
        """Read the YAML file, or an empty mapping when it does not exist."""
        if not self.config_path.exists():
            return {}

        with open(self.config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {self.config_path} must contain a mapping")

        if "private_keys" in data:
            logger.warning("Ignoring private_keys in %s; use PRIVATE_KEYS instead", self.config_path)
            data.pop("private_keys")
        return data

    def read_env(self) -> Dict[str, Any]:
        """Collect overrides from the process environment."""
        if self.env_file:
            load_dotenv(self.env_file)

        values: Dict[str, Any] = {}
        for env_name, (field_name, convert) in ENV_FIELDS.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = convert(raw)
            except ValueError:
                raise ConfigurationError(f"Environment variable {env_name} is invalid: {raw!r}")
        return values

    def load(self, overrides: Optional[Dict[str, Any]] = None, require_keys: bool = True) -> BlastConfig:
        """Load and validate configuration."""
        data = self.read_raw_config()
        data.update(self.read_env())
        if overrides:
            data.update({k: v for k, v in overrides.items() if v is not None})

        try:
            config = BlastConfig.from_dict(data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        config = config.validate(require_keys=require_keys)
        logger.debug("Configuration loaded from %s", self.config_path)
        return config

    def write_default(self, force: bool = False) -> Path:
        """Write the default configuration template."""
        if self.config_path.exists() and not force:
            raise ConfigurationError(f"{self.config_path} already exists (use --force to overwrite)")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            f.write(DEFAULT_CONFIG + "\n")

        logger.info("Configuration template written to %s", self.config_path)
        return self.config_path


# Default configuration template
DEFAULT_CONFIG = """
# tx-blaster configuration
# Private keys are NOT read from this file: set PRIVATE_KEYS (comma-separated)
# in the environment or in a .env file next to it.

rpc_url: https://carrot.megaeth.com/rpc
chain_id: 6342
request_timeout: 30

# Target call
target: "0xbe43d66327ca5b77e7f14870a94a3058511103d3"
call_data: "0x05632f40"
total_tx: 500

# Gas Settings
max_fee_gwei: "0.009"
priority_fee_gwei: null
gas_limit: 90000

# Retry Policy
max_retries: 5
max_congestion_retries: 5
max_nonce_resyncs: 10
nonce_refresh_attempts: 3

# Pacing (milliseconds)
congestion_backoff_ms: 1000
inter_tx_delay_ms: 10
inter_wallet_start_delay_ms: 0

# Operation Settings
dry_run: false
log_level: INFO
log_file: ./logs/blaster.log
event_log: null
""".strip()
