"""
Utility Module

Exceptions, secure logging and formatting helpers shared by the blaster.

- Error taxonomy for configuration, wallet and node failures
- Logger that redacts private keys before anything reaches a handler
- Address / hash / duration formatting for console output
"""

import re
import logging
from pathlib import Path
from typing import Optional

from eth_utils import is_hex, remove_0x_prefix
from rich.logging import RichHandler
from rich.console import Console


# Global console for Rich output
console = Console()

LOGGER_NAME = "tx_blaster"


class BlasterError(Exception):
    """Base class for all blaster errors."""
    pass


class ConfigurationError(BlasterError):
    """Missing or invalid configuration. Fatal before any network activity."""
    pass


class WalletConstructionError(BlasterError):
    """A private key could not be turned into a signing wallet."""

    def __init__(self, position: int, reason: str):
        super().__init__(f"Invalid private key at position {position}: {reason}")
        self.position = position
        self.reason = reason


class NodeError(BlasterError):
    """Base class for failures reported by (or while reaching) the RPC node."""
    pass


class NonceFetchError(NodeError):
    """The node's pending nonce for an address could not be read."""

    def __init__(self, address: str, cause: Optional[BaseException] = None):
        message = f"Could not fetch pending nonce for {address}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.address = address
        self.cause = cause


class ChainMismatchError(NodeError):
    """The node serves a different chain than the one configured."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Node reports chain id {actual}, expected {expected}")
        self.expected = expected
        self.actual = actual


class BroadcastError(NodeError):
    """The node rejected (or never answered) a raw transaction."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class NonceConflictError(BroadcastError):
    """Local nonce is stale or the transaction is already known to the node."""
    pass


class CongestionError(BroadcastError):
    """The node's transaction pool is temporarily full."""
    pass


# (pattern, replacement) applied to every log message and displayed error
_REDACTIONS = [
    (re.compile(r'(0x)?[a-f0-9]{64}(?![a-f0-9])', re.IGNORECASE), '[PRIVATE_KEY_REDACTED]'),
    (re.compile(r'private[_-]?keys?["\']?\s*[:=]\s*\S+', re.IGNORECASE), 'private_key=[REDACTED]'),
    (re.compile(r'password["\']?\s*[:=]\s*\S+', re.IGNORECASE), 'password=[REDACTED]'),
]


def redact(text) -> str:
    """Mask anything that looks like a private key or secret assignment."""
    text = text if isinstance(text, str) else str(text)
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class SecureLogger:
    """
    Logger wrapper that redacts secrets before a record is created.

    Keys travel through this process as plain hex strings; anything passed
    through here is scrubbed with redact() first.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _sanitize(self, msg) -> str:
        return redact(msg)

    def log(self, level: int, msg, *args, **kwargs):
        self._logger.log(level, redact(msg), *args, **kwargs)

    def debug(self, msg, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg, *args, **kwargs):
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, msg, *args, **kwargs)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = "./logs/blaster.log") -> SecureLogger:
    """
    Attach a Rich console handler (and optionally a plain-text file handler)
    to the `tx_blaster` logger and return it wrapped in a SecureLogger.

    Calling it again replaces the previous handlers.
    """
    base = logging.getLogger(LOGGER_NAME)
    console_level = logging.getLevelName(log_level.upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO

    for handler in list(base.handlers):
        base.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
    console_handler.setLevel(console_level)
    base.addHandler(console_handler)
    base.setLevel(console_level)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
        ))
        base.addHandler(file_handler)
        # The file always gets DEBUG, whatever the console shows
        base.setLevel(logging.DEBUG)

    return SecureLogger(base)


# Shared secure logger; handlers are attached by setup_logging()
logger = SecureLogger(logging.getLogger(LOGGER_NAME))


# Display helpers

def format_address(address: str, length: int = 6) -> str:
    """0x1234ab...cdef56 style shortening."""
    if len(address) <= 2 + 2 * length:
        return address
    return address[:2 + length] + "..." + address[-length:]


def format_tx_hash(tx_hash: str, length: int = 10) -> str:
    if len(tx_hash) <= 2 * length:
        return tx_hash
    return tx_hash[:length] + "..." + tx_hash[-length:]


def format_duration(seconds: float) -> str:
    """250ms, 4.20s, 3m 5s, 1h 2m."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    return f"{minutes}m {secs}s" if secs else f"{minutes}m"


# Input checks

def validate_private_key(key: str) -> bool:
    """32 bytes of hex, with or without the 0x prefix."""
    if not key or not is_hex(key):
        return False
    return len(remove_0x_prefix(key)) == 64


def validate_call_data(data: str) -> bool:
    """Call data must be 0x-prefixed hex with whole bytes."""
    if not isinstance(data, str) or not data.startswith("0x") or not is_hex(data):
        return False
    return len(remove_0x_prefix(data)) % 2 == 0


def sanitize_error_message(error) -> str:
    """Error text safe to print or store: secrets redacted, one line."""
    return " ".join(redact(error).split())
