"""
Node Client
===========
Everything the blaster needs from the chain node: chain id, the "pending"
nonce of an address, and raw transaction broadcast. Broadcast rejections are
classified here so the sender loop only ever sees NonceConflictError,
CongestionError or a generic BroadcastError.
"""

from typing import Optional, Tuple

from aiohttp import ClientTimeout
from eth_utils import keccak
from web3 import AsyncWeb3, Web3

from utils import (
    logger,
    NodeError,
    NonceFetchError,
    BroadcastError,
    NonceConflictError,
    CongestionError,
)


# Rejections meaning "this nonce is already taken or the tx is already pooled"
NONCE_CONFLICT_CODES = {"NONCE_EXPIRED"}
NONCE_CONFLICT_MARKERS = (
    "nonce too low",
    "already known",
    "known transaction",
    "nonce has already been used",
)

# Rejections meaning "the pool is full, try the same tx again later"
CONGESTION_MARKERS = (
    "txpool is full",
    "transaction pool is full",
)


def _extract_rpc_error(exc: BaseException) -> Tuple[Optional[object], str]:
    """Pull (code, message) out of the shapes web3 uses for RPC errors."""
    rpc_response = getattr(exc, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        error = rpc_response["error"]
        return error.get("code"), str(error.get("message", ""))

    if exc.args and isinstance(exc.args[0], dict):
        error = exc.args[0]
        return error.get("code"), str(error.get("message", ""))

    return getattr(exc, "code", None), str(exc)


def classify_broadcast_error(exc: BaseException) -> BroadcastError:
    """
    Map a raw broadcast failure onto the blaster's error classes.

    Args:
        exc: Whatever send_raw_transaction raised

    Returns:
        NonceConflictError, CongestionError or BroadcastError
    """
    if isinstance(exc, BroadcastError):
        return exc

    code, message = _extract_rpc_error(exc)
    message = message or type(exc).__name__
    lowered = message.lower()

    if code in NONCE_CONFLICT_CODES or any(marker in lowered for marker in NONCE_CONFLICT_MARKERS):
        return NonceConflictError(message, code)
    if any(marker in lowered for marker in CONGESTION_MARKERS):
        return CongestionError(message, code)
    return BroadcastError(message, code)


class NodeClient:
    """Interface the orchestrator and sender loops talk to."""

    async def get_chain_id(self) -> int:
        raise NotImplementedError

    async def fetch_pending_nonce(self, address: str) -> int:
        """Transaction count of `address` including pending transactions."""
        raise NotImplementedError

    async def broadcast(self, raw_transaction: bytes) -> str:
        """Submit a signed transaction and return its 0x hash."""
        raise NotImplementedError

    async def close(self):
        pass


class Web3NodeClient(NodeClient):
    """
    NodeClient backed by AsyncWeb3 over HTTP.

    One instance (and one HTTP session) is shared by every wallet; requests
    from different wallets are not coordinated or rate limited.
    """

    def __init__(self, rpc_url: str, request_timeout: int = 30, dry_run: bool = False):
        self.rpc_url = rpc_url
        self.dry_run = dry_run
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": ClientTimeout(total=request_timeout)}
        ))

    async def get_chain_id(self) -> int:
        try:
            return int(await self.w3.eth.chain_id)
        except Exception as e:
            raise NodeError(f"Could not reach {self.rpc_url}: {e}") from e

    async def fetch_pending_nonce(self, address: str) -> int:
        try:
            return int(await self.w3.eth.get_transaction_count(address, "pending"))
        except Exception as e:
            raise NonceFetchError(address, e) from e

    async def broadcast(self, raw_transaction: bytes) -> str:
        if self.dry_run:
            # Typed transaction hash is keccak of the signed envelope
            return Web3.to_hex(keccak(raw_transaction))

        try:
            tx_hash = await self.w3.eth.send_raw_transaction(raw_transaction)
        except Exception as e:
            raise classify_broadcast_error(e) from e
        return Web3.to_hex(tx_hash)

    async def close(self):
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.debug(f"Error closing RPC session: {e}")
