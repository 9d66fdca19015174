"""
Per-Wallet Sender Loop
======================
Sends one wallet's quota of logical transactions strictly in sequence,
keeping a local nonce counter in step with the node's pending nonce.

For each logical transaction:
- success: nonce += 1, short pacing delay, next transaction
- nonce conflict: adopt the node's pending nonce and retry at once; this never
  uses the attempt budget (a separate resync budget stops a stale node from
  looping forever)
- congestion: wait, then retry the same nonce; uses its own budget
- anything else: consumes one attempt

A logical transaction that runs out of budget is counted failed once and the
local nonce is refreshed from the node before moving on.
"""

import asyncio
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, Optional

from eth_utils import to_checksum_address
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import BlastConfig
from logging_utils import StructuredLogger, get_event_logger, wallet_context
from utils import (
    logger,
    NonceFetchError,
    NonceConflictError,
    CongestionError,
    format_tx_hash,
    sanitize_error_message,
)
from wallet import BlastWallet

from .node import NodeClient


Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class TransactionRequest:
    """One EIP-1559 call to the target; built fresh for every attempt."""
    to: str
    nonce: int
    chain_id: int
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    data: str
    value: int = 0

    @classmethod
    def build(cls, config: BlastConfig, nonce: int) -> "TransactionRequest":
        return cls(
            to=config.target,
            nonce=nonce,
            chain_id=config.chain_id,
            gas=config.gas_limit,
            max_fee_per_gas=config.max_fee_wei,
            max_priority_fee_per_gas=config.priority_fee_wei,
            data=config.call_data,
        )

    def to_tx_params(self) -> Dict[str, Any]:
        return {
            "type": 2,
            "to": to_checksum_address(self.to),
            "value": self.value,
            "gas": self.gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "nonce": self.nonce,
            "chainId": self.chain_id,
            "data": self.data,
        }


@dataclass
class WalletResult:
    """Outcome of one sender loop."""
    wallet_id: int
    address: str
    quota: int
    initial_nonce: int
    successful: int = 0
    failed: int = 0
    final_nonce: Optional[int] = None
    attempts: int = 0
    nonce_resyncs: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WalletSender:
    """Runs the send/retry state machine for one wallet."""

    def __init__(
        self,
        wallet: BlastWallet,
        quota: int,
        initial_nonce: int,
        config: BlastConfig,
        node: NodeClient,
        sleep: Sleep = asyncio.sleep,
        events: Optional[StructuredLogger] = None,
    ):
        self.wallet = wallet
        self.quota = quota
        self.config = config
        self.node = node
        self.nonce = initial_nonce
        self._sleep = sleep
        self.events = events or get_event_logger()
        self.result = WalletResult(
            wallet_id=wallet.wallet_id,
            address=wallet.address,
            quota=quota,
            initial_nonce=initial_nonce,
        )

    @property
    def label(self) -> str:
        return f"Wallet {self.wallet.wallet_id}"

    async def run(self) -> WalletResult:
        """Resolve every logical transaction of the quota (sent or abandoned)."""
        started = time.monotonic()

        with wallet_context(self.wallet.wallet_id):
            logger.info(
                f"{self.label} ({self.wallet.address}) starting with nonce {self.nonce} "
                f"for {self.quota} transactions."
            )

            for number in range(1, self.quota + 1):
                if await self._send_logical(number):
                    self.result.successful += 1
                    continue

                self.result.failed += 1
                self.events.warning("tx abandoned", number=number, nonce=self.nonce)
                await self._resync_after_failure(number)

            self.result.final_nonce = self.nonce
            self.result.duration_seconds = time.monotonic() - started
            logger.info(
                f"{self.label} ({self.wallet.address}) finished. "
                f"Successful: {self.result.successful}, Failed: {self.result.failed}"
            )

        return self.result

    async def _send_logical(self, number: int) -> bool:
        """Try one logical transaction until it is sent or out of budget."""
        config = self.config
        attempt = 0
        congestion_waits = 0
        resyncs = 0

        while attempt < config.max_retries:
            nonce = self.nonce
            try:
                tx_hash = await self._sign_and_broadcast(nonce)

            except NonceConflictError as e:
                resyncs += 1
                logger.warning(
                    f"{self.label}: nonce conflict on logical tx {number}/{self.quota} "
                    f"(nonce {nonce}, attempt {attempt + 1}): {sanitize_error_message(e)}"
                )
                if resyncs > config.max_nonce_resyncs:
                    logger.error(
                        f"{self.label}: logical tx {number} still conflicting after "
                        f"{config.max_nonce_resyncs} nonce resyncs. Transaction failed."
                    )
                    return False
                try:
                    await self._refresh_nonce()
                except NonceFetchError as fetch_error:
                    attempt += 1
                    logger.error(
                        f"{self.label}: could not resync nonce ({fetch_error}); keeping nonce {nonce} "
                        f"(attempt {attempt}/{config.max_retries})"
                    )
                continue

            except CongestionError as e:
                congestion_waits += 1
                if congestion_waits >= config.max_congestion_retries:
                    logger.error(
                        f"{self.label}: txpool still full after {congestion_waits} tries for "
                        f"logical tx {number} (nonce {nonce}). Transaction failed."
                    )
                    return False
                logger.warning(
                    f"{self.label}: txpool is full ({sanitize_error_message(e)}). Waiting "
                    f"{config.congestion_backoff_ms}ms before retrying nonce {nonce} "
                    f"(congestion retry {congestion_waits}/{config.max_congestion_retries - 1})"
                )
                await self._sleep(config.congestion_backoff_ms / 1000)
                continue

            except Exception as e:
                attempt += 1
                logger.warning(
                    f"{self.label}: error on attempt {attempt}/{config.max_retries} for logical tx "
                    f"{number}/{self.quota} (nonce {nonce}): {sanitize_error_message(e)}"
                )
                continue

            # Full hashes look like keys to the log sanitizer
            logger.info(
                f"{self.label}: transaction {number}/{self.quota} (nonce {nonce}) sent. "
                f"Hash: {format_tx_hash(tx_hash)}"
            )
            self.nonce = nonce + 1
            if config.inter_tx_delay_ms > 0:
                await self._sleep(config.inter_tx_delay_ms / 1000)
            return True

        logger.error(f"{self.label}: max retries reached for logical tx {number}. Transaction failed.")
        return False

    async def _sign_and_broadcast(self, nonce: int) -> str:
        request = TransactionRequest.build(self.config, nonce)
        self.result.attempts += 1

        with self.events.timed_operation("broadcast", nonce=nonce) as metric:
            signed = self.wallet.sign(request)
            metric.tx_hash = await self.node.broadcast(signed.raw_transaction)

        return metric.tx_hash

    async def _refresh_nonce(self) -> int:
        """
        Adopt the node's pending nonce.

        Raises:
            NonceFetchError: If every refresh attempt failed
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.nonce_refresh_attempts),
            wait=wait_exponential(multiplier=0.25, max=2),
            retry=retry_if_exception_type(NonceFetchError),
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                with self.events.timed_operation("nonce_fetch"):
                    fresh = await self.node.fetch_pending_nonce(self.wallet.address)

        logger.info(f"{self.label}: old nonce {self.nonce}, node pending nonce {fresh}. Adjusting.")
        self.nonce = fresh
        self.result.nonce_resyncs += 1
        return fresh

    async def _resync_after_failure(self, number: int):
        try:
            await self._refresh_nonce()
        except NonceFetchError as e:
            logger.error(
                f"{self.label}: could not refresh nonce after failed tx {number} ({e}); "
                f"continuing with nonce {self.nonce}"
            )
