"""
Blast Orchestrator
==================
Drives one run: verify the node, fetch every wallet's starting nonce
concurrently, plan the distribution, fan out one sender loop per wallet and
wait for all of them to settle before aggregating the results.
"""

import asyncio
import time
from typing import List, Optional, Sequence, Tuple

from config import BlastConfig
from logging_utils import StructuredLogger, get_event_logger, wallet_context
from utils import logger, ChainMismatchError, WalletConstructionError
from wallet import BlastWallet

from .node import NodeClient
from .planner import Assignment, build_plan
from .report import ExcludedWallet, LoopFailure, RunSummary
from .sender import Sleep, WalletResult, WalletSender


class BlastOrchestrator:
    """
    Runs every wallet's sender loop concurrently on one event loop.

    Args:
        config: Immutable run configuration
        node: Node client shared by all wallets
        wallets: Wallets that were built successfully, in key order
        key_errors: Keys rejected while building wallets (reported only)
        sleep: Awaitable delay, replaceable in tests
        events: Structured event logger / metrics sink
    """

    def __init__(
        self,
        config: BlastConfig,
        node: NodeClient,
        wallets: Sequence[BlastWallet],
        key_errors: Sequence[WalletConstructionError] = (),
        sleep: Sleep = asyncio.sleep,
        events: Optional[StructuredLogger] = None,
    ):
        self.config = config
        self.node = node
        self.wallets = list(wallets)
        self.key_errors = list(key_errors)
        self._sleep = sleep
        self.events = events or get_event_logger()

    async def preflight(self):
        """Make sure the node serves the configured chain."""
        chain_id = await self.node.get_chain_id()
        if chain_id != self.config.chain_id:
            raise ChainMismatchError(self.config.chain_id, chain_id)
        logger.info(f"Connected to chain {chain_id}")

    async def _fetch_nonce(self, wallet: BlastWallet) -> int:
        with wallet_context(wallet.wallet_id):
            with self.events.timed_operation("nonce_fetch"):
                return await self.node.fetch_pending_nonce(wallet.address)

    async def fetch_initial_nonces(self) -> Tuple[List[Tuple[BlastWallet, int]], List[ExcludedWallet]]:
        """
        Fetch every wallet's pending nonce at once.

        Returns:
            ((wallet, nonce) pairs in key order, wallets whose fetch failed)
        """
        outcomes = await asyncio.gather(
            *(self._fetch_nonce(wallet) for wallet in self.wallets),
            return_exceptions=True
        )

        entries: List[Tuple[BlastWallet, int]] = []
        excluded: List[ExcludedWallet] = []
        for wallet, outcome in zip(self.wallets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"{wallet}: could not fetch initial nonce: {outcome}. Excluding it from this run.")
                excluded.append(ExcludedWallet(
                    wallet_id=wallet.wallet_id,
                    stage="nonce",
                    reason=str(outcome),
                    address=wallet.address,
                ))
                continue

            logger.info(f"{wallet} initial nonce: {outcome}")
            entries.append((wallet, outcome))

        return entries, excluded

    async def _run_sender(self, assignment: Assignment, position: int) -> WalletResult:
        stagger_ms = self.config.inter_wallet_start_delay_ms
        if stagger_ms > 0 and position > 0:
            await self._sleep(stagger_ms * position / 1000)

        sender = WalletSender(
            wallet=assignment.wallet,
            quota=assignment.quota,
            initial_nonce=assignment.initial_nonce,
            config=self.config,
            node=self.node,
            sleep=self._sleep,
            events=self.events,
        )
        return await sender.run()

    def _log_plan(self, plan: List[Assignment], processable: int):
        base, remainder = divmod(self.config.total_tx, processable)
        logger.info(f"Distributing {self.config.total_tx} transactions across {processable} wallets.")
        logger.info(f"Base transactions per wallet: {base}")
        if remainder > 0:
            logger.info(f"{remainder} wallets will handle one extra transaction.")
        skipped = processable - len(plan)
        if skipped:
            logger.info(f"{skipped} wallets have no transactions assigned and are skipped.")

    async def run(self) -> RunSummary:
        """Execute the whole run; never raises for per-wallet failures."""
        config = self.config
        summary = RunSummary(total_requested=config.total_tx, dry_run=config.dry_run)
        summary.excluded.extend(
            ExcludedWallet(wallet_id=e.position, stage="key", reason=e.reason) for e in self.key_errors
        )
        started = time.monotonic()

        try:
            if not self.wallets:
                if config.total_tx > 0:
                    summary.halt_reason = "No valid wallets could be created from the provided private keys."
                    logger.error(summary.halt_reason)
                    self.events.error("run halted", reason=summary.halt_reason)
                return summary

            await self.preflight()

            entries, excluded = await self.fetch_initial_nonces()
            summary.excluded.extend(excluded)

            plan = build_plan(config.total_tx, entries)
            if not plan:
                if config.total_tx > 0:
                    summary.halt_reason = "No wallet produced a starting nonce; nothing was dispatched."
                    logger.error(summary.halt_reason)
                    self.events.error("run halted", reason=summary.halt_reason)
                else:
                    logger.warning("No transactions were assigned to any wallets (total is 0).")
                return summary

            self._log_plan(plan, len(entries))
            logger.info(f"Starting transaction processing for all {len(plan)} active wallets...")

            outcomes = await asyncio.gather(
                *(self._run_sender(assignment, position) for position, assignment in enumerate(plan)),
                return_exceptions=True
            )

            for assignment, outcome in zip(plan, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        f"{assignment.wallet}: sender loop failed to complete "
                        f"({type(outcome).__name__}: {outcome}); its {assignment.quota} transactions are unaccounted for."
                    )
                    summary.loop_failures.append(LoopFailure(
                        wallet_id=assignment.wallet_id,
                        address=assignment.wallet.address,
                        quota=assignment.quota,
                        error=f"{type(outcome).__name__}: {outcome}",
                    ))
                    continue
                summary.results.append(outcome)

            summary.dispatched = sum(a.quota for a in plan)
            self.events.info("run finished", dispatched=summary.dispatched,
                             successful=summary.successful, failed=summary.failed,
                             loop_failures=len(summary.loop_failures))
            return summary

        finally:
            summary.duration_seconds = time.monotonic() - started
