"""
Transaction Blaster
===================
Fires a fixed number of identical contract calls from a pool of wallets.

- Even distribution of the total across wallets
- One sequential sender loop per wallet, all wallets concurrent
- Local nonce tracking resynchronized from the node on conflicts
- Retry budgets for congestion and generic broadcast failures
"""

from .node import NodeClient, Web3NodeClient, classify_broadcast_error
from .planner import Assignment, build_plan, compute_quotas
from .sender import TransactionRequest, WalletResult, WalletSender
from .report import ExcludedWallet, LoopFailure, RunSummary, print_summary
from .orchestrator import BlastOrchestrator

__all__ = [
    "NodeClient",
    "Web3NodeClient",
    "classify_broadcast_error",
    "Assignment",
    "build_plan",
    "compute_quotas",
    "TransactionRequest",
    "WalletResult",
    "WalletSender",
    "ExcludedWallet",
    "LoopFailure",
    "RunSummary",
    "print_summary",
    "BlastOrchestrator",
]

__version__ = "1.0.0"
