"""Split a total transaction count across wallets."""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from utils import ConfigurationError
from wallet import BlastWallet


@dataclass(frozen=True)
class Assignment:
    """One wallet's share of the run."""
    wallet: BlastWallet
    quota: int
    initial_nonce: int

    @property
    def wallet_id(self) -> int:
        return self.wallet.wallet_id


def compute_quotas(total: int, count: int) -> List[int]:
    """
    Even split of `total` over `count` slots.

    Every slot gets total // count; the first total % count slots get one
    more. An empty list is returned when there are no slots.
    """
    if total < 0:
        raise ConfigurationError(f"Total transaction count cannot be negative, got {total}")
    if count <= 0:
        return []

    base, remainder = divmod(total, count)
    return [base + 1 if i < remainder else base for i in range(count)]


def build_plan(total: int, entries: Sequence[Tuple[BlastWallet, int]]) -> List[Assignment]:
    """
    Assign quotas to wallets that produced a starting nonce.

    Args:
        total: Logical transactions to dispatch
        entries: (wallet, initial_nonce) pairs in input order

    Returns:
        Assignments with a non-zero quota, in input order
    """
    quotas = compute_quotas(total, len(entries))
    return [
        Assignment(wallet=wallet, quota=quota, initial_nonce=nonce)
        for (wallet, nonce), quota in zip(entries, quotas)
        if quota > 0
    ]
