"""
Wallet Module
=============
Signing wallets built from the externally supplied private keys.

A BlastWallet is immutable for the run: its position in the key list is the
stable id used in logs and results, and the key itself is held only inside
the eth_account LocalAccount.
"""

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount

from utils import logger, WalletConstructionError, format_address, validate_private_key


@dataclass(frozen=True)
class BlastWallet:
    """Address plus signing capability for one key."""
    wallet_id: int
    address: str
    account: LocalAccount = field(repr=False, compare=False)

    @classmethod
    def from_key(cls, wallet_id: int, private_key: str) -> "BlastWallet":
        """
        Build a wallet from a hex private key.

        Raises:
            WalletConstructionError: If the key is malformed
        """
        if not validate_private_key(private_key):
            raise WalletConstructionError(wallet_id, "expected 32 bytes of hex")
        try:
            account = Account.from_key(private_key)
        except Exception as e:
            raise WalletConstructionError(wallet_id, type(e).__name__) from e
        return cls(wallet_id=wallet_id, address=account.address, account=account)

    def sign(self, request):
        """
        Sign a transaction request.

        Args:
            request: TransactionRequest (anything with to_tx_params())

        Returns:
            eth_account SignedTransaction; broadcast its raw_transaction
        """
        return self.account.sign_transaction(request.to_tx_params())

    def __str__(self) -> str:
        return f"Wallet {self.wallet_id} ({format_address(self.address)})"


def load_wallets(private_keys: Sequence[str]) -> Tuple[List[BlastWallet], List[WalletConstructionError]]:
    """
    Build one wallet per key, skipping malformed keys.

    Wallet ids are positions in `private_keys`, so they stay stable when
    earlier keys are rejected.

    Returns:
        (wallets, errors) in key order
    """
    wallets: List[BlastWallet] = []
    errors: List[WalletConstructionError] = []
    seen = set()

    for position, key in enumerate(private_keys):
        try:
            wallet = BlastWallet.from_key(position, key)
        except WalletConstructionError as e:
            logger.error(f"{e}. Skipping it.")
            errors.append(e)
            continue

        if wallet.address in seen:
            logger.warning(f"Key at position {position} duplicates {format_address(wallet.address)}. Skipping it.")
            errors.append(WalletConstructionError(position, "duplicate key"))
            continue

        seen.add(wallet.address)
        wallets.append(wallet)

    if errors:
        logger.warning(f"{len(errors)} of {len(private_keys)} private keys were rejected")

    return wallets, errors
