"""Wallet boundary — who signs transactions and authorization entries.

The transactor never holds keys. It hands a built transaction to a
Wallet and gets a SignedTransaction back, or a WalletError saying why
not (``not_installed``, ``user_declined``).

Signatures are Ethereum personal-message signatures (eth_account) over
the transaction hash or the invocation digest.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_defunct

from zkmind.errors import WalletError
from zkmind.ledger.types import (
    AuthCredentials,
    AuthEntry,
    Invocation,
    SignedTransaction,
    Transaction,
)


@runtime_checkable
class Wallet(Protocol):

    @property
    def address(self) -> str:
        ...

    def sign(self, tx: Transaction) -> SignedTransaction:
        ...

    def authorize(self, invocation: Invocation) -> AuthEntry:
        """Sign an authorization entry for a call someone else submits."""
        ...


def _sign_digest(account, digest_hex: str) -> str:
    signed = account.sign_message(encode_defunct(primitive=bytes.fromhex(digest_hex)))
    return signed.signature.hex()


class LocalKeyWallet:
    """Holds a private key in process. For tests, tools and headless play."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)

    @classmethod
    def create(cls) -> LocalKeyWallet:
        return cls(Account.create().key.hex())

    @property
    def address(self) -> str:
        return self._account.address

    def sign(self, tx: Transaction) -> SignedTransaction:
        if tx.source.lower() != self.address.lower():
            raise WalletError(
                WalletError.USER_DECLINED,
                f"transaction source {tx.source} is not this wallet ({self.address})",
            )
        return SignedTransaction(
            transaction=tx,
            signer=self.address,
            signature=_sign_digest(self._account, tx.tx_hash),
        )

    def authorize(self, invocation: Invocation) -> AuthEntry:
        digest = invocation.digest()
        return AuthEntry(
            address=self.address,
            credentials=AuthCredentials.ADDRESS,
            invocation_digest=digest,
            signature=_sign_digest(self._account, digest),
        )

    def __repr__(self) -> str:
        return f"LocalKeyWallet({self.address})"


class ExternalWallet:
    """Delegates signing to a callback, e.g. a browser extension bridge.

    The callback receives the hex digest to sign and returns a hex
    signature, or None when the user declined. A wallet constructed
    without a callback behaves as one that is not installed.
    """

    def __init__(
        self,
        address: str,
        sign_digest: Optional[Callable[[str], Optional[str]]] = None,
    ) -> None:
        self._address = address
        self._sign_digest = sign_digest

    @property
    def address(self) -> str:
        return self._address

    def _signature(self, digest_hex: str) -> str:
        if self._sign_digest is None:
            raise WalletError(WalletError.NOT_INSTALLED, "no wallet extension available")
        signature = self._sign_digest(digest_hex)
        if not signature:
            raise WalletError(WalletError.USER_DECLINED, "signature request declined")
        return signature

    def sign(self, tx: Transaction) -> SignedTransaction:
        return SignedTransaction(
            transaction=tx, signer=self._address, signature=self._signature(tx.tx_hash),
        )

    def authorize(self, invocation: Invocation) -> AuthEntry:
        digest = invocation.digest()
        return AuthEntry(
            address=self._address,
            credentials=AuthCredentials.ADDRESS,
            invocation_digest=digest,
            signature=self._signature(digest),
        )
