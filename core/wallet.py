"""Wallet identities backed by ``eth_account`` signing keys.

A :class:`WalletIdentity` is the unit the bot automates: one address and
the key that signs its protocol challenges.  Identities are immutable
once constructed and owned by exactly one node session.
"""

import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from core.config import WalletRecord
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class WalletIdentity:
    """Signing keypair plus its derived address.

    Signatures are EIP-191 personal-message signatures over the exact
    challenge string supplied by the caller, returned ``0x``-prefixed.
    """

    __slots__ = ("_account",)

    def __init__(self, private_key: Optional[str]) -> None:
        """
        Args:
            private_key: Hex signing key, with or without ``0x``.

        Raises:
            ConfigurationError: If the key is missing or malformed.
        """
        if not private_key or not str(private_key).strip():
            raise ConfigurationError("Wallet private key is missing")
        try:
            account = Account.from_key(str(private_key).strip())
        except Exception as exc:
            raise ConfigurationError(f"Invalid wallet private key: {exc}") from exc
        object.__setattr__(self, "_account", account)

    def __setattr__(self, name, value):
        raise AttributeError("WalletIdentity is immutable")

    def __repr__(self) -> str:
        return f"WalletIdentity(address={self.address!r})"

    @classmethod
    def generate(cls) -> "WalletIdentity":
        """Create a fresh identity from a newly generated random key."""
        account = Account.create()
        return cls(account.key.hex())

    @classmethod
    def from_record(cls, record: WalletRecord) -> "WalletIdentity":
        """Build an identity from a supplied wallet record.

        Raises:
            ConfigurationError: If the record's declared address does not
                match the address derived from its key.
        """
        identity = cls(record.private_key)
        if record.address and record.address.lower() != identity.address.lower():
            raise ConfigurationError(
                f"Declared address {record.address} does not match "
                f"key-derived address {identity.address}"
            )
        return identity

    @property
    def address(self) -> str:
        """Checksummed address derived from the key."""
        return self._account.address

    def export_key(self) -> str:
        """Return the private key as ``0x``-prefixed hex (for wallet files)."""
        key = self._account.key.hex()
        return key if key.startswith("0x") else f"0x{key}"

    def to_record(self) -> WalletRecord:
        return WalletRecord(address=self.address, private_key=self.export_key())

    def sign(self, message: str) -> str:
        """Sign *message* and return the ``0x``-prefixed hex signature.

        Raises:
            ConfigurationError: If signing fails.  A signed call must never
                be skipped silently, so this is not a retryable error.
        """
        try:
            signed = self._account.sign_message(encode_defunct(text=message))
        except Exception as exc:
            raise ConfigurationError(
                f"Signing failed for {self.address}: {exc}"
            ) from exc
        signature = signed.signature.hex()
        return signature if signature.startswith("0x") else f"0x{signature}"
