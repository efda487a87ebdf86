"""
Signing capability.

Anything that can sign typed data and EIP-191 messages for a fixed address
satisfies ``Signer``. ``LocalSigner`` wraps a private key via eth_account.
"""

from typing import Any, Dict, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data

from ..errors import SigningError


@runtime_checkable
class Signer(Protocol):
    """Capability to sign on behalf of one address."""

    @property
    def address(self) -> str: ...

    def sign_typed_data(self, full_message: Dict[str, Any]) -> str:
        """Sign an EIP-712 document and return the 0x-prefixed 65-byte signature."""
        ...

    def sign_message_bytes(self, message: bytes) -> str:
        """Sign raw bytes with the EIP-191 personal-message prefix."""
        ...

    def sign_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign an EIP-1559 transaction and return the raw 0x-prefixed payload."""
        ...


class LocalSigner:
    """Private-key backed signer."""

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as exc:
            raise SigningError("Malformed private key") from exc

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(self, full_message: Dict[str, Any]) -> str:
        try:
            signable = encode_typed_data(full_message=full_message)
            signed = self._account.sign_message(signable)
        except (ValueError, TypeError, KeyError) as exc:
            raise SigningError(f"Could not sign typed data: {exc}") from exc
        return _hex(signed.signature)

    def sign_message_bytes(self, message: bytes) -> str:
        signed = self._account.sign_message(encode_defunct(primitive=message))
        return _hex(signed.signature)

    def sign_transaction(self, tx: Dict[str, Any]) -> str:
        try:
            signed = self._account.sign_transaction(tx)
        except (ValueError, TypeError) as exc:
            raise SigningError(f"Could not sign transaction: {exc}") from exc
        return _hex(signed.raw_transaction)

    def __repr__(self) -> str:
        return f"LocalSigner({self.address})"


def _hex(value: bytes) -> str:
    text = value.hex()
    return text if text.startswith("0x") else "0x" + text
