"""
Signing engine.

Builds and signs EIP-712 forward requests for the meta-transaction
forwarder, and produces the trusted verifier's claim authorizations.

Two forwarder layouts are deployed:

- ``SednForwarder`` 0.0.2: domain {name, version, verifyingContract};
  the request carries ``chainid`` and a ``valid`` (valid-until) timestamp.
- ``MinimalForwarder`` 0.0.1: domain {name, version, chainId,
  verifyingContract}; no chain id or validity in the request.

Claim authorizations are not EIP-712: the verifier signs the
solidity-packed keccak of the claim fields with the EIP-191 prefix.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple

from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_utils import keccak, to_checksum_address

from ..errors import SignatureMismatchError, SigningError
from ..networks import ForwarderSchema
from .contracts import ForwarderContract
from .models import SignedRequest
from .signer import Signer

logger = logging.getLogger(__name__)

META_TX_GAS = 1_000_000

FORWARD_REQUEST_FIELDS: Dict[ForwarderSchema, List[Dict[str, str]]] = {
    ForwarderSchema.SEDN_FORWARDER: [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "chainid", "type": "uint256"},
        {"name": "value", "type": "uint256"},
        {"name": "gas", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "valid", "type": "uint256"},
        {"name": "data", "type": "bytes"},
    ],
    ForwarderSchema.MINIMAL_FORWARDER: [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "gas", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "data", "type": "bytes"},
    ],
}

DOMAIN_FIELDS: Dict[ForwarderSchema, List[Dict[str, str]]] = {
    ForwarderSchema.SEDN_FORWARDER: [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "verifyingContract", "type": "address"},
    ],
    ForwarderSchema.MINIMAL_FORWARDER: [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
}


def forward_request_types(schema: ForwarderSchema) -> Tuple[str, ...]:
    """Solidity field types of the ForwardRequest struct, in order."""
    return tuple(f["type"] for f in FORWARD_REQUEST_FIELDS[schema])


def build_domain(schema: ForwarderSchema, forwarder_address: str, chain_id: int) -> Dict[str, Any]:
    verifying = to_checksum_address(forwarder_address)
    if schema is ForwarderSchema.SEDN_FORWARDER:
        return {"name": "SednForwarder", "version": "0.0.2", "verifyingContract": verifying}
    return {"name": "MinimalForwarder", "version": "0.0.1", "chainId": chain_id, "verifyingContract": verifying}


def build_typed_data(
    schema: ForwarderSchema,
    forwarder_address: str,
    *,
    from_address: str,
    to: str,
    chain_id: int,
    nonce: int,
    data: str,
    value: int = 0,
    gas: int = META_TX_GAS,
    valid_until: int = 0,
) -> Dict[str, Any]:
    """Assemble the full EIP-712 document for a forward request."""
    message: Dict[str, Any] = {
        "from": to_checksum_address(from_address),
        "to": to_checksum_address(to),
    }
    if schema is ForwarderSchema.SEDN_FORWARDER:
        message["chainid"] = chain_id
    message["value"] = value
    message["gas"] = gas
    message["nonce"] = nonce
    if schema is ForwarderSchema.SEDN_FORWARDER:
        message["valid"] = valid_until
    message["data"] = data

    return {
        "types": {
            "EIP712Domain": DOMAIN_FIELDS[schema],
            "ForwardRequest": FORWARD_REQUEST_FIELDS[schema],
        },
        "domain": build_domain(schema, forwarder_address, chain_id),
        "primaryType": "ForwardRequest",
        "message": message,
    }


async def build_meta_tx_request(
    forwarder: ForwarderContract,
    signer: Signer,
    *,
    to: str,
    chain_id: int,
    data: str,
    schema: ForwarderSchema,
    value: int = 0,
    valid_until: int = 0,
    gas: int = META_TX_GAS,
    nonce_offset: int = 0,
) -> SignedRequest:
    """
    Read the forwarder nonce, sign a ForwardRequest, and self-verify it.

    The nonce is read from the forwarder on every call. Two requests signed
    against the same nonce cannot both execute, so callers serialize
    signing per (signer, chain). ``nonce_offset`` is only for
    batches handed to a relayer that executes them in order.

    Raises:
        ConfigurationError: The forwarder did not answer getNonce.
        SigningError: The signer failed.
        SignatureMismatchError: The signature does not recover to the signer.
    """
    nonce = await forwarder.get_nonce(signer.address) + nonce_offset
    typed = build_typed_data(
        schema,
        forwarder.address,
        from_address=signer.address,
        to=to,
        chain_id=chain_id,
        nonce=nonce,
        data=data,
        value=value,
        gas=gas,
        valid_until=valid_until,
    )
    signature = signer.sign_typed_data(typed)

    request = SignedRequest(
        domain=typed["domain"],
        types=typed["types"],
        primary_type=typed["primaryType"],
        message=typed["message"],
        signature=signature,
        schema=schema,
    )

    recovered = recover_signer(request)
    if recovered.lower() != signer.address.lower():
        raise SignatureMismatchError(signer.address, recovered, chain_id=chain_id)

    logger.debug("Signed forward request from=%s nonce=%s chain=%s", signer.address, nonce, chain_id)
    return request


def recover_signer(request: SignedRequest) -> str:
    """Recover the address that produced ``request.signature``."""
    try:
        signable = encode_typed_data(full_message=request.typed_data())
        return Account.recover_message(signable, signature=request.signature)
    except (ValueError, TypeError) as exc:
        raise SigningError(f"Could not recover signer: {exc}") from exc


# ---------------------------------------------------------------------------
# Claim authorizations
# ---------------------------------------------------------------------------


class ClaimHashLayout(str, Enum):
    """Packed field layout of the verifier's claim hash."""

    # keccak(abi.encodePacked(amount, receiver, till, secret, nonce))
    AMOUNT_NONCE = "amount-nonce"
    # keccak(abi.encodePacked(receiver, till, secret))
    RECEIVER_ONLY = "receiver-only"


@dataclass
class ClaimAuthorization:
    """Verifier signature authorizing ``receiver_address`` to claim ``secret``."""
    amount: int
    receiver_address: str
    valid_until: int
    secret: str
    nonce: int
    v: int
    r: str
    s: str
    signature: str
    layout: ClaimHashLayout = ClaimHashLayout.AMOUNT_NONCE

    def is_expired(self, now: int) -> bool:
        return now >= self.valid_until


def claim_message_hash(
    layout: ClaimHashLayout,
    *,
    receiver_address: str,
    valid_until: int,
    secret: str,
    amount: int = 0,
    nonce: int = 0,
) -> bytes:
    secret_bytes = _bytes32(secret)
    receiver = to_checksum_address(receiver_address)
    if layout is ClaimHashLayout.AMOUNT_NONCE:
        packed = encode_packed(
            ["uint256", "address", "uint256", "bytes32", "uint256"],
            [amount, receiver, valid_until, secret_bytes, nonce],
        )
    else:
        packed = encode_packed(["address", "uint256", "bytes32"], [receiver, valid_until, secret_bytes])
    return keccak(packed)


def split_signature(signature: str) -> Tuple[int, str, str]:
    """Split a 65-byte signature into (v, r, s)."""
    raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    if len(raw) != 65:
        raise SigningError(f"Expected a 65-byte signature, got {len(raw)} bytes")
    v = raw[64]
    if v < 27:
        v += 27
    return v, "0x" + raw[:32].hex(), "0x" + raw[32:64].hex()


def sign_claim_authorization(
    verifier: Signer,
    *,
    receiver_address: str,
    valid_until: int,
    secret: str,
    amount: int = 0,
    nonce: int = 0,
    layout: ClaimHashLayout = ClaimHashLayout.AMOUNT_NONCE,
) -> ClaimAuthorization:
    """Sign a claim authorization as the trusted verifier."""
    digest = claim_message_hash(
        layout,
        receiver_address=receiver_address,
        valid_until=valid_until,
        secret=secret,
        amount=amount,
        nonce=nonce,
    )
    signature = verifier.sign_message_bytes(digest)
    v, r, s = split_signature(signature)
    return ClaimAuthorization(
        amount=amount,
        receiver_address=to_checksum_address(receiver_address),
        valid_until=valid_until,
        secret=secret,
        nonce=nonce,
        v=v,
        r=r,
        s=s,
        signature=signature,
        layout=layout,
    )


def recover_claim_signer(authorization: ClaimAuthorization) -> str:
    digest = claim_message_hash(
        authorization.layout,
        receiver_address=authorization.receiver_address,
        valid_until=authorization.valid_until,
        secret=authorization.secret,
        amount=authorization.amount,
        nonce=authorization.nonce,
    )
    return Account.recover_message(encode_defunct(primitive=digest), signature=authorization.signature)


def _bytes32(value: str) -> bytes:
    raw = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if len(raw) != 32:
        raise SigningError(f"Expected 32-byte secret, got {len(raw)} bytes")
    return raw

