"""
Calldata encoding for the Sedn, token, forwarder and bridge registry contracts.
"""

from typing import Any, Dict, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.grammar import parse as parse_abi_type
from eth_utils import keccak, to_checksum_address

from .models import ContractMethod


# Socket registry user request: (receiver, toChainId, amount, middlewareRequest, bridgeRequest)
MIDDLEWARE_REQUEST_TYPE = "(uint256,uint256,address,bytes)"
USER_REQUEST_TYPE = f"(address,uint256,uint256,{MIDDLEWARE_REQUEST_TYPE},{MIDDLEWARE_REQUEST_TYPE})"

METHOD_SIGNATURES: Dict[ContractMethod, Tuple[str, ...]] = {
    ContractMethod.INCREASE_ALLOWANCE: ("address", "uint256"),
    ContractMethod.TOKEN_TRANSFER: ("address", "uint256"),
    ContractMethod.SEDN_KNOWN: ("uint256", "address"),
    ContractMethod.SEDN_UNKNOWN: ("uint256", "bytes32"),
    ContractMethod.TRANSFER_KNOWN: ("uint256", "address"),
    ContractMethod.TRANSFER_UNKNOWN: ("uint256", "bytes32"),
    ContractMethod.HYBRID_KNOWN: ("uint256", "uint256", "address"),
    ContractMethod.HYBRID_UNKNOWN: ("uint256", "uint256", "bytes32"),
    ContractMethod.WITHDRAW: ("uint256", "address"),
    ContractMethod.BRIDGE_WITHDRAW: ("uint256", USER_REQUEST_TYPE, "address"),
    ContractMethod.CLAIM: ("string", "bytes32", "uint256", "uint8", "bytes32", "bytes32"),
    ContractMethod.BRIDGE_CLAIM: (
        "string", "bytes32", "uint256", "uint8", "bytes32", "bytes32", USER_REQUEST_TYPE, "address",
    ),
}

OUTBOUND_TRANSFER_TO = f"outboundTransferTo({USER_REQUEST_TYPE})"


def function_signature(name: str, types: Sequence[str]) -> str:
    return f"{name}({','.join(types)})"


def selector(signature: str) -> bytes:
    """First four bytes of keccak256(signature)."""
    return keccak(text=signature)[:4]


def encode_call(name: str, types: Sequence[str], args: Sequence[Any]) -> str:
    """ABI-encode a call and return 0x-prefixed calldata."""
    payload = selector(function_signature(name, types)) + abi_encode(list(types), [_coerce(t, a) for t, a in zip(types, args)])
    return "0x" + payload.hex()


def encode_method(method: ContractMethod, args: Dict[str, Any]) -> str:
    """Encode a descriptor's method and ordered named args."""
    types = METHOD_SIGNATURES[method]
    values = list(args.values())
    if len(values) != len(types):
        raise ValueError(f"{method.value} expects {len(types)} args, got {len(values)}")
    return encode_call(method.value, types, values)


def decode_result(types: Sequence[str], data: str) -> Tuple[Any, ...]:
    raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    return abi_decode(list(types), raw)


def decode_outbound_transfer(tx_data: str) -> Tuple[Any, ...]:
    """Decode ``outboundTransferTo`` calldata into its user request tuple."""
    raw = bytes.fromhex(tx_data[2:] if tx_data.startswith("0x") else tx_data)
    expected = selector(OUTBOUND_TRANSFER_TO)
    if raw[:4] != expected:
        raise ValueError(f"Calldata is not outboundTransferTo (selector 0x{raw[:4].hex()})")
    (user_request,) = abi_decode([USER_REQUEST_TYPE], raw[4:])
    return user_request


def _coerce(abi_type: str, value: Any) -> Any:
    """Convert JSON-ish values (hex strings, decimal strings) into eth_abi inputs."""
    if abi_type.startswith("(") and isinstance(value, (list, tuple)):
        inner = [component.to_type_str() for component in parse_abi_type(abi_type).components]
        return tuple(_coerce(t, v) for t, v in zip(inner, value))
    if abi_type == "address":
        return to_checksum_address(value)
    if abi_type.startswith("uint") or abi_type.startswith("int"):
        if isinstance(value, str):
            return int(value, 16) if value.startswith("0x") else int(value)
        return int(value)
    if abi_type.startswith("bytes") and isinstance(value, str):
        raw = bytes.fromhex(value[2:] if value.startswith("0x") else value)
        if abi_type != "bytes":
            size = int(abi_type[5:])
            if len(raw) != size:
                raise ValueError(f"{abi_type} value has {len(raw)} bytes")
        return raw
    return value
