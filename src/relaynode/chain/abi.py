"""
Minimal Ethereum contract ABI codec for the reward contract.

Only the shapes the reward contract needs are supported: static ``uint256``,
``address`` and ``bytes32`` parameters, optionally followed by a single
trailing dynamic ``bytes32[]``. Everything here is pure and deterministic.

NOTE: Keccak-256 != SHA3-256 (NIST). Never use hashlib.sha3_256 here.
"""

from __future__ import annotations

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence, Union

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_hash.auto import keccak

WORD_SIZE = 32
UINT256_MAX = 2**256 - 1

CLAIM_REWARD_SIGNATURE = "claimReward(uint256,uint256,bytes32[])"
CLAIMED_SIGNATURE = "claimed(uint256,address)"

# Default ABI for the reward contract
REWARD_CONTRACT_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "epoch", "type": "uint256"},
            {"name": "amount", "type": "uint256"},
            {"name": "proof", "type": "bytes32[]"},
        ],
        "name": "claimReward",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "epoch", "type": "uint256"},
            {"name": "recipient", "type": "address"},
        ],
        "name": "claimed",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")
_SIGNATURE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\(([^()]*)\)$")
_STATIC_TYPES = ("uint256", "address", "bytes32")
_DYNAMIC_TYPE = "bytes32[]"

HexLike = Union[str, bytes]


def keccak256(data: bytes) -> bytes:
    """Compute the Keccak-256 digest (original padding, as used by the EVM)."""
    return keccak(data)


def strip_0x(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def _hex_body(value: HexLike) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    body = strip_0x(str(value))
    if not _HEX_RE.match(body):
        raise ValueError(f"Not a hex string: {value!r}")
    if len(body) % 2:
        body = "0" + body
    return body.lower()


def selector(signature: str) -> bytes:
    """First 4 bytes of keccak256 of the canonical function signature."""
    return keccak256(signature.encode("utf-8"))[:4]


def encode_uint256(value: int) -> str:
    """Big-endian, left-zero-padded to 32 bytes. Returns 64 hex chars."""
    value = int(value)
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "064x")


def encode_address(address: str) -> str:
    """20-byte address right-aligned in a 32-byte word, lowercase, no prefix."""
    body = strip_0x(str(address))
    if len(body) != 40 or not _HEX_RE.match(body):
        raise ValueError(f"Invalid address: {address!r}")
    return body.lower().rjust(64, "0")


def encode_bytes32(value: HexLike) -> str:
    """32-byte word; shorter values are left-padded with zeros."""
    body = _hex_body(value)
    if len(body) > 64:
        raise ValueError(f"bytes32 value longer than 32 bytes: {value!r}")
    return body.rjust(64, "0")


def encode_dynamic_bytes32_array(items: Sequence[HexLike], offset: int = 0x60) -> str:
    """
    Head offset word, then the tail: length word and elements in order.

    ``offset`` is the byte position of the tail relative to the start of the
    argument block; 0x60 for ``claimReward(uint256,uint256,bytes32[])``.
    """
    elements = "".join(encode_bytes32(item) for item in items)
    return encode_uint256(offset) + encode_uint256(len(items)) + elements


def parse_signature(signature: str) -> tuple[str, list[str]]:
    """Split ``name(type,...)`` into its name and parameter types."""
    match = _SIGNATURE_RE.match(signature.replace(" ", ""))
    if match is None:
        raise ValueError(f"Malformed function signature: {signature!r}")
    name, params = match.groups()
    types = [t for t in params.split(",") if t]
    return name, types


def _encode_static(abi_type: str, value: Any) -> str:
    if abi_type == "uint256":
        return encode_uint256(value)
    if abi_type == "address":
        return encode_address(value)
    return encode_bytes32(value)


def encode_call(signature: str, *args: Any) -> str:
    """
    ABI-encode a function call to 0x-prefixed calldata.

    Supports any number of leading static parameters (uint256, address,
    bytes32) optionally followed by one trailing ``bytes32[]``.
    """
    _, types = parse_signature(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} expects {len(types)} arguments, got {len(args)}")

    head = []
    for position, (abi_type, value) in enumerate(zip(types, args)):
        if abi_type == _DYNAMIC_TYPE:
            if position != len(types) - 1:
                raise ValueError("bytes32[] is only supported as the last parameter")
            head.append(encode_dynamic_bytes32_array(value, offset=WORD_SIZE * len(types)))
        elif abi_type in _STATIC_TYPES:
            head.append(_encode_static(abi_type, value))
        else:
            raise ValueError(f"Unsupported ABI type: {abi_type}")

    return "0x" + selector(signature).hex() + "".join(head)


def encode_claim_reward_call(epoch: int, amount: int, proof: Sequence[HexLike]) -> str:
    return encode_call(CLAIM_REWARD_SIGNATURE, epoch, amount, proof)


def encode_claimed_call(epoch: int, address: str) -> str:
    return encode_call(CLAIMED_SIGNATURE, epoch, address)


def _decode_word(abi_type: str, data: str) -> Any:
    body = strip_0x(data or "")
    try:
        raw = bytes.fromhex(body)
        return decode([abi_type], raw)[0]
    except DecodingError as exc:
        raise ValueError(f"Cannot decode {abi_type} from {data!r}: {exc}") from exc


def decode_uint256(data: str) -> int:
    """Decode the first return word of an ``eth_call`` result. Empty data reads as 0."""
    if not strip_0x(data or ""):
        return 0
    return _decode_word("uint256", data)


def decode_bool(data: str) -> bool:
    if not strip_0x(data or ""):
        return False
    return _decode_word("bool", data)


# ---------------------------------------------------------------------------
# ABI files
# ---------------------------------------------------------------------------


@lru_cache(maxsize=16)
def load_abi(path: str) -> list[dict[str, Any]]:
    """
    Load a contract ABI from a JSON file.

    Accepts either a bare ABI list or a compiler artifact with an ``abi`` key.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file contains no ABI list
    """
    abi_path = Path(path)
    if not abi_path.exists():
        raise FileNotFoundError(f"ABI not found: {abi_path}")

    with abi_path.open("r", encoding="utf-8") as f:
        artifact = json.load(f)

    abi = artifact.get("abi") if isinstance(artifact, dict) else artifact
    if not isinstance(abi, list):
        raise ValueError(f"No ABI list in {abi_path}")
    return abi


def function_signature(abi: list[dict[str, Any]], function_name: str) -> str:
    """Build the canonical signature of ``function_name`` from an ABI."""
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == function_name:
            input_types = [inp["type"] for inp in entry.get("inputs", [])]
            return f"{function_name}({','.join(input_types)})"
    raise ValueError(f"Function {function_name} not found in ABI")


def check_reward_abi(abi: list[dict[str, Any]]) -> None:
    """Ensure an ABI exposes the two reward functions with the expected inputs."""
    for expected in (CLAIM_REWARD_SIGNATURE, CLAIMED_SIGNATURE):
        name, _ = parse_signature(expected)
        actual = function_signature(abi, name)
        if actual != expected:
            raise ValueError(f"ABI declares {actual}, expected {expected}")
