from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..chain.abi import encode_address, encode_bytes32


class ProofValidationError(ValueError):
    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


_PROOF_REQUIRED = ("epoch", "node", "amount", "proof")
_PROOF_OPTIONAL = ("merkle_root",)
_NODE_ALIASES = {"node_address": "node"}


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0) if value.startswith("0x") else int(value)
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class Proof:
    epoch: int
    node_address: str
    amount: int
    proof: tuple[str, ...]
    merkle_root: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Any, expected_address: Optional[str] = None) -> "Proof":
        """
        Validate a backend proof payload.

        Rejects missing or unknown fields, malformed values, a non-list
        ``proof``, a non-positive amount and, when ``expected_address`` is
        given, a node address that differs from it (case-insensitive).
        """
        if not isinstance(payload, dict):
            raise ProofValidationError("Proof payload must be a JSON object.")

        data = {_NODE_ALIASES.get(k, k): v for k, v in payload.items()}
        errors: list[str] = []

        for key in _PROOF_REQUIRED:
            if key not in data:
                errors.append(f"{key}: missing required field")
        unknown = sorted(set(data) - set(_PROOF_REQUIRED) - set(_PROOF_OPTIONAL))
        for key in unknown:
            errors.append(f"{key}: unexpected field")
        if errors:
            raise ProofValidationError("Invalid proof data.", errors=errors)

        epoch = _as_int(data["epoch"])
        if epoch is None or epoch < 0:
            errors.append(f"epoch: not an unsigned integer: {data['epoch']!r}")

        node = data["node"]
        try:
            encode_address(node)
        except (TypeError, ValueError):
            errors.append(f"node: not an address: {node!r}")
        else:
            if expected_address and node.lower() != expected_address.lower():
                errors.append(f"node: address mismatch (expected {expected_address}, got {node})")

        amount = _as_int(data["amount"])
        if amount is None:
            errors.append(f"amount: not an integer: {data['amount']!r}")
        elif amount <= 0:
            errors.append(f"amount: must be positive, got {amount}")

        elements = data["proof"]
        if not isinstance(elements, list):
            errors.append(f"proof: expected a list, got {type(elements).__name__}")
            elements = []
        normalized = []
        for i, element in enumerate(elements):
            try:
                normalized.append("0x" + encode_bytes32(element))
            except (TypeError, ValueError):
                errors.append(f"proof/{i}: not a 32-byte hex value: {element!r}")

        root = data.get("merkle_root")
        if root is not None:
            try:
                root = "0x" + encode_bytes32(root)
            except (TypeError, ValueError):
                errors.append(f"merkle_root: not a 32-byte hex value: {root!r}")

        if errors:
            raise ProofValidationError("Invalid proof data.", errors=errors)

        return cls(
            epoch=epoch,
            node_address=node,
            amount=amount,
            proof=tuple(normalized),
            merkle_root=root,
        )


@dataclass(frozen=True)
class EpochInfo:
    epoch_id: int
    status: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "EpochInfo":
        epoch_id = _as_int(payload.get("epoch_id"))
        if epoch_id is None:
            raise ValueError(f"Invalid epoch entry: {payload!r}")
        return cls(
            epoch_id=epoch_id,
            status=str(payload.get("status", "")),
            start_time=payload.get("start_time"),
            end_time=payload.get("end_time"),
        )


@dataclass(frozen=True)
class PendingReward:
    epoch: int
    amount: int
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class ClaimState(str, Enum):
    FETCHING_PROOF = "fetching_proof"
    VALIDATING_PROOF = "validating_proof"
    CHECKING_CLAIMED = "checking_claimed"
    ALREADY_CLAIMED = "already_claimed"
    BUILDING_CALL_DATA = "building_call_data"
    ESTIMATING_GAS = "estimating_gas"
    CHECKING_BALANCE = "checking_balance"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    AWAITING_RECEIPT = "awaiting_receipt"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass
class ClaimResult:
    """Outcome of one claim attempt. ``state`` is always terminal."""

    epoch: int
    success: bool
    state: ClaimState
    tx_hash: Optional[str] = None
    already_claimed: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    failed_at: Optional[ClaimState] = None
    receipt: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "epoch": self.epoch,
            "success": self.success,
            "state": self.state.value,
            "tx_hash": self.tx_hash,
            "already_claimed": self.already_claimed,
            "error": self.error,
            "error_kind": self.error_kind,
            "failed_at": self.failed_at.value if self.failed_at else None,
        }
