"""
Transaction Builder - Build, sign, and track reward-chain transactions.

Uses eth-account (through NodeSigner) for signing and the httpx-based
RpcClient for sending. All gas is paid by the node EOA.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger

from ..keys.signer import NodeSigner
from .abi import keccak256, strip_0x
from .rpc import RpcClient, RpcError

DEFAULT_GAS_LIMIT = 500_000
DEFAULT_GAS_PRICE = 30_000_000_000  # 30 gwei
GAS_BUFFER_NUMERATOR = 6  # 20% buffer: ceil(estimate * 6 / 5)
GAS_BUFFER_DENOMINATOR = 5


def to_checksum_address(address: str) -> str:
    """Convert an address to EIP-55 checksummed format.

    eth-account requires checksummed addresses in transaction fields.
    """
    addr = strip_0x(address).lower()
    addr_hash = keccak256(addr.encode("utf-8")).hex()
    result = "0x"
    for i, c in enumerate(addr):
        if c in "abcdef":
            result += c.upper() if int(addr_hash[i], 16) >= 8 else c
        else:
            result += c
    return result


def apply_gas_buffer(estimate: int) -> int:
    """Ceiling of estimate * 1.2, in integer arithmetic."""
    return -(-estimate * GAS_BUFFER_NUMERATOR // GAS_BUFFER_DENOMINATOR)


@dataclass(frozen=True)
class UnsignedTransaction:
    chain_id: int
    nonce: int
    gas_price: int
    gas_limit: int
    to: str
    data: str
    value: int = 0

    @property
    def max_fee(self) -> int:
        return self.gas_price * self.gas_limit

    def to_dict(self) -> dict[str, Any]:
        """Legacy (EIP-155) transaction fields as eth-account expects them."""
        return {
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "gasPrice": self.gas_price,
            "gas": self.gas_limit,
            "to": to_checksum_address(self.to),
            "data": self.data,
            "value": self.value,
        }

    def sign(self, signer: NodeSigner) -> str:
        """Returns 0x-prefixed raw signed transaction hex."""
        return signer.sign_transaction(self.to_dict())


def get_gas_price(rpc: RpcClient) -> int:
    """Current gas price; falls back to 30 gwei when the node reports zero."""
    gas_price = rpc.eth_gas_price()
    return gas_price if gas_price > 0 else DEFAULT_GAS_PRICE


def estimate_gas_limit(rpc: RpcClient, sender: str, to: str, data: str) -> int:
    """
    Estimate the gas limit for a call, with a 20% buffer.

    Falls back to DEFAULT_GAS_LIMIT when estimation fails or returns zero.
    """
    try:
        estimate = rpc.eth_estimate_gas({"from": sender, "to": to, "data": data})
    except RpcError as exc:
        logger.warning(f"Could not estimate gas: {exc}, using default {DEFAULT_GAS_LIMIT}")
        return DEFAULT_GAS_LIMIT

    if estimate <= 0:
        logger.warning(f"Gas estimation returned {estimate}, using default {DEFAULT_GAS_LIMIT}")
        return DEFAULT_GAS_LIMIT
    return apply_gas_buffer(estimate)


def wait_for_receipt(
    rpc: RpcClient,
    tx_hash: str,
    timeout: float = 60.0,
    poll_interval: float = 2.0,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[dict[str, Any]]:
    """
    Poll for a mined transaction receipt.

    A receipt counts only once it carries a block number. Failed lookups are
    logged and retried until the timeout.

    Returns:
        The receipt dict, or None if none appeared within ``timeout`` seconds
    """
    start = clock()
    while clock() - start < timeout:
        sleep(poll_interval)
        try:
            receipt = rpc.eth_get_transaction_receipt(tx_hash)
        except RpcError as exc:
            logger.warning(f"Receipt lookup for {tx_hash} failed, polling again: {exc}")
            continue
        if receipt and receipt.get("blockNumber"):
            return receipt
        logger.debug(f"Receipt for {tx_hash} not available yet")
    return None
