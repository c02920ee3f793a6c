"""
JSON-RPC Client for the reward chain.

Lightweight alternative to web3.py: uses httpx for HTTP and a shared
RateLimiter for request pacing. HTTP 429 responses are retried with bounded
exponential backoff; every other failure is surfaced immediately.
"""

from __future__ import annotations

import itertools
import os
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from .ratelimit import RateLimiter, default_rate_limiter

# Default RPC endpoint (Polygon Amoy)
DEFAULT_RPC_URL = "https://rpc-amoy.polygon.technology"
DEFAULT_CHAIN_ID = 80002

# Retry configuration for 429 responses
MAX_RETRIES = 5
INITIAL_RETRY_DELAY = 1.0  # seconds
MAX_RETRY_DELAY = 60.0  # seconds
MAX_JITTER = 0.5  # seconds

# Per-request HTTP timeout, well under the worst-case retry span
DEFAULT_TIMEOUT = 10.0


def get_rpc_url() -> str:
    """Get the RPC URL from environment or default."""
    return os.environ.get("RPC_URL", DEFAULT_RPC_URL)


def get_chain_id() -> int:
    """Get the chain ID from environment or default."""
    return int(os.environ.get("CHAIN_ID", str(DEFAULT_CHAIN_ID)))


class RpcError(RuntimeError):
    """Base class for JSON-RPC failures."""


class RpcTransportError(RpcError):
    """Network failure, non-2xx HTTP status, or 429 retries exhausted."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RpcProtocolError(RpcError):
    """The node answered with a JSON-RPC ``error`` object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error: {message} (code: {code})")
        self.code = code
        self.message = message
        self.data = data


class RpcResponseError(RpcProtocolError):
    """The response body is not a valid JSON-RPC 2.0 envelope."""

    def __init__(self, message: str) -> None:
        super().__init__(-32700, message)


@dataclass(frozen=True)
class RpcRequest:
    id: int
    method: str
    params: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }


_RESPONSE_KEYS = frozenset({"jsonrpc", "id", "result", "error"})


@dataclass(frozen=True)
class RpcResponse:
    id: Any
    result: Any = None
    error: Optional[dict[str, Any]] = None

    @classmethod
    def from_json(cls, payload: Any) -> "RpcResponse":
        if not isinstance(payload, dict):
            raise RpcResponseError(f"Expected a JSON object, got {type(payload).__name__}")
        unknown = set(payload) - _RESPONSE_KEYS
        if unknown:
            raise RpcResponseError(f"Unexpected fields in RPC response: {sorted(unknown)}")
        if payload.get("jsonrpc") != "2.0":
            raise RpcResponseError(f"Unsupported jsonrpc version: {payload.get('jsonrpc')!r}")

        error = payload.get("error")
        if error is not None:
            if not isinstance(error, dict) or "code" not in error or "message" not in error:
                raise RpcResponseError(f"Malformed error object: {error!r}")
            return cls(id=payload.get("id"), error=error)

        if "result" not in payload:
            raise RpcResponseError("RPC response has neither result nor error")
        return cls(id=payload.get("id"), result=payload["result"])


def backoff_delay(
    attempt: int,
    *,
    initial: float = INITIAL_RETRY_DELAY,
    maximum: float = MAX_RETRY_DELAY,
    jitter: Optional[float] = None,
) -> float:
    """
    Delay before retry number ``attempt`` (0-based).

    Exponential backoff (1s, 2s, 4s, ...) plus up to MAX_JITTER seconds of
    random jitter, capped at ``maximum``.
    """
    if jitter is None:
        jitter = random.uniform(0.0, MAX_JITTER)
    return min(initial * (2 ** attempt) + jitter, maximum)


def hex_to_int(value: Optional[str]) -> int:
    if value is None or value in ("0x", ""):
        return 0
    return int(value, 16)


def int_to_hex(value: int) -> str:
    return hex(value)


class RpcClient:
    """
    JSON-RPC 2.0 client with global request pacing and 429 backoff.

    Args:
        rpc_url: Node endpoint
        api_key: Sent as ``x-api-key`` when set
        rate_limiter: Shared limiter (default: the process-wide one)
        timeout: Per-request HTTP timeout in seconds
        transport: Optional httpx transport (tests use MockTransport)
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpc_url = rpc_url or get_rpc_url()
        self.rate_limiter = rate_limiter or default_rate_limiter()
        self.max_retries = max_retries
        self._sleep = sleep
        self._ids = itertools.count(1)

        headers = {"accept": "application/json", "content-type": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._http = httpx.Client(timeout=timeout, headers=headers, transport=transport)

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def call(self, method: str, params: Optional[list] = None) -> Any:
        """
        Make a JSON-RPC call.

        Returns:
            Result field from the RPC response

        Raises:
            RpcTransportError: Network failure, non-2xx status, or too many 429s
            RpcProtocolError: The response carries a JSON-RPC error
        """
        request = RpcRequest(id=next(self._ids), method=method, params=list(params or []))
        attempt = 0

        while True:
            self.rate_limiter.acquire()
            logger.debug(f"RPC -> {method} id={request.id} params={request.params}")
            try:
                response = self._http.post(self.rpc_url, json=request.to_dict())
            except httpx.HTTPError as exc:
                raise RpcTransportError(f"RPC call {method} failed: {exc}") from exc

            if response.status_code != 429:
                break

            if attempt >= self.max_retries:
                raise RpcTransportError(
                    f"RPC call {method} failed after {self.max_retries} retries: "
                    f"{response.status_code} - {response.text}",
                    status_code=response.status_code,
                )
            delay = backoff_delay(attempt)
            logger.warning(
                f"Rate limit hit (429) for {method}. Retrying in {delay:.2f}s "
                f"(attempt {attempt + 1}/{self.max_retries})"
            )
            self._sleep(delay)
            attempt += 1

        if not response.is_success:
            raise RpcTransportError(
                f"RPC call {method} failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise RpcResponseError(f"Invalid JSON from RPC node: {exc}") from exc

        envelope = RpcResponse.from_json(payload)
        if envelope.error is not None:
            raise RpcProtocolError(
                envelope.error["code"],
                envelope.error["message"],
                envelope.error.get("data"),
            )

        logger.debug(f"RPC <- {method} id={request.id} result={envelope.result!r}")
        return envelope.result

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def eth_block_number(self) -> int:
        return hex_to_int(self.call("eth_blockNumber"))

    def eth_chain_id(self) -> int:
        return hex_to_int(self.call("eth_chainId"))

    def eth_get_balance(self, address: str, block: str = "latest") -> int:
        """Balance in wei."""
        return hex_to_int(self.call("eth_getBalance", [address, block]))

    def eth_get_transaction_count(self, address: str, block: str = "latest") -> int:
        """Transaction count (next nonce) for an address."""
        return hex_to_int(self.call("eth_getTransactionCount", [address, block]))

    def eth_gas_price(self) -> int:
        return hex_to_int(self.call("eth_gasPrice"))

    def eth_estimate_gas(self, transaction: dict[str, Any]) -> int:
        return hex_to_int(self.call("eth_estimateGas", [transaction]))

    def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        """Read-only contract call. Returns raw 0x-prefixed return data."""
        return self.call("eth_call", [{"to": to, "data": data}, block])

    def eth_send_raw_transaction(self, raw_tx: str) -> str:
        """Submit a signed transaction. Returns the transaction hash."""
        return self.call("eth_sendRawTransaction", [raw_tx])

    def eth_get_transaction_receipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        return self.call("eth_getTransactionReceipt", [tx_hash])
