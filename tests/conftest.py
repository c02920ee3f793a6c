"""
Pytest configuration and shared fixtures.

Provides an in-memory JSON-RPC node served through httpx.MockTransport, an
in-memory reward backend and a fake clock, so no test touches the network or
waits in real time.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx
import pytest
import rlp
from eth_account import Account

from relaynode.chain.abi import CLAIMED_SIGNATURE, encode_uint256, keccak256, selector
from relaynode.chain.ratelimit import RateLimiter
from relaynode.chain.rpc import RpcClient
from relaynode.keys.signer import NodeSigner, generate_eoa
from relaynode.rewards import merkle
from relaynode.rewards.backend import BackendError
from relaynode.rewards.claim import RewardClaimer

CONTRACT_ADDRESS = "0x1234567890123456789012345678901234567890"
OTHER_NODE = "0x52f541764E6e90eeBc5c21Ff570De0e2D63766B6"
ONE_TOKEN = 1_000_000_000_000_000_000

CLAIMED_SELECTOR = "0x" + selector(CLAIMED_SIGNATURE).hex()


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _as_int(value: bytes) -> int:
    return int.from_bytes(value, "big")


def decode_legacy_transaction(raw: str) -> dict[str, Any]:
    """Fields of a signed EIP-155 legacy transaction."""
    nonce, gas_price, gas, to, value, data, v, _r, _s = rlp.decode(bytes.fromhex(raw[2:]))
    return {
        "nonce": _as_int(nonce),
        "gasPrice": _as_int(gas_price),
        "gas": _as_int(gas),
        "to": "0x" + to.hex(),
        "value": _as_int(value),
        "data": "0x" + data.hex(),
        "chainId": (_as_int(v) - 35) // 2,
    }


class FakeChain:
    """Scripted JSON-RPC node holding the reward contract's claimed() state."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.requests: list[dict[str, Any]] = []
        self.status_script: list[int] = []
        self.errors: dict[str, tuple[int, str]] = {}
        self.claimed: set[tuple[int, str]] = set()
        self.balance = ONE_TOKEN
        self.gas_price = 30_000_000_000
        self.gas_estimate = 100_000
        self.nonce = 7
        self.receipt_status: Optional[str] = "0x1"
        self.receipt_delay = 1
        self.sent: list[str] = []
        self.senders: list[str] = []
        self.transactions: dict[str, dict[str, Any]] = {}
        self._receipt_polls = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def count(self, method: str) -> int:
        return self.calls.count(method)

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        method = body["method"]
        self.calls.append(method)

        if self.status_script:
            status = self.status_script.pop(0)
            if status != 200:
                return httpx.Response(status, text="Too Many Requests")

        if method in self.errors:
            code, message = self.errors[method]
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": code, "message": message}},
            )

        result = getattr(self, "_" + method)(body["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def _eth_chainId(self, params: list) -> str:
        return hex(80002)

    def _eth_blockNumber(self, params: list) -> str:
        return hex(123)

    def _eth_getBalance(self, params: list) -> str:
        return hex(self.balance)

    def _eth_gasPrice(self, params: list) -> str:
        return hex(self.gas_price)

    def _eth_getTransactionCount(self, params: list) -> str:
        return hex(self.nonce)

    def _eth_estimateGas(self, params: list) -> str:
        return hex(self.gas_estimate)

    def _eth_call(self, params: list) -> str:
        data = params[0]["data"]
        assert data.startswith(CLAIMED_SELECTOR)
        epoch = int(data[10:74], 16)
        address = "0x" + data[98:138]
        return "0x" + encode_uint256(1 if (epoch, address) in self.claimed else 0)

    def _eth_sendRawTransaction(self, params: list) -> str:
        raw = params[0]
        self.sent.append(raw)
        sender = Account.recover_transaction(raw)
        self.senders.append(sender)
        self.nonce += 1
        tx_hash = "0x" + keccak256(bytes.fromhex(raw[2:])).hex()
        self.transactions[tx_hash] = dict(decode_legacy_transaction(raw), sender=sender)
        return tx_hash

    def _eth_getTransactionReceipt(self, params: list) -> Optional[dict[str, Any]]:
        self._receipt_polls += 1
        if self.receipt_status is None or self._receipt_polls <= self.receipt_delay:
            return None
        tx = self.transactions.get(params[0])
        if self.receipt_status == "0x1" and tx is not None and tx["to"] == CONTRACT_ADDRESS.lower():
            self.claimed.add((int(tx["data"][10:74], 16), tx["sender"].lower()))
        receipt = {
            "transactionHash": params[0],
            "blockNumber": "0x10",
            "status": self.receipt_status,
            "gasUsed": hex(84_000),
        }
        if self.receipt_status == "missing":
            del receipt["status"]
        return receipt


class FakeBackend:
    def __init__(self) -> None:
        self.proofs: dict[int, dict[str, Any]] = {}
        self.epochs: list[Any] = []
        self.updates: list[dict[str, Any]] = []
        self.fail_updates = False
        self.fail_epochs = False

    def fetch_proof(self, node: str, epoch: int) -> dict[str, Any]:
        if epoch not in self.proofs:
            raise BackendError("Backend error: 404 - no reward for epoch", status_code=404)
        return dict(self.proofs[epoch])

    def list_epochs(self) -> list[Any]:
        if self.fail_epochs:
            raise BackendError("Backend error: 503 - unavailable", status_code=503)
        return list(self.epochs)

    def update_claimed(self, node: str, epoch_id: int, claimed: bool, tx_hash: Optional[str]) -> None:
        self.updates.append(
            {"node": node, "epoch_id": epoch_id, "claimed": claimed, "tx_hash": tx_hash}
        )
        if self.fail_updates:
            raise BackendError("Backend error: 500 - database down", status_code=500)


def make_proof_payload(address: str, epoch: int, amount: int = ONE_TOKEN) -> dict[str, Any]:
    """A two-leaf tree: this node plus one other node."""
    leaves = [merkle.leaf_hash(address, amount), merkle.leaf_hash(OTHER_NODE, 5 * ONE_TOKEN)]
    levels = merkle.build_tree(leaves)
    return {
        "epoch": epoch,
        "node": address,
        "amount": str(amount),
        "proof": ["0x" + p.hex() for p in merkle.build_proof(levels, 0)],
        "merkle_root": merkle.root_hex(levels),
    }


@pytest.fixture()
def signer() -> NodeSigner:
    private_key, _ = generate_eoa()
    return NodeSigner.from_key(private_key)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def rate_limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock.time, sleep=clock.sleep)


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def rpc(chain: FakeChain, rate_limiter: RateLimiter, clock: FakeClock) -> RpcClient:
    client = RpcClient(
        "https://rpc.test",
        rate_limiter=rate_limiter,
        transport=chain.transport(),
        sleep=clock.sleep,
    )
    yield client
    client.close()


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def claimer(signer: NodeSigner, backend: FakeBackend, rpc: RpcClient, clock: FakeClock) -> RewardClaimer:
    return RewardClaimer(
        signer,
        backend,
        rpc,
        CONTRACT_ADDRESS,
        chain_id=80002,
        clock=clock.time,
        sleep=clock.sleep,
    )


@pytest.fixture()
def make_proof():
    return make_proof_payload
