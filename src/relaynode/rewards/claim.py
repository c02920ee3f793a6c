"""
Reward claiming - turn a backend Merkle proof into a confirmed on-chain claim.

Flow:
1. Fetch the node's proof for an epoch from the reward backend
2. Validate it (fields, signer address, amount) and pre-check the Merkle path
3. Skip if the contract already reports the epoch as claimed
4. Encode claimReward(epoch, amount, proof), estimate gas, check balance
5. Sign with the node key, submit, and poll for the receipt
6. Tell the backend the epoch is claimed

claim_reward() never raises: every outcome is returned as a ClaimResult.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from loguru import logger

from ..chain.abi import (
    REWARD_CONTRACT_ABI,
    check_reward_abi,
    decode_bool,
    encode_claim_reward_call,
    encode_claimed_call,
    load_abi,
)
from ..chain.rpc import (
    DEFAULT_CHAIN_ID,
    RpcClient,
    RpcError,
    RpcProtocolError,
    RpcResponseError,
    RpcTransportError,
    hex_to_int,
)
from ..chain.tx import UnsignedTransaction, estimate_gas_limit, get_gas_price, wait_for_receipt
from ..keys.signer import NodeSigner, load_private_key
from . import merkle
from .backend import BackendError, RewardBackend, RewardBackendClient
from .models import ClaimResult, ClaimState, PendingReward, Proof, ProofValidationError

if TYPE_CHECKING:
    from ..chain.ratelimit import RateLimiter
    from ..config import AgentConfig

DEFAULT_EXPLORER_URL = "https://amoy.polygonscan.com"
RECEIPT_TIMEOUT = 60.0  # seconds
RECEIPT_POLL_INTERVAL = 2.0  # seconds
WEI_PER_TOKEN = 10**18


class ClaimError(RuntimeError):
    """Base class for claim failures raised by the workflow itself."""


class InsufficientFundsError(ClaimError):
    pass


class ChainError(ClaimError):
    """The claim transaction was mined but did not succeed."""

    def __init__(self, message: str, tx_hash: str, explorer_url: str) -> None:
        super().__init__(f"{message} ({explorer_url})")
        self.tx_hash = tx_hash
        self.explorer_url = explorer_url


class ReceiptTimeoutError(ClaimError, TimeoutError):
    def __init__(self, message: str, tx_hash: str) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


# Most specific first
_ERROR_KINDS: tuple[tuple[type[BaseException], str], ...] = (
    (ProofValidationError, "validation"),
    (InsufficientFundsError, "insufficient_funds"),
    (ChainError, "chain"),
    (ReceiptTimeoutError, "timeout"),
    (BackendError, "backend"),
    (RpcTransportError, "transport"),
    (RpcProtocolError, "protocol"),
)


def error_kind(exc: BaseException) -> str:
    for exc_type, kind in _ERROR_KINDS:
        if isinstance(exc, exc_type):
            return kind
    return "unexpected"


@dataclass
class _Attempt:
    epoch: int
    log: Any
    state: ClaimState = ClaimState.FETCHING_PROOF
    tx_hash: Optional[str] = None

    def enter(self, state: ClaimState) -> None:
        self.state = state
        self.log.debug(f"Epoch {self.epoch}: {state.value}")


class RewardClaimer:
    """
    Claims epoch rewards for one node.

    Args:
        signer: Node key; its address must match the proof's node address
        backend: Reward backend (proofs, epochs, claimed-status updates)
        rpc: JSON-RPC client for the reward chain
        contract_address: Reward contract
        chain_id: EIP-155 chain id used when signing
    """

    def __init__(
        self,
        signer: NodeSigner,
        backend: RewardBackend,
        rpc: RpcClient,
        contract_address: str,
        *,
        chain_id: int = DEFAULT_CHAIN_ID,
        explorer_url: str = DEFAULT_EXPLORER_URL,
        receipt_timeout: float = RECEIPT_TIMEOUT,
        receipt_poll_interval: float = RECEIPT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.signer = signer
        self.backend = backend
        self.rpc = rpc
        self.contract_address = contract_address
        self.chain_id = chain_id
        self.explorer_url = explorer_url.rstrip("/")
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self._clock = clock
        self._sleep = sleep
        # Epochs whose transaction was sent but whose claim the backend has not recorded
        self._unreported: dict[int, str] = {}

    @classmethod
    def from_config(
        cls,
        config: "AgentConfig",
        signer: Optional[NodeSigner] = None,
        rate_limiter: Optional["RateLimiter"] = None,
    ) -> "RewardClaimer":
        """
        Wire a claimer from agent configuration.

        Without ``signer`` the node key comes from PRIVATE_KEY or
        ``config.private_key_path``.

        Raises:
            ValueError: If the configuration is incomplete or invalid
        """
        if not config.claimer_enabled:
            raise ValueError("Reward claimer requires RPC_URL and REWARD_CONTRACT_ADDRESS")
        config.validate()

        if signer is None:
            signer = NodeSigner.from_key(load_private_key(config.private_key_path))

        abi = load_abi(config.contract_abi_path) if config.contract_abi_path else REWARD_CONTRACT_ABI
        check_reward_abi(abi)

        rpc = RpcClient(config.rpc_url, config.rpc_api_key, rate_limiter=rate_limiter)
        backend = RewardBackendClient(config.backend_url)
        return cls(
            signer,
            backend,
            rpc,
            config.reward_contract_address,
            chain_id=config.chain_id,
            explorer_url=config.explorer_url,
            receipt_timeout=config.receipt_timeout,
            receipt_poll_interval=config.receipt_poll_interval,
        )

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_proof(self, epoch: int) -> Proof:
        """Fetch and validate this node's proof for ``epoch``."""
        return self._validate_proof(self.backend.fetch_proof(self.signer.address, epoch), epoch)

    def _validate_proof(self, payload: Any, epoch: int) -> Proof:
        proof = Proof.from_dict(payload, expected_address=self.signer.address)
        if proof.epoch != epoch:
            raise ProofValidationError(
                "Invalid proof data.",
                errors=[f"epoch: requested {epoch}, backend returned {proof.epoch}"],
            )
        return proof

    def already_claimed(self, epoch: int) -> bool:
        """
        Ask the contract whether this node has claimed ``epoch``.

        An unreachable node or contract counts as "not claimed": the contract
        rejects double claims on its own, so this check must never block.
        """
        data = encode_claimed_call(epoch, self.signer.address)
        try:
            return decode_bool(self.rpc.eth_call(self.contract_address, data))
        except (RpcError, ValueError) as exc:
            logger.warning(f"Could not check if epoch {epoch} is already claimed: {exc}")
            return False

    def check_available_rewards(self) -> list:
        """Epochs whose Merkle root the backend has committed."""
        try:
            epochs = self.backend.list_epochs()
        except BackendError as exc:
            logger.warning(f"Could not list reward epochs: {exc}")
            return []
        return [e for e in epochs if e.status == "committed"]

    def get_pending_rewards(self) -> list[PendingReward]:
        """
        Committed epochs with a valid proof for this node that are not yet claimed.

        An epoch whose earlier transaction landed after the attempt ended
        (receipt timeout, or a failure after submission) is reported to the
        backend here once ``claimed()`` turns true.
        """
        pending = []
        for epoch in self.check_available_rewards():
            try:
                proof = self.fetch_proof(epoch.epoch_id)
            except (BackendError, ProofValidationError) as exc:
                logger.debug(f"No usable proof for epoch {epoch.epoch_id}: {exc}")
                continue

            if self.already_claimed(epoch.epoch_id):
                if epoch.epoch_id in self._unreported:
                    logger.info(f"Earlier claim for epoch {epoch.epoch_id} landed on-chain")
                    self._report_claimed(epoch.epoch_id)
                continue

            pending.append(
                PendingReward(
                    epoch=epoch.epoch_id,
                    amount=proof.amount,
                    start_time=epoch.start_time,
                    end_time=epoch.end_time,
                )
            )
        return pending

    # ------------------------------------------------------------------
    # Claim workflow
    # ------------------------------------------------------------------

    def claim_reward(self, epoch: int) -> ClaimResult:
        """Run one claim attempt for ``epoch`` to a terminal state."""
        log = logger.bind(epoch=epoch)
        log.info(f"Claiming reward for epoch {epoch}...")
        attempt = _Attempt(epoch, log)

        try:
            return self._claim(attempt)
        except Exception as exc:  # noqa: BLE001
            if attempt.tx_hash and not isinstance(exc, ChainError):
                # Sent but unconfirmed: it may still land
                self._unreported[epoch] = attempt.tx_hash
            kind = error_kind(exc)
            if isinstance(exc, ChainError):
                terminal = ClaimState.REVERTED
            elif isinstance(exc, ReceiptTimeoutError):
                terminal = ClaimState.TIMEOUT
            else:
                terminal = ClaimState.FAILED

            if kind == "unexpected":
                log.exception(f"Failed to claim reward for epoch {epoch}: {exc}")
            else:
                log.error(f"Failed to claim reward for epoch {epoch} ({kind}): {exc}")
                for detail in getattr(exc, "errors", []):
                    log.error(f"  {detail}")

            return ClaimResult(
                epoch=epoch,
                success=False,
                state=terminal,
                tx_hash=attempt.tx_hash,
                error=str(exc),
                error_kind=kind,
                failed_at=attempt.state,
            )

    def _claim(self, attempt: _Attempt) -> ClaimResult:
        epoch = attempt.epoch
        log = attempt.log
        sender = self.signer.address

        attempt.enter(ClaimState.FETCHING_PROOF)
        payload = self.backend.fetch_proof(sender, epoch)

        attempt.enter(ClaimState.VALIDATING_PROOF)
        proof = self._validate_proof(payload, epoch)
        self._precheck_merkle(proof, log)

        attempt.enter(ClaimState.CHECKING_CLAIMED)
        if self.already_claimed(epoch):
            log.info(f"Reward already claimed for epoch {epoch}")
            self._report_claimed(epoch)
            return ClaimResult(
                epoch=epoch,
                success=True,
                state=ClaimState.ALREADY_CLAIMED,
                already_claimed=True,
            )

        attempt.enter(ClaimState.BUILDING_CALL_DATA)
        data = encode_claim_reward_call(epoch, proof.amount, proof.proof)
        log.info(f"Building transaction to {self.contract_address}: {data[:100]}...")

        attempt.enter(ClaimState.ESTIMATING_GAS)
        gas_price = get_gas_price(self.rpc)
        gas_limit = estimate_gas_limit(self.rpc, sender, self.contract_address, data)
        max_fee = gas_price * gas_limit
        log.info(
            f"Gas: price={gas_price}, limit={gas_limit}, "
            f"estimated cost={max_fee / WEI_PER_TOKEN:.6f}"
        )

        attempt.enter(ClaimState.CHECKING_BALANCE)
        balance = self.rpc.eth_get_balance(sender)
        if balance < max_fee:
            raise InsufficientFundsError(
                f"Insufficient balance for gas: {sender} holds {balance} wei but the claim "
                f"may cost up to {max_fee} wei (gas_price {gas_price} x gas_limit {gas_limit}). "
                f"Fund the node address with native tokens on chain {self.chain_id}."
            )

        attempt.enter(ClaimState.SIGNING)
        tx = UnsignedTransaction(
            chain_id=self.chain_id,
            nonce=self.rpc.eth_get_transaction_count(sender),
            gas_price=gas_price,
            gas_limit=gas_limit,
            to=self.contract_address,
            data=data,
        )
        raw_tx = tx.sign(self.signer)

        attempt.enter(ClaimState.SUBMITTING)
        attempt.tx_hash = self._submit(raw_tx, sender)
        log.info(f"Transaction sent: {attempt.tx_hash} ({self.tx_url(attempt.tx_hash)})")

        attempt.enter(ClaimState.AWAITING_RECEIPT)
        receipt = self._await_receipt(attempt.tx_hash)

        log.info(
            f"Reward claimed for epoch {epoch}: block {receipt.get('blockNumber')}, "
            f"gas used {int(receipt.get('gasUsed') or '0x0', 16)}"
        )
        self._unreported[epoch] = attempt.tx_hash
        self._report_claimed(epoch)
        return ClaimResult(
            epoch=epoch,
            success=True,
            state=ClaimState.CONFIRMED,
            tx_hash=attempt.tx_hash,
            receipt=receipt,
        )

    def _precheck_merkle(self, proof: Proof, log: Any = logger) -> None:
        if proof.merkle_root is None:
            log.debug(f"No merkle_root for epoch {proof.epoch}; skipping local proof check")
            return
        if not merkle.verify(proof.node_address, proof.amount, proof.proof, proof.merkle_root):
            log.warning(
                f"Local Merkle check failed for epoch {proof.epoch} (root {proof.merkle_root}); "
                f"submitting anyway, the contract verifies the proof"
            )

    def _submit(self, raw_tx: str, sender: str) -> str:
        try:
            return self.rpc.eth_send_raw_transaction(raw_tx)
        except RpcProtocolError as exc:
            if "insufficient funds" in exc.message.lower():
                raise InsufficientFundsError(
                    f"Provider rejected transaction: {exc.message}. "
                    f"Fund {sender} with native tokens on chain {self.chain_id}."
                ) from exc
            raise

    def _await_receipt(self, tx_hash: str) -> dict[str, Any]:
        receipt = wait_for_receipt(
            self.rpc,
            tx_hash,
            timeout=self.receipt_timeout,
            poll_interval=self.receipt_poll_interval,
            clock=self._clock,
            sleep=self._sleep,
        )
        if receipt is None:
            raise ReceiptTimeoutError(
                f"Transaction {tx_hash} not confirmed within {self.receipt_timeout:g}s; "
                f"check claimed() before retrying",
                tx_hash,
            )
        status = receipt.get("status")
        if status is None:
            raise RpcResponseError(f"Receipt for {tx_hash} carries no status field")
        if hex_to_int(status) != 1:
            raise ChainError(f"Transaction {tx_hash} reverted (status {status})", tx_hash, self.tx_url(tx_hash))
        return receipt

    def _report_claimed(self, epoch: int) -> bool:
        """Best-effort backend update; the epoch stays unreported on failure."""
        tx_hash = self._unreported.get(epoch)
        try:
            self.backend.update_claimed(self.signer.address, epoch, True, tx_hash)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Could not update claimed status for epoch {epoch}: {exc}")
            return False
        self._unreported.pop(epoch, None)
        return True
