"""Tests for the periodic claim loop."""

from __future__ import annotations

import threading

from relaynode.rewards.loop import RewardClaimLoop
from relaynode.rewards.models import ClaimState, EpochInfo, PendingReward


class StubClaimer:
    def __init__(self, pending=None, fail_times: int = 0) -> None:
        self.pending = pending or []
        self.fail_times = fail_times
        self.claimed: list[int] = []
        self.polls = 0
        self.claimed_any = threading.Event()

    def get_pending_rewards(self):
        self.polls += 1
        if self.polls <= self.fail_times:
            raise RuntimeError("backend exploded")
        return list(self.pending)

    def claim_reward(self, epoch):
        self.claimed.append(epoch)
        self.claimed_any.set()
        return epoch


class TestRunOnce:
    def test_claims_each_pending_epoch(self, claimer, backend, make_proof) -> None:
        address = claimer.signer.address
        backend.epochs = [EpochInfo(1, "committed"), EpochInfo(2, "committed")]
        backend.proofs[1] = make_proof(address, 1)
        backend.proofs[2] = make_proof(address, 2)

        results = RewardClaimLoop(claimer, pause_between_claims=0).run_once()

        assert [r.epoch for r in results] == [1, 2]
        assert all(r.state is ClaimState.CONFIRMED for r in results)

    def test_failed_claim_does_not_stop_others(self, claimer, chain, backend, make_proof) -> None:
        address = claimer.signer.address
        backend.epochs = [EpochInfo(1, "committed"), EpochInfo(2, "committed")]
        backend.proofs[1] = make_proof(address, 1)
        backend.proofs[2] = make_proof(address, 2)
        chain.errors["eth_sendRawTransaction"] = (-32000, "nonce too low")

        results = RewardClaimLoop(claimer, pause_between_claims=0).run_once()

        assert [r.state for r in results] == [ClaimState.FAILED, ClaimState.FAILED]

    def test_nothing_pending(self, claimer) -> None:
        assert RewardClaimLoop(claimer).run_once() == []

    def test_stop_skips_remaining_claims(self) -> None:
        stub = StubClaimer([PendingReward(1, 5), PendingReward(2, 5)])
        loop = RewardClaimLoop(stub, pause_between_claims=0)
        loop.stop()
        assert loop.run_once() == []
        assert stub.claimed == []


class TestRunForever:
    def test_start_and_stop(self) -> None:
        stub = StubClaimer()
        loop = RewardClaimLoop(stub, interval=60, initial_delay=60)

        loop.start()
        assert loop.running
        loop.stop(timeout=5)

        assert not loop.running
        assert stub.polls == 0

    def test_keeps_going_after_errors(self) -> None:
        stub = StubClaimer([PendingReward(7, 1)], fail_times=1)
        loop = RewardClaimLoop(stub, interval=0.01, initial_delay=0, pause_between_claims=0)

        loop.start()
        try:
            assert stub.claimed_any.wait(5)
        finally:
            loop.stop(timeout=5)

        assert stub.polls >= 2
        assert 7 in stub.claimed
        assert not loop.running

    def test_start_is_idempotent(self) -> None:
        loop = RewardClaimLoop(StubClaimer(), initial_delay=60)
        loop.start()
        thread = loop._thread
        loop.start()
        assert loop._thread is thread
        loop.stop(timeout=5)
