"""Periodic reward claiming, run beside the agent's other loops."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Optional

from loguru import logger

from ..log import configure_logging
from .claim import RewardClaimer
from .models import ClaimResult

if TYPE_CHECKING:
    from ..chain.ratelimit import RateLimiter
    from ..config import AgentConfig
    from ..keys.signer import NodeSigner

DEFAULT_INTERVAL = 300.0
DEFAULT_INITIAL_DELAY = 60.0
PAUSE_BETWEEN_CLAIMS = 10.0


class RewardClaimLoop:
    """
    Claim every pending reward, then wait ``interval`` seconds and repeat.

    A failing iteration is logged and the loop keeps going. ``stop()`` wakes
    any wait immediately.
    """

    def __init__(
        self,
        claimer: RewardClaimer,
        interval: float = DEFAULT_INTERVAL,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        pause_between_claims: float = PAUSE_BETWEEN_CLAIMS,
    ) -> None:
        self.claimer = claimer
        self.interval = interval
        self.initial_delay = initial_delay
        self.pause_between_claims = pause_between_claims
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(
        cls,
        config: "AgentConfig",
        signer: Optional["NodeSigner"] = None,
        rate_limiter: Optional["RateLimiter"] = None,
    ) -> "RewardClaimLoop":
        """
        Wire the loop from agent configuration.

        Also points the stderr log sink at ``config.log_level``.
        """
        configure_logging(config.log_level)
        claimer = RewardClaimer.from_config(config, signer, rate_limiter=rate_limiter)
        return cls(claimer, interval=config.claim_interval)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> list[ClaimResult]:
        logger.info("Checking for pending rewards")
        pending = self.claimer.get_pending_rewards()
        if not pending:
            return []

        logger.info(f"Found {len(pending)} pending reward(s)")
        results = []
        for i, reward in enumerate(pending):
            if self._stop.is_set():
                break
            if i and self._stop.wait(self.pause_between_claims):
                break
            logger.info(f"  - Epoch {reward.epoch}: {reward.amount}")
            results.append(self.claimer.claim_reward(reward.epoch))
        return results

    def run_forever(self) -> None:
        if self._stop.wait(self.initial_delay):
            return
        logger.info("Reward claim loop started")
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as exc:  # noqa: BLE001
                logger.exception(f"Reward claim loop error: {exc}")
            if self._stop.wait(self.interval):
                break
        logger.info("Reward claim loop stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="reward-claim-loop", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
