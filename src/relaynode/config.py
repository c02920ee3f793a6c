"""
Agent configuration from the environment.

Values come from environment variables, optionally seeded from a .env file.
Variables already set in the environment win over the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .chain.abi import encode_address
from .chain.rpc import DEFAULT_CHAIN_ID
from .keys.signer import DEFAULT_KEY_PATH
from .rewards.backend import DEFAULT_BACKEND_URL
from .rewards.claim import DEFAULT_EXPLORER_URL, RECEIPT_POLL_INTERVAL, RECEIPT_TIMEOUT
from .rewards.loop import DEFAULT_INTERVAL

DEFAULT_ENV_PATH = Path(".env")


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


@dataclass(frozen=True)
class AgentConfig:
    rpc_url: Optional[str] = None
    rpc_api_key: Optional[str] = None
    reward_contract_address: Optional[str] = None
    contract_abi_path: Optional[str] = None
    backend_url: str = DEFAULT_BACKEND_URL
    chain_id: int = DEFAULT_CHAIN_ID
    explorer_url: str = DEFAULT_EXPLORER_URL
    private_key_path: Path = DEFAULT_KEY_PATH
    claim_interval: float = DEFAULT_INTERVAL
    receipt_timeout: float = RECEIPT_TIMEOUT
    receipt_poll_interval: float = RECEIPT_POLL_INTERVAL
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "AgentConfig":
        """
        Build the configuration from the environment.

        Args:
            env_path: .env file to load first (default: ./.env if present)

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        env_path = env_path or DEFAULT_ENV_PATH
        if env_path.exists():
            load_dotenv(env_path, override=False)

        return cls(
            rpc_url=_env("RPC_URL"),
            rpc_api_key=_env("RPC_API_KEY") or _env("TATUM_API_KEY"),
            reward_contract_address=_env("REWARD_CONTRACT_ADDRESS"),
            contract_abi_path=_env("CONTRACT_ABI_PATH"),
            backend_url=_env("BACKEND_URL") or DEFAULT_BACKEND_URL,
            chain_id=int(_env("CHAIN_ID") or DEFAULT_CHAIN_ID),
            explorer_url=_env("EXPLORER_URL") or DEFAULT_EXPLORER_URL,
            private_key_path=Path(_env("PRIVATE_KEY_PATH") or DEFAULT_KEY_PATH),
            claim_interval=float(_env("REWARD_CLAIM_INTERVAL") or DEFAULT_INTERVAL),
            receipt_timeout=float(_env("RECEIPT_TIMEOUT") or RECEIPT_TIMEOUT),
            receipt_poll_interval=float(_env("RECEIPT_POLL_INTERVAL") or RECEIPT_POLL_INTERVAL),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def claimer_enabled(self) -> bool:
        return bool(self.rpc_url and self.reward_contract_address)

    def validate(self) -> None:
        if self.reward_contract_address:
            try:
                encode_address(self.reward_contract_address)
            except ValueError as exc:
                raise ValueError(
                    f"REWARD_CONTRACT_ADDRESS is not an address: {self.reward_contract_address}"
                ) from exc
        for name in ("claim_interval", "receipt_timeout", "receipt_poll_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
