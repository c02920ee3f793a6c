__version__ = "0.3.0"

__all__ = [
    # Configuration
    "AgentConfig",
    "configure_logging",
    # Chain
    "RateLimiter",
    "RpcClient",
    "RpcError",
    "RpcProtocolError",
    "RpcTransportError",
    "default_rate_limiter",
    # Identity
    "NodeSigner",
    "generate_key",
    "load_private_key",
    # Rewards
    "ChainError",
    "ClaimResult",
    "ClaimState",
    "InsufficientFundsError",
    "Proof",
    "ProofValidationError",
    "ReceiptTimeoutError",
    "RewardBackendClient",
    "RewardClaimLoop",
    "RewardClaimer",
]

from .chain.ratelimit import RateLimiter, default_rate_limiter
from .chain.rpc import RpcClient, RpcError, RpcProtocolError, RpcTransportError
from .config import AgentConfig
from .keys.signer import NodeSigner, generate_key, load_private_key
from .log import configure_logging
from .rewards.backend import RewardBackendClient
from .rewards.claim import ChainError, InsufficientFundsError, ReceiptTimeoutError, RewardClaimer
from .rewards.loop import RewardClaimLoop
from .rewards.models import ClaimResult, ClaimState, Proof, ProofValidationError
