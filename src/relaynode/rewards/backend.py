"""
HTTP client for the reward backend.

The backend aggregates metered traffic into epochs, commits each epoch's
Merkle root on-chain and serves per-node proofs.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx

from .models import EpochInfo

DEFAULT_BACKEND_URL = "http://localhost:3000"


class BackendError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RewardBackend(Protocol):
    def fetch_proof(self, node: str, epoch: int) -> dict[str, Any]:
        ...

    def list_epochs(self) -> list[EpochInfo]:
        ...

    def update_claimed(
        self, node: str, epoch_id: int, claimed: bool, tx_hash: Optional[str]
    ) -> None:
        ...


class RewardBackendClient:
    """
    Reward backend over HTTP JSON.

    Attributes:
        backend_url: Base URL of the backend
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        backend_url: str = DEFAULT_BACKEND_URL,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.backend_url = backend_url.rstrip("/")
        self._http = httpx.Client(
            base_url=self.backend_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(f"Backend request {method} {path} failed: {exc}") from exc

        if not resp.is_success:
            raise BackendError(
                f"Backend error: {resp.status_code} - {resp.text}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise BackendError(f"Backend returned invalid JSON for {path}: {exc}") from exc

    def fetch_proof(self, node: str, epoch: int) -> dict[str, Any]:
        """GET /rewards/proof?node=&epoch= (unvalidated payload)."""
        data = self._request("GET", "/rewards/proof", params={"node": node, "epoch": epoch})
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected proof payload: {data!r}")
        return data

    def list_epochs(self) -> list[EpochInfo]:
        """GET /rewards/epochs"""
        data = self._request("GET", "/rewards/epochs")
        if not isinstance(data, list):
            raise BackendError(f"Unexpected epochs payload: {data!r}")
        try:
            return [EpochInfo.from_dict(entry) for entry in data]
        except (AttributeError, ValueError) as exc:
            raise BackendError(f"Malformed epoch entry: {exc}") from exc

    def update_claimed(
        self, node: str, epoch_id: int, claimed: bool, tx_hash: Optional[str]
    ) -> None:
        """POST /rewards/update_claimed"""
        self._request(
            "POST",
            "/rewards/update_claimed",
            json={
                "node": node,
                "epoch_id": epoch_id,
                "claimed": claimed,
                "tx_hash": tx_hash,
            },
        )
