"""
ECDSA / secp256k1 node identity.

The node key signs reward-claim transactions and EIP-191 messages for the
reward backend. Keys are stored as a hex file (PRIVATE_KEY_PATH) or passed
in directly as PRIVATE_KEY; securing that storage is up to the operator.

Dependencies: eth-account (lightweight, no full web3.py needed)
"""

from __future__ import annotations

import os
import secrets
from pathlib import Path
from typing import Any, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

DEFAULT_KEY_PATH = Path("./keys/node.key")


def _normalize_key(private_key: str) -> str:
    private_key = private_key.strip()
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return private_key


def generate_eoa() -> tuple[str, str]:
    """
    Generate a new ECDSA/secp256k1 keypair.

    Returns:
        Tuple of (private_key_hex, checksummed address)
    """
    private_key = "0x" + secrets.token_hex(32)
    account = Account.from_key(private_key)
    return private_key, account.address


def generate_key(path: Path) -> str:
    """
    Write a fresh private key to ``path`` (mode 0600).

    Returns:
        The new node address
    """
    private_key, address = generate_eoa()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(private_key[2:] + "\n", encoding="utf-8")
    if os.name != "nt":
        path.chmod(0o600)
    return address


def load_private_key(path: Optional[Path] = None) -> str:
    """
    Load the node private key from PRIVATE_KEY or a key file.

    Raises:
        FileNotFoundError: If no key is in the environment and the file is missing
        ValueError: If the key file is empty
    """
    from_env = os.environ.get("PRIVATE_KEY")
    if from_env:
        return _normalize_key(from_env)
    return read_key_file(path or DEFAULT_KEY_PATH)


def read_key_file(path: Path) -> str:
    """Read a hex private key file, ignoring PRIVATE_KEY."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Private key file not found: {path}")

    content = path.read_text(encoding="utf-8").strip()
    if not content:
        raise ValueError(f"Private key file is empty: {path}")
    return _normalize_key(content)


class NodeSigner:
    """Signs transactions and messages with the node's key."""

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> "NodeSigner":
        return cls(Account.from_key(_normalize_key(private_key)))

    @classmethod
    def from_file(cls, path: Path) -> "NodeSigner":
        return cls.from_key(read_key_file(path))

    @property
    def address(self) -> str:
        """0x-prefixed checksummed address."""
        return self._account.address

    def sign_transaction(self, tx: dict[str, Any]) -> str:
        """Sign a transaction dict. Returns 0x-prefixed raw transaction hex."""
        signed = self._account.sign_transaction(tx)
        raw = signed.raw_transaction.hex()
        return raw if raw.startswith("0x") else "0x" + raw

    def sign_message(self, message: str) -> str:
        """EIP-191 personal_sign. Returns a 0x-prefixed signature."""
        signed = self._account.sign_message(encode_defunct(text=message))
        signature = signed.signature.hex()
        return signature if signature.startswith("0x") else "0x" + signature

    def __repr__(self) -> str:
        return f"NodeSigner(address={self.address})"
