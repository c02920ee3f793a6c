"""
Reward Merkle tree verification.

Mirrors the reward contract's rule: the leaf is
``keccak256(abi.encodePacked(address, uint256 amount))`` and every parent is
the hash of its two children in ascending byte order, so proofs carry no
left/right flags.

A failed local check is advisory only. The contract performs the
authoritative verification on claim.
"""

from __future__ import annotations

from typing import Sequence, Union

from ..chain.abi import encode_address, encode_bytes32, encode_uint256, keccak256

HashLike = Union[str, bytes]


def to_bytes32(value: HashLike) -> bytes:
    """Normalize a hex string or bytes to exactly 32 bytes (left-padded)."""
    return bytes.fromhex(encode_bytes32(value))


def leaf_hash(address: str, amount: int) -> bytes:
    # encodePacked(address, uint256): 20 address bytes then a 32-byte amount
    packed = bytes.fromhex(encode_address(address)[24:]) + bytes.fromhex(encode_uint256(amount))
    return keccak256(packed)


def hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak256(a + b) if a <= b else keccak256(b + a)


def compute_root(leaf: bytes, proof: Sequence[HashLike]) -> bytes:
    current = leaf
    for sibling in proof:
        current = hash_pair(current, to_bytes32(sibling))
    return current


def verify(address: str, amount: int, proof: Sequence[HashLike], root: HashLike) -> bool:
    """True iff ``proof`` connects the (address, amount) leaf to ``root``."""
    try:
        expected = to_bytes32(root)
        computed = compute_root(leaf_hash(address, amount), proof)
    except ValueError:
        return False
    return computed == expected


def build_tree(leaves: Sequence[bytes]) -> list[list[bytes]]:
    """
    Build all levels of a sorted-pair tree, leaves first.

    An unpaired node at the end of a level is promoted unchanged.
    """
    if not leaves:
        raise ValueError("Cannot build a Merkle tree without leaves")

    levels = [list(leaves)]
    while len(levels[-1]) > 1:
        level = levels[-1]
        parents = []
        for i in range(0, len(level) - 1, 2):
            parents.append(hash_pair(level[i], level[i + 1]))
        if len(level) % 2:
            parents.append(level[-1])
        levels.append(parents)
    return levels


def build_proof(levels: list[list[bytes]], index: int) -> list[bytes]:
    """Sibling hashes from leaf ``index`` up to the root."""
    proof = []
    for level in levels[:-1]:
        sibling = index ^ 1
        if sibling < len(level):
            proof.append(level[sibling])
        index //= 2
    return proof


def root_hex(levels: list[list[bytes]]) -> str:
    return "0x" + levels[-1][0].hex()

