"""
Chain - On-chain interaction layer for the reward contract.

Provides a rate-limited JSON-RPC client, a minimal ABI codec and
transaction utilities for the reward chain.

Uses httpx + eth-account instead of the heavyweight web3.py.
"""
