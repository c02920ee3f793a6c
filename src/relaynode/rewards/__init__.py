"""
Rewards - Epoch reward proofs and on-chain claiming.

Fetches per-node Merkle proofs from the reward backend, checks them locally
and submits claimReward transactions on a periodic loop.
"""
