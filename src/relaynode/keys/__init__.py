"""Node key loading and ECDSA signing."""
