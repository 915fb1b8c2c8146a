from __future__ import annotations

import secrets

# no 0/O or 1/I, they are easy to misread
CONFIRMATION_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CONFIRMATION_LENGTH = 6


def generate_confirmation_code() -> str:
    """Random code the user retypes before a critical action."""
    return "".join(secrets.choice(CONFIRMATION_ALPHABET) for _ in range(CONFIRMATION_LENGTH))
