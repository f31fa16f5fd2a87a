from __future__ import annotations

import secrets
import string

ALPHABET = string.ascii_lowercase + string.digits


def rand_string(length: int) -> str:
    """Return ``length`` random lowercase alphanumerics."""
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(ALPHABET) for _ in range(length))
