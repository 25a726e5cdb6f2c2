from __future__ import annotations

import secrets
import string
from typing import Iterator, List, Sequence, TypeVar

T = TypeVar("T")

SHARE_CODE_ALPHABET = string.ascii_uppercase + string.digits


# PUBLIC_INTERFACE
def generate_share_code(length: int = 6) -> str:
    """
    Return a random invite code of ``length`` characters from A-Z0-9 with a
    dash after the first half, e.g. 'A1B-2C3'.
    """
    chars = [secrets.choice(SHARE_CODE_ALPHABET) for _ in range(length)]
    half = length // 2
    return "".join(chars[:half]) + "-" + "".join(chars[half:])


def normalize_share_code(code: str) -> str:
    return code.strip().upper()


# PUBLIC_INTERFACE
def chunked(values: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of ``values`` holding at most ``size`` items."""
    if size < 1:
        raise ValueError("size must be positive")
    for start in range(0, len(values), size):
        yield list(values[start:start + size])
