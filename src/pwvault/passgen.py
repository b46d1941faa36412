#!/usr/bin/env python3
"""Password generator for the ``gen`` command."""

import secrets
from typing import List

from .secure import SecretBytes

# Look-alike characters (I, l, 1, 0, O) are left out
UPPERS = b"ABCDEFGHJKLMNPQRSTUVWXYZ"
LOWERS = b"abcdefghijkmnopqrstuvwxyz"
DIGITS = b"23456789"
SPECIALS = b"!@#$%^&*()[]{}-_=+:;,.?/"


def gen_password(
    length: int = 20,
    upper: bool = True,
    lower: bool = True,
    digits: bool = True,
    specials: bool = True,
) -> SecretBytes:
    """Generate a random password containing every enabled character class.

    Raises:
        ValueError: If every class is disabled, or ``length`` is shorter
            than the number of enabled classes

    """
    classes: List[bytes] = [
        alphabet
        for alphabet, enabled in (
            (UPPERS, upper),
            (LOWERS, lower),
            (DIGITS, digits),
            (SPECIALS, specials),
        )
        if enabled
    ]
    if not classes:
        raise ValueError("All character classes disabled. Enable at least one class.")
    if length < len(classes):
        raise ValueError(
            f"Length {length} too short for {len(classes)} required classes."
        )

    union = b"".join(classes)
    buf = bytearray(length)
    password = SecretBytes.adopt(buf)

    # One from each class, then fill from the union
    for i, alphabet in enumerate(classes):
        buf[i] = alphabet[secrets.randbelow(len(alphabet))]
    for i in range(len(classes), length):
        buf[i] = union[secrets.randbelow(len(union))]

    # Fisher-Yates
    for i in range(length - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        buf[i], buf[j] = buf[j], buf[i]

    return password
