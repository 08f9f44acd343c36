from __future__ import annotations

import secrets

CHAR_LOWER = "abcdefghijklmnopqrstuvwxyz"
CHAR_UPPER = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
CHAR_DIGITS = "0123456789"
CHAR_ALPHANUMERIC = CHAR_UPPER + CHAR_LOWER + CHAR_DIGITS
# Letters and digits minus the ones that are easy to confuse when read aloud
# or typed from a screen (0/O, 1/l/I, h, u/U, v/V)
CHAR_HUMAN_READABLE = "abcdefgijkmnopqrstwxyzABCDEFGHJKLMNPQRSTWXYZ23456789"

DEVICE_TOKEN_GROUPS = 5
DEVICE_TOKEN_GROUP_LENGTH = 5


class SecureRandom:
    """Random strings drawn from the operating system CSPRNG."""

    def generate(self, length: int, characters: str = CHAR_ALPHANUMERIC) -> str:
        if length < 1:
            raise ValueError("length must be positive")
        if not characters:
            raise ValueError("character set must not be empty")
        return "".join(secrets.choice(characters) for _ in range(length))


def generate_device_token(random: SecureRandom) -> str:
    """Return a 25 character device password.

    Example: AbCdE-fGhJk-MnPqR-sTwXy-23456
    """
    groups = [
        random.generate(DEVICE_TOKEN_GROUP_LENGTH, CHAR_HUMAN_READABLE)
        for _ in range(DEVICE_TOKEN_GROUPS)
    ]
    return "-".join(groups)
