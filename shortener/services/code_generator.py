"""
Short Code Generator

Produces random fixed-length codes from a configurable alphabet.

Design Decisions:
- Random, not counter-based: codes do not reveal how many links exist
- 62-character alphabet, length 6: 62^6 (about 56.8 billion) codes
- Randomness provider is injectable so allocation can be made deterministic
  in tests; production uses the OS CSPRNG via secrets.SystemRandom
"""

import random
import secrets
from typing import Optional

from shortener.core.setting import DEFAULT_ALPHABET

DEFAULT_CODE_LENGTH = 6


def generate_code(
    length: int = DEFAULT_CODE_LENGTH,
    alphabet: str = DEFAULT_ALPHABET,
    rng: Optional[random.Random] = None
) -> str:
    """
    Generate one random code.

    Each character is drawn independently and uniformly from alphabet.

    Raises:
        ValueError: If length is not positive or alphabet is empty
    """
    if length <= 0:
        raise ValueError(f"Code length must be positive, got {length}")
    if not alphabet:
        raise ValueError("Code alphabet must not be empty")

    rng = rng or secrets.SystemRandom()
    return ''.join(rng.choice(alphabet) for _ in range(length))


class CodeGenerator:
    """
    Configured code generator.

    Configuration is checked once at construction, so a misconfigured
    service fails on startup instead of on the first request.
    """

    def __init__(
        self,
        length: int = DEFAULT_CODE_LENGTH,
        alphabet: str = DEFAULT_ALPHABET,
        rng: Optional[random.Random] = None
    ):
        if length <= 0:
            raise ValueError(f"Code length must be positive, got {length}")
        if not alphabet:
            raise ValueError("Code alphabet must not be empty")
        if len(set(alphabet)) != len(alphabet):
            raise ValueError("Code alphabet must not contain duplicate characters")

        self.length = length
        self.alphabet = alphabet
        self.rng = rng or secrets.SystemRandom()

    @property
    def code_space(self) -> int:
        """Number of distinct codes this generator can produce."""
        return len(self.alphabet) ** self.length

    def generate(self) -> str:
        return generate_code(self.length, self.alphabet, self.rng)
