"""
Unique Short Code Allocator

Finds a code that no live link currently holds by generating candidates and
asking the store whether each one is taken.

The check is not exclusive: two concurrent allocations can pick the same free
code and both pass. The partial unique index on short_links is the real guard;
the registry retries the insert when it loses that race.
"""

import logging
from typing import Awaitable, Callable, Optional

from shortener.core.exceptions import CodeSpaceExhaustedError
from shortener.services.code_generator import CodeGenerator

logger = logging.getLogger(__name__)

CodeTakenCheck = Callable[[str], Awaitable[bool]]


class CodeAllocator:
    """Generate-and-check loop with a bounded number of attempts."""

    def __init__(self, generator: Optional[CodeGenerator] = None, max_attempts: int = 10):
        """
        Args:
            generator: Code generator (default: 6 chars, base62, system RNG)
            max_attempts: Candidates to try before giving up
        """
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self.generator = generator or CodeGenerator()
        self.max_attempts = max_attempts

    async def allocate(self, is_taken: CodeTakenCheck) -> str:
        """
        Return a code for which is_taken() answered False.

        Args:
            is_taken: Async predicate telling whether a live link holds a code

        Raises:
            CodeSpaceExhaustedError: If every attempt hit a taken code
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.generator.generate()
            if not await is_taken(candidate):
                if attempt > 1:
                    logger.info(f"Allocated short code after {attempt} attempts")
                return candidate
            logger.debug(f"Short code collision on attempt {attempt}")

        logger.error(f"No free short code found in {self.max_attempts} attempts")
        raise CodeSpaceExhaustedError(self.max_attempts)
