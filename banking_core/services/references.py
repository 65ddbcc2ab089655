"""
Reference generation for transactions and transfers.

References are short, human-readable and unique within their table:
a prefix, the current time in base 36 and eight random hex digits.
Uniqueness is never assumed. Callers pre-check with ``unique()`` and
the UNIQUE column remains the final authority on insert.
"""

import logging
import time
import uuid
from typing import Callable

from banking_core.config import get_settings
from banking_core.errors import DuplicateReference

logger = logging.getLogger(__name__)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_reference(prefix: str = "TXN") -> str:
    """Return a new candidate reference such as ``IWTLX2K9Q1A3F9C0D2B``."""
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = uuid.uuid4().hex[:8].upper()
    return f"{prefix}{timestamp}{random_part}"


class ReferenceGenerator:
    """
    Produces references that are not yet used, according to ``exists``.

    The generator function is injectable so collision handling can be
    exercised deterministically.
    """

    def __init__(
        self,
        generator: Callable[[str], str] = generate_reference,
        max_attempts: int | None = None,
    ):
        self.generator = generator
        self.max_attempts = max_attempts or get_settings().REFERENCE_MAX_ATTEMPTS

    def unique(self, prefix: str, exists: Callable[[str], bool]) -> str:
        for attempt in range(1, self.max_attempts + 1):
            reference = self.generator(prefix)
            if not exists(reference):
                return reference
            logger.warning(
                "Reference collision on attempt %d", attempt,
                extra={"reference": reference},
            )
        raise DuplicateReference(
            f"Could not generate a unique {prefix} reference "
            f"after {self.max_attempts} attempts"
        )
