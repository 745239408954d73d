"""Provider identifiers and the reference forms accepted on the admin surface."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from verification_proxy.errors import InvalidProviderReference

HASH_LENGTH = 32
REFERENCE_PREFIX = "hash-"
PROVIDER_ID_PREFIX = "contract-package-"

DISAMBIGUATOR_LIMIT = 2 ** 256
AMOUNT_LIMIT = 2 ** 512

_HEX_RE = re.compile(r"[0-9a-fA-F]{%d}" % (HASH_LENGTH * 2))


@dataclass(frozen=True, order=True)
class ProviderId:
    """Opaque identifier of a deployed provider package."""

    value: bytes

    def __post_init__(self):
        if not isinstance(self.value, bytes) or len(self.value) != HASH_LENGTH:
            raise ValueError(f"ProviderId must be {HASH_LENGTH} bytes")

    def __str__(self) -> str:
        return PROVIDER_ID_PREFIX + self.value.hex()

    @classmethod
    def from_reference(cls, reference) -> "ProviderId":
        """Resolve a `hash-<hex>` key into a ProviderId.

        Raises:
            InvalidProviderReference: for any other key kind or a malformed digest.
        """
        if isinstance(reference, ProviderId):
            return reference
        if not isinstance(reference, str):
            raise InvalidProviderReference(reference, "reference must be a string")
        if not reference.startswith(REFERENCE_PREFIX):
            raise InvalidProviderReference(reference)
        digest = reference[len(REFERENCE_PREFIX):]
        if not _HEX_RE.fullmatch(digest):
            raise InvalidProviderReference(reference, f"expected {HASH_LENGTH * 2} hex characters")
        return cls(bytes.fromhex(digest))

    @classmethod
    def parse(cls, text: str) -> Optional["ProviderId"]:
        """Parse the stored `contract-package-<hex>` form. Returns None if malformed."""
        if not isinstance(text, str) or not text.startswith(PROVIDER_ID_PREFIX):
            return None
        digest = text[len(PROVIDER_ID_PREFIX):]
        if not _HEX_RE.fullmatch(digest):
            return None
        return cls(bytes.fromhex(digest))

    def as_reference(self) -> str:
        return REFERENCE_PREFIX + self.value.hex()


def validate_disambiguator(index: Optional[int]) -> Optional[int]:
    if index is None:
        return None
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < DISAMBIGUATOR_LIMIT:
        raise ValueError("index must be an unsigned 256-bit integer")
    return index


def validate_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or not 0 <= amount < AMOUNT_LIMIT:
        raise ValueError("amount must be an unsigned 512-bit integer")
    return amount
