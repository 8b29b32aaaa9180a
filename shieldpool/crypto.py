"""Field encoding and commitments for the shielded pool."""

from __future__ import annotations

import hashlib
from typing import Iterable, Sequence

from .errors import InvalidAmount

# Pallas base field: every encoded element must be strictly below this.
FIELD_MODULUS = 0x40000000000000000000000000000000224698FC094CF91B992D30ED00000001
FIELD_BYTES = 32
UINT64_MAX = (1 << 64) - 1

PUBLIC_KEY_BYTES = 32
LIMB_BYTES = 16

COMMIT_DOMAIN = b"shieldpool/commit/v1"


def check_amount(amount: int) -> int:
    """Validate an unsigned 64-bit, strictly positive amount."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Amount must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}", data={"amount": amount})
    if amount > UINT64_MAX:
        raise InvalidAmount(
            f"Amount exceeds unsigned 64-bit range: {amount}", data={"amount": amount}
        )
    return amount


def public_key_to_fields(public_key: bytes) -> list[int]:
    """Split a 32-byte public key into two 128-bit big-endian limbs.

    Both limbs are below 2**128, far under the field modulus, so the split
    is injective.
    """
    if len(public_key) != PUBLIC_KEY_BYTES:
        raise ValueError(
            f"Public key must be {PUBLIC_KEY_BYTES} bytes, got {len(public_key)}"
        )
    return [
        int.from_bytes(public_key[:LIMB_BYTES], "big"),
        int.from_bytes(public_key[LIMB_BYTES:], "big"),
    ]


def field_bytes(fields: Iterable[int]) -> bytes:
    """Concatenate field elements as fixed-width 32-byte big-endian words."""
    out = bytearray()
    for i, element in enumerate(fields):
        if not 0 <= element < FIELD_MODULUS:
            raise ValueError(f"Field element {i} out of range: {element}")
        out += element.to_bytes(FIELD_BYTES, "big")
    return bytes(out)


def commit(fields: Sequence[int]) -> str:
    """Commitment hash of an encoded record (hex SHA-256).

    A domain tag keeps record commitments distinct from any other SHA-256
    use in the system.
    """
    return hashlib.sha256(COMMIT_DOMAIN + field_bytes(fields)).hexdigest()


def hash_to_field(commitment_hash: str) -> int:
    """Reduce a 64-hex-digit commitment into a single field element.

    Raises:
        ValueError: If the hash is not a 64-character hex string.
    """
    if not isinstance(commitment_hash, str) or len(commitment_hash) != 64:
        raise ValueError("Commitment hash must be a 64-character hex string")
    try:
        value = int(commitment_hash, 16)
    except ValueError:
        raise ValueError(f"Commitment hash is not hex: {commitment_hash!r}") from None
    return value % FIELD_MODULUS


def deposit_fields(commitment_hash: str, amount: int) -> list[int]:
    """The message a depositor signs: ``[hash, amount]``."""
    return [hash_to_field(commitment_hash), check_amount(amount)]


def domain_field(tag: str) -> int:
    """Derive a fixed field element that separates one signed message kind from another."""
    digest = hashlib.sha256(f"shieldpool/{tag}".encode("utf-8")).digest()
    return int.from_bytes(digest, "big") % FIELD_MODULUS
