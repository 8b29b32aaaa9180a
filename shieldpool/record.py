"""TransactionRecord — the canonical description of a value movement."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

from .crypto import (
    FIELD_MODULUS,
    PUBLIC_KEY_BYTES,
    check_amount,
    commit,
    public_key_to_fields,
)


@dataclass(frozen=True)
class TransactionRecord:
    """A signed-over, hashable movement of ``amount`` from sender to recipient.

    The field order (sender, recipient, amount, nonce) is the wire contract:
    it is exactly what gets hashed and signed.

    Usage::

        record = TransactionRecord(
            sender=alice_pub,
            recipient=bob_pub,
            amount=1_000_000_000,
            nonce=pool.next_nonce,
        )
        record.commitment   # hex SHA-256 of record.to_fields()
    """

    sender: bytes
    recipient: bytes
    amount: int
    nonce: int

    def __post_init__(self) -> None:
        for name in ("sender", "recipient"):
            key = getattr(self, name)
            if not isinstance(key, bytes) or len(key) != PUBLIC_KEY_BYTES:
                raise ValueError(f"{name} must be a {PUBLIC_KEY_BYTES}-byte public key")
        check_amount(self.amount)
        if isinstance(self.nonce, bool) or not isinstance(self.nonce, int):
            raise ValueError("nonce must be an integer")
        if not 0 <= self.nonce < FIELD_MODULUS:
            raise ValueError(f"nonce out of field range: {self.nonce}")

    def to_fields(self) -> list[int]:
        """Encode as the ordered field sequence that is signed and committed."""
        return [
            *public_key_to_fields(self.sender),
            *public_key_to_fields(self.recipient),
            self.amount,
            self.nonce,
        ]

    @property
    def commitment(self) -> str:
        """Commitment hash binding this record."""
        return commit(self.to_fields())

    def to_dict(self) -> dict[str, Any]:
        """Serialize record to a JSON-safe dictionary."""
        return {
            "sender": base64.b64encode(self.sender).decode("ascii"),
            "recipient": base64.b64encode(self.recipient).decode("ascii"),
            "amount": self.amount,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransactionRecord":
        """Deserialize record from a dictionary."""
        return cls(
            sender=base64.b64decode(data["sender"]),
            recipient=base64.b64decode(data["recipient"]),
            amount=data["amount"],
            nonce=data["nonce"],
        )


def encode(record: TransactionRecord) -> list[int]:
    """Field encoding of a record."""
    return record.to_fields()
