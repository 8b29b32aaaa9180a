"""Proof verification — binding a commitment hash to a signed record.

A :class:`VerifiedTransaction` certifies two facts:

    signature   was produced by ``record.sender`` over ``record.to_fields()``
    hash        equals ``commit(record.to_fields())``

The pool never takes an artifact's word for it. It hands the artifact back
to its verifier at consumption time, because the artifact may have been
built long before, elsewhere, or deserialized from untrusted input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .crypto import commit
from .errors import ProofInvalid
from .record import TransactionRecord
from .signature import public_key_of, sign_fields, verify_signature

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedTransaction:
    """A record together with the hash and signature that were verified for it."""

    hash: str
    record: TransactionRecord
    signature: str

    def verify(self) -> None:
        """Re-check commitment and signature. Raises ProofInvalid."""
        _check(self.hash, self.record, self.signature)

    @property
    def valid(self) -> bool:
        try:
            self.verify()
        except ProofInvalid:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "record": self.record.to_dict(),
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VerifiedTransaction":
        """Rebuild an artifact from transport form.

        The result is untrusted until a verifier checks it.
        """
        return cls(
            hash=data["hash"],
            record=TransactionRecord.from_dict(data["record"]),
            signature=data["signature"],
        )


@runtime_checkable
class ProofVerifier(Protocol):
    """The verification capability the pool consumes."""

    def verify(
        self, hash: str, record: TransactionRecord, signature: str
    ) -> VerifiedTransaction:
        ...

    def check(self, verified: VerifiedTransaction) -> None:
        ...


def _check(hash: str, record: TransactionRecord, signature: str) -> None:
    expected = commit(record.to_fields())
    if hash != expected:
        raise ProofInvalid(
            "Commitment hash does not match record",
            data={"hash": hash, "expected": expected},
        )
    if not verify_signature(record.sender, record.to_fields(), signature):
        raise ProofInvalid("Record signature does not verify for sender")


class SignatureProofVerifier:
    """Verifies records by recomputing the commitment and checking the signature."""

    def verify(
        self, hash: str, record: TransactionRecord, signature: str
    ) -> VerifiedTransaction:
        """Produce a verified artifact, or raise ProofInvalid."""
        _check(hash, record, signature)
        logger.debug("Verified record %s nonce=%d", hash[:16], record.nonce)
        return VerifiedTransaction(hash=hash, record=record, signature=signature)

    def check(self, verified: VerifiedTransaction) -> None:
        """Re-verify an artifact at consumption time."""
        if not isinstance(verified, VerifiedTransaction):
            raise ProofInvalid(
                f"Expected VerifiedTransaction, got {type(verified).__name__}"
            )
        _check(verified.hash, verified.record, verified.signature)


def sign_record(record: TransactionRecord, private_key: bytes) -> str:
    """Sign a record as its sender.

    Raises:
        ValueError: If the key does not belong to ``record.sender``.
    """
    if public_key_of(private_key) != record.sender:
        raise ValueError("Private key does not match record sender")
    return sign_fields(record.to_fields(), private_key)


def prove(
    record: TransactionRecord,
    private_key: bytes,
    verifier: ProofVerifier | None = None,
) -> VerifiedTransaction:
    """Sign, commit and verify a record in one step."""
    verifier = verifier or SignatureProofVerifier()
    signature = sign_record(record, private_key)
    return verifier.verify(record.commitment, record, signature)
