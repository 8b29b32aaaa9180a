"""Typed failures raised by the pool, its verifier and the base ledger.

Every error carries a stable machine-readable ``code`` and an optional
``data`` dict, so relays can report rejections without parsing messages.
"""

from __future__ import annotations

from typing import Any, Mapping


class PoolError(Exception):
    """Base class for all shieldpool errors."""

    default_code = "pool_error"

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.data: dict[str, Any] = dict(data) if data else {}

    def __str__(self) -> str:
        if self.message:
            return f"{self.code}: {self.message}"
        return self.code

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for a relay response."""
        d: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            d["data"] = self.data
        return d


class InvalidAmount(PoolError, ValueError):
    """Amount is zero, negative, or not representable as an unsigned 64-bit value."""

    default_code = "invalid_amount"


class SignatureInvalid(PoolError):
    """A deposit authorization signature did not verify."""

    default_code = "signature_invalid"


class ProofInvalid(PoolError):
    """A transaction record failed commitment or signature verification."""

    default_code = "proof_invalid"


class RecordMismatch(ProofInvalid):
    """Caller-supplied payout parameters differ from the verified record."""

    default_code = "record_mismatch"


class NonceMismatch(PoolError):
    """The record's nonce is not the pool's next expected nonce."""

    default_code = "nonce_mismatch"


class Overflow(PoolError):
    """A deposit would push the pool balance past its maximum."""

    default_code = "overflow"


class InsufficientPoolBalance(PoolError):
    """An exit asks for more than the pool holds."""

    default_code = "insufficient_pool_balance"


class InsufficientFunds(PoolError):
    """A base-ledger account cannot cover a transfer."""

    default_code = "insufficient_funds"


class BaseLedgerFailure(PoolError):
    """The payout failed after the pool authorized it.

    ``data["committed"]`` says whether the debit was kept (outcome unknown)
    or reversed (the ledger declared a refusal).
    """

    default_code = "base_ledger_failure"


class TransitionInProgress(PoolError):
    """A transition was submitted while another one is still paying out."""

    default_code = "transition_in_progress"


class CorruptState(PoolError):
    """Persisted pool data fails its invariants or disagrees with its journal."""

    default_code = "corrupt_state"
