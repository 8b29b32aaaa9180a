"""PoolLedger — the shielded pool's state machine.

The whole durable state is two scalars:

    pool_balance   value held in custody, 0 <= pool_balance <= max_balance
    next_nonce     the nonce the next exit must carry, +1 per exit

Value enters through ``deposit`` (authenticated intent, no proof) and leaves
through ``withdraw`` / ``claim`` (a VerifiedTransaction whose record carries
exactly ``next_nonce``). All checks run before any state changes. An exit's
debit and nonce advance are in place before the base ledger is asked to pay,
so nothing reached from inside the payout can spend the same artifact again.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator

from .config import PoolConfig
from .crypto import check_amount, deposit_fields
from .errors import (
    BaseLedgerFailure,
    InsufficientFunds,
    InsufficientPoolBalance,
    NonceMismatch,
    Overflow,
    PoolError,
    RecordMismatch,
    SignatureInvalid,
    TransitionInProgress,
)
from .journal import PoolJournal
from .ledger import BaseLedgerAdapter
from .record import TransactionRecord
from .signature import verify_signature
from .verifier import ProofVerifier, SignatureProofVerifier, VerifiedTransaction

logger = logging.getLogger(__name__)


def _describe(address: Any) -> str:
    return address.hex() if isinstance(address, bytes) else repr(address)


@dataclass(frozen=True)
class PoolState:
    """Immutable snapshot of the pool. ``version`` counts committed transitions."""

    pool_balance: int = 0
    next_nonce: int = 1
    version: int = 0

    def __post_init__(self) -> None:
        for name in ("pool_balance", "next_nonce", "version"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

    def to_dict(self) -> dict[str, int]:
        return {
            "pool_balance": self.pool_balance,
            "next_nonce": self.next_nonce,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PoolState":
        return cls(
            pool_balance=data["pool_balance"],
            next_nonce=data["next_nonce"],
            version=data.get("version", 0),
        )


@dataclass(frozen=True)
class PoolEvent:
    """Notification emitted after a committed transition.

    ``address`` is the depositor for deposits and the recipient for exits.
    """

    kind: str
    address: bytes
    amount: int
    state: PoolState = field(default_factory=PoolState)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "address": self.address.hex(),
            "amount": self.amount,
            "state": self.state.to_dict(),
        }


class PoolLedger:
    """A single shielded pool.

    Usage::

        pool = PoolLedger(adapter=CustodyAdapter(ledger, pool_address))
        pool.deposit(alice_pub, commitment, 5_000_000_000, deposit_sig)

        verified = prove(record, alice_priv)
        pool.claim(verified)
    """

    def __init__(
        self,
        adapter: BaseLedgerAdapter,
        verifier: ProofVerifier | None = None,
        config: PoolConfig | None = None,
        state: PoolState | None = None,
        journal: PoolJournal | None = None,
        pool_id: str | None = None,
    ) -> None:
        self.config = config or PoolConfig()
        self.adapter = adapter
        self.verifier = verifier or SignatureProofVerifier()
        self.id = pool_id or uuid.uuid4().hex[:12]
        self._state = state or PoolState(next_nonce=self.config.initial_nonce)
        if self._state.pool_balance > self.config.max_balance:
            raise ValueError("Initial pool balance exceeds configured maximum")
        self.journal = journal if journal is not None else PoolJournal()
        self._subscribers: list[Callable[[PoolEvent], None]] = []
        self._lock = threading.RLock()
        self._paying = False

    # ── read-only accessors ──────────────────────────────────────────

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def pool_balance(self) -> int:
        return self._state.pool_balance

    @property
    def next_nonce(self) -> int:
        return self._state.next_nonce

    def subscribe(self, callback: Callable[[PoolEvent], None]) -> None:
        """Register a callback for deposit / withdraw / claim notifications."""
        self._subscribers.append(callback)

    # ── transitions ──────────────────────────────────────────────────

    def deposit(
        self,
        sender: bytes,
        commitment_hash: str,
        amount: int,
        signature: str,
    ) -> PoolState:
        """Account for ``amount`` entering the pool.

        The depositor must already have moved ``amount`` into the pool's
        custody account on the base ledger.

        Raises:
            InvalidAmount: If amount is not a positive unsigned 64-bit value.
            SignatureInvalid: If the hash is malformed or ``signature`` is not
                ``sender``'s over (hash, amount).
            Overflow: If the pool balance would exceed ``max_balance``.
            TransitionInProgress: If called from inside an exit's payout.
        """
        with self._transition("deposit"):
            try:
                check_amount(amount)
                try:
                    message = deposit_fields(commitment_hash, amount)
                except ValueError as exc:
                    raise SignatureInvalid(
                        f"Malformed commitment hash: {exc}",
                        data={"sender": _describe(sender)},
                    ) from exc
                if not verify_signature(sender, message, signature):
                    raise SignatureInvalid(
                        "Deposit signature does not verify for sender",
                        data={"sender": _describe(sender)},
                    )
                current = self._state
                new_balance = current.pool_balance + amount
                if new_balance > self.config.max_balance:
                    raise Overflow(
                        f"Deposit of {amount} would exceed pool maximum",
                        data={"pool_balance": current.pool_balance, "amount": amount},
                    )
            except PoolError as exc:
                logger.warning("Rejected deposit: %s", exc)
                raise

            new_state = replace(
                current, pool_balance=new_balance, version=current.version + 1
            )
            self._state = new_state
            self._record("deposit", new_state, sender, amount)
            return new_state

    def withdraw(
        self,
        verified: VerifiedTransaction,
        recipient: bytes,
        amount: int,
    ) -> PoolState:
        """Exit the pool with explicit payout parameters.

        ``recipient`` and ``amount`` must equal the verified record's own
        fields; payouts are never redirected away from what was signed.

        Raises:
            ProofInvalid: If the artifact fails re-verification.
            RecordMismatch: If recipient or amount differ from the record.
            NonceMismatch: If the record's nonce is not ``next_nonce``.
            InsufficientPoolBalance: If amount exceeds the pool balance.
            BaseLedgerFailure: If the payout fails (see :meth:`_exit`).
            TransitionInProgress: If called from inside another exit's payout.
        """
        with self._transition("withdraw"):
            record = self._authorize(verified)
            if recipient != record.recipient or amount != record.amount:
                exc = RecordMismatch(
                    "Withdrawal parameters do not match the verified record",
                    data={"nonce": record.nonce},
                )
                logger.warning("Rejected withdraw: %s", exc)
                raise exc
            return self._exit("withdraw", record)

    def claim(self, verified: VerifiedTransaction) -> PoolState:
        """Exit the pool paying the verified record's recipient its amount.

        Raises the same errors as :meth:`withdraw`, except RecordMismatch.
        """
        with self._transition("claim"):
            record = self._authorize(verified)
            return self._exit("claim", record)

    # ── internals ────────────────────────────────────────────────────

    @contextmanager
    def _transition(self, operation: str) -> Iterator[None]:
        """Serialize transitions and refuse re-entry during a payout."""
        with self._lock:
            if self._paying:
                exc = TransitionInProgress(
                    f"Cannot {operation} while an exit payout is in flight"
                )
                logger.warning("Rejected %s: %s", operation, exc)
                raise exc
            yield

    def _authorize(self, verified: VerifiedTransaction) -> TransactionRecord:
        """Re-verify the artifact and enforce the nonce binding."""
        try:
            self.verifier.check(verified)
            record = verified.record
            expected = self._state.next_nonce
            if record.nonce != expected:
                reason = "already consumed" if record.nonce < expected else "not yet valid"
                raise NonceMismatch(
                    f"Record nonce {record.nonce} {reason}; pool expects {expected}",
                    data={"nonce": record.nonce, "expected": expected},
                )
        except PoolError as exc:
            logger.warning("Rejected exit: %s", exc)
            raise
        return record

    def _exit(self, operation: str, record: TransactionRecord) -> PoolState:
        """Debit, advance the nonce, then pay.

        A declared refusal from the ledger (InsufficientFunds) means nothing
        moved, so the debit is reversed and the artifact stays usable. Any
        other failure leaves the outcome unknown; the debit stays committed so
        the artifact cannot be replayed, and the failure is logged for an
        operator to reconcile.
        """
        current = self._state
        if record.amount > current.pool_balance:
            exc = InsufficientPoolBalance(
                f"Pool holds {current.pool_balance}, exit needs {record.amount}",
                data={"pool_balance": current.pool_balance, "amount": record.amount},
            )
            logger.warning("Rejected %s: %s", operation, exc)
            raise exc

        pending = PoolState(
            pool_balance=current.pool_balance - record.amount,
            next_nonce=current.next_nonce + 1,
            version=current.version + 1,
        )
        self._state = pending
        self._paying = True
        try:
            self.adapter.send(record.recipient, record.amount)
        except InsufficientFunds as exc:
            self._state = current
            logger.error(
                "Base ledger refused payout for pool %s nonce=%d amount=%d: %s",
                self.id, record.nonce, record.amount, exc,
            )
            raise BaseLedgerFailure(
                "Base ledger refused payout; pool state unchanged",
                data=self._failure_data(record, committed=False),
            ) from exc
        except Exception as exc:
            logger.error(
                "Payout outcome unknown for pool %s nonce=%d amount=%d; "
                "debit kept, reconcile custody: %s",
                self.id, record.nonce, record.amount, exc,
            )
            self._record(operation, pending, record.recipient, record.amount, confirmed=False)
            raise BaseLedgerFailure(
                "Payout outcome unknown; debit kept and nonce consumed",
                data=self._failure_data(record, committed=True),
            ) from exc
        finally:
            self._paying = False

        self._record(operation, pending, record.recipient, record.amount)
        return pending

    @staticmethod
    def _failure_data(record: TransactionRecord, committed: bool) -> dict[str, Any]:
        return {
            "nonce": record.nonce,
            "amount": record.amount,
            "recipient": record.recipient.hex(),
            "committed": committed,
        }

    def _record(
        self,
        operation: str,
        new_state: PoolState,
        address: bytes,
        amount: int,
        confirmed: bool = True,
    ) -> None:
        """Journal and announce a state that is already in place."""
        if self.config.journal:
            metadata: dict[str, Any] = {"address": address.hex(), "amount": amount}
            if not confirmed:
                metadata["confirmed"] = False
            self.journal.append(operation, new_state.to_dict(), metadata=metadata)
        logger.debug(
            "Applied %s: %s amount=%d balance=%d next_nonce=%d",
            operation,
            address.hex()[:8],
            amount,
            new_state.pool_balance,
            new_state.next_nonce,
        )
        if not confirmed:
            return
        event = PoolEvent(kind=operation, address=address, amount=amount, state=new_state)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Pool subscriber failed on %s event", operation)

    def to_dict(self) -> dict[str, Any]:
        """Serialize pool state, config and journal."""
        return {
            "id": self.id,
            "state": self._state.to_dict(),
            "config": self.config.to_dict(),
            "journal": self.journal.to_list(),
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        adapter: BaseLedgerAdapter,
        verifier: ProofVerifier | None = None,
    ) -> "PoolLedger":
        """Restore a pool. The adapter and verifier are supplied by the caller."""
        return cls(
            adapter=adapter,
            verifier=verifier,
            config=PoolConfig.from_dict(data.get("config", {})),
            state=PoolState.from_dict(data["state"]),
            journal=PoolJournal.from_list(data.get("journal", [])),
            pool_id=data["id"],
        )
