"""RelayProxy — signature-authorized forwarding through a custody account.

A sender parks value with the relay (``receive``) and later has the relay pay
it onward to any recipient (``proxy_transfer``). Unlike the pool, the relay
is not shielded: credit is tracked per sender and every order is an Ed25519
signature by that sender.

Each sender has its own order counter. Both kinds of order sign the counter's
current value, so a receive or send signature is good for exactly one use.
Relay messages start with a domain field, so a relay signature never verifies
as a deposit intent or a transaction record, and vice versa.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from .crypto import UINT64_MAX, check_amount, domain_field, public_key_to_fields
from .errors import (
    BaseLedgerFailure,
    InsufficientFunds,
    Overflow,
    PoolError,
    SignatureInvalid,
    TransitionInProgress,
)
from .ledger import BaseLedgerAdapter
from .signature import verify_signature

logger = logging.getLogger(__name__)

RECEIVE_TAG = "relay/receive"
SEND_TAG = "relay/send"


def receive_fields(amount: int, nonce: int) -> list[int]:
    """The message a sender signs to credit ``amount`` they moved into custody."""
    return [domain_field(RECEIVE_TAG), check_amount(amount), nonce]


def send_fields(recipient: bytes, amount: int, nonce: int) -> list[int]:
    """The message a sender signs to have ``amount`` paid to ``recipient``."""
    return [
        domain_field(SEND_TAG),
        *public_key_to_fields(recipient),
        check_amount(amount),
        nonce,
    ]


@dataclass(frozen=True)
class RelayEvent:
    """Emitted after a committed receive or send.

    ``recipient`` is ``None`` for receives.
    """

    kind: str
    sender: bytes
    amount: int
    recipient: bytes | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "sender": self.sender.hex(),
            "amount": self.amount,
            "recipient": self.recipient.hex() if self.recipient else None,
        }


class RelayProxy:
    """Forwards value from its custody account on senders' signed orders."""

    def __init__(self, adapter: BaseLedgerAdapter, initial_nonce: int = 1) -> None:
        self.adapter = adapter
        self.initial_nonce = initial_nonce
        self.total_relayed = 0
        self._credit: dict[bytes, int] = {}
        self._nonces: dict[bytes, int] = {}
        self._subscribers: list[Callable[[RelayEvent], None]] = []
        self._lock = threading.RLock()
        self._paying = False

    def credit_of(self, sender: bytes) -> int:
        return self._credit.get(sender, 0)

    def nonce_of(self, sender: bytes) -> int:
        """The nonce ``sender``'s next order must sign."""
        return self._nonces.get(sender, self.initial_nonce)

    @property
    def total_held(self) -> int:
        """Credit received and not yet forwarded, across all senders."""
        return sum(self._credit.values())

    def subscribe(self, callback: Callable[[RelayEvent], None]) -> None:
        self._subscribers.append(callback)

    def receive(self, sender: bytes, amount: int, signature: str) -> int:
        """Credit ``sender`` for value already moved into the relay's custody.

        Returns the sender's new credit.

        Raises:
            InvalidAmount: If amount is not a positive unsigned 64-bit value.
            SignatureInvalid: If the signature is not ``sender``'s current order.
            Overflow: If the sender's credit would leave the 64-bit range.
        """
        with self._guard("receive"):
            try:
                check_amount(amount)
                nonce = self.nonce_of(sender)
                self._check_signature(sender, receive_fields(amount, nonce), signature)
                credit = self.credit_of(sender) + amount
                if credit > UINT64_MAX:
                    raise Overflow("Relay credit would exceed unsigned 64-bit range")
            except PoolError as exc:
                logger.warning("Rejected relay receive: %s", exc)
                raise
            self._credit[sender] = credit
            self._nonces[sender] = nonce + 1
            self._notify(RelayEvent("relay-receive", sender, amount))
            return credit

    def proxy_transfer(
        self,
        sender: bytes,
        recipient: bytes,
        amount: int,
        signature: str,
    ) -> int:
        """Pay ``amount`` of ``sender``'s credit to ``recipient``.

        Credit and nonce are taken before the payout. A declared refusal from
        the base ledger gives both back; any other payout failure keeps them
        taken and is reported with ``committed=True``.

        Returns the sender's remaining credit.

        Raises:
            InvalidAmount: If amount is not a positive unsigned 64-bit value.
            SignatureInvalid: If the signature is not ``sender``'s current order.
            InsufficientFunds: If the sender's credit is below ``amount``.
            BaseLedgerFailure: If the payout fails.
            TransitionInProgress: If called from inside another payout.
        """
        with self._guard("proxy_transfer"):
            try:
                check_amount(amount)
                nonce = self.nonce_of(sender)
                try:
                    message = send_fields(recipient, amount, nonce)
                except (TypeError, ValueError) as exc:
                    raise SignatureInvalid(f"Malformed relay order: {exc}") from exc
                self._check_signature(sender, message, signature)
                credit = self.credit_of(sender)
                if credit < amount:
                    raise InsufficientFunds(
                        f"Relay credit {credit} does not cover {amount}",
                        data={"available": credit, "amount": amount},
                    )
            except PoolError as exc:
                logger.warning("Rejected relay send: %s", exc)
                raise

            self._credit[sender] = credit - amount
            self._nonces[sender] = nonce + 1
            self._paying = True
            try:
                self.adapter.send(recipient, amount)
            except InsufficientFunds as exc:
                self._credit[sender] = credit
                self._nonces[sender] = nonce
                logger.error("Base ledger refused relay payout of %d: %s", amount, exc)
                raise BaseLedgerFailure(
                    "Base ledger refused relay payout; credit restored",
                    data={"amount": amount, "nonce": nonce, "committed": False},
                ) from exc
            except Exception as exc:
                logger.error(
                    "Relay payout outcome unknown for %s nonce=%d amount=%d: %s",
                    sender.hex()[:8], nonce, amount, exc,
                )
                raise BaseLedgerFailure(
                    "Relay payout outcome unknown; credit kept debited",
                    data={"amount": amount, "nonce": nonce, "committed": True},
                ) from exc
            finally:
                self._paying = False

            self.total_relayed += amount
            self._notify(RelayEvent("relay-send", sender, amount, recipient))
            return credit - amount

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            if self._paying:
                exc = TransitionInProgress(
                    f"Cannot {operation} while a relay payout is in flight"
                )
                logger.warning("Rejected relay %s: %s", operation, exc)
                raise exc
            yield

    def _check_signature(self, sender: bytes, fields: list[int], signature: str) -> None:
        if not verify_signature(sender, fields, signature):
            described = sender.hex() if isinstance(sender, bytes) else repr(sender)
            raise SignatureInvalid(
                "Relay order signature does not verify for sender",
                data={"sender": described},
            )

    def _notify(self, event: RelayEvent) -> None:
        logger.debug("Relay %s amount=%d", event.kind, event.amount)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Relay subscriber failed on %s event", event.kind)
