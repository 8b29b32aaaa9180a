"""Base ledger — the account system that actually moves value.

The pool only ever talks to a :class:`BaseLedgerAdapter`. ``InMemoryLedger``
plus ``CustodyAdapter`` are a complete in-process base ledger, used for
tests and local simulation.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from .crypto import UINT64_MAX, check_amount
from .errors import InsufficientFunds, InvalidAmount

logger = logging.getLogger(__name__)


@runtime_checkable
class BaseLedgerAdapter(Protocol):
    """Pays out of the pool's custody account."""

    def send(self, address: bytes, amount: int) -> None:
        ...

    def account_balance(self, address: bytes) -> int:
        ...


class InMemoryLedger:
    """Dict-backed accounts with unsigned 64-bit balances."""

    def __init__(self) -> None:
        self._accounts: dict[bytes, int] = {}
        self._lock = threading.Lock()

    def balance(self, address: bytes) -> int:
        """Balance of an account; unknown accounts hold zero."""
        return self._accounts.get(address, 0)

    def fund(self, address: bytes, amount: int) -> int:
        """Mint ``amount`` into an account. Returns the new balance."""
        check_amount(amount)
        with self._lock:
            new_balance = self.balance(address) + amount
            if new_balance > UINT64_MAX:
                raise InvalidAmount("Funding would exceed account maximum")
            self._accounts[address] = new_balance
            return new_balance

    def transfer(self, source: bytes, destination: bytes, amount: int) -> None:
        """Move ``amount`` between accounts, all or nothing.

        Raises:
            InvalidAmount: If amount is not positive or the destination would overflow.
            InsufficientFunds: If the source cannot cover the amount.
        """
        check_amount(amount)
        with self._lock:
            available = self.balance(source)
            if available < amount:
                raise InsufficientFunds(
                    f"Insufficient funds: account has {available}, needs {amount}",
                    data={"available": available, "amount": amount},
                )
            if source != destination:
                if self.balance(destination) + amount > UINT64_MAX:
                    raise InvalidAmount("Transfer would exceed destination maximum")
                self._accounts[source] = available - amount
                self._accounts[destination] = self.balance(destination) + amount
        logger.debug(
            "Transfer %s -> %s amount=%d", source.hex()[:8], destination.hex()[:8], amount
        )


class CustodyAdapter:
    """Adapter that pays from one custody account on an ``InMemoryLedger``."""

    def __init__(self, ledger: InMemoryLedger, address: bytes) -> None:
        self.ledger = ledger
        self.address = address

    def send(self, address: bytes, amount: int) -> None:
        self.ledger.transfer(self.address, address, amount)

    def account_balance(self, address: bytes) -> int:
        return self.ledger.balance(address)
