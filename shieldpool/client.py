"""PoolClient — the depositor's and withdrawer's side of the protocol.

A deposit is two halves of one submission: the public transfer into the
pool's custody account on the base ledger, and the pool's accounting of it.
The client performs both and reverses the transfer if the pool refuses.
"""

from __future__ import annotations

import logging
import secrets

from .crypto import FIELD_MODULUS, commit, deposit_fields
from .errors import PoolError
from .ledger import InMemoryLedger
from .pool import PoolLedger, PoolState
from .record import TransactionRecord
from .signature import public_key_of, sign_fields
from .verifier import VerifiedTransaction, prove

logger = logging.getLogger(__name__)


class PoolClient:
    """Drives a pool on behalf of key holders."""

    def __init__(self, pool: PoolLedger, ledger: InMemoryLedger, custody: bytes) -> None:
        self.pool = pool
        self.ledger = ledger
        self.custody = custody

    def deposit(
        self,
        private_key: bytes,
        amount: int,
        commitment_hash: str | None = None,
    ) -> PoolState:
        """Move ``amount`` from the key's public balance into the pool.

        Without an explicit commitment a fresh random one is used.
        """
        sender = public_key_of(private_key)
        if commitment_hash is None:
            commitment_hash = commit([secrets.randbelow(FIELD_MODULUS)])
        signature = sign_fields(deposit_fields(commitment_hash, amount), private_key)

        self.ledger.transfer(sender, self.custody, amount)
        try:
            return self.pool.deposit(sender, commitment_hash, amount, signature)
        except PoolError:
            logger.info("Pool rejected deposit; returning %d to depositor", amount)
            self.ledger.transfer(self.custody, sender, amount)
            raise

    def prepare(
        self,
        private_key: bytes,
        recipient: bytes,
        amount: int,
        nonce: int | None = None,
    ) -> VerifiedTransaction:
        """Build and prove a record bound to the pool's current nonce."""
        record = TransactionRecord(
            sender=public_key_of(private_key),
            recipient=recipient,
            amount=amount,
            nonce=self.pool.next_nonce if nonce is None else nonce,
        )
        return prove(record, private_key, self.pool.verifier)

    def withdraw(self, verified: VerifiedTransaction) -> PoolState:
        """Submit an exit, restating the record's recipient and amount."""
        record = verified.record
        return self.pool.withdraw(verified, record.recipient, record.amount)

    def claim(self, verified: VerifiedTransaction) -> PoolState:
        return self.pool.claim(verified)
