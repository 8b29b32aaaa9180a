"""shieldpool — a shielded value pool over a base account ledger."""

from .client import PoolClient
from .config import PoolConfig, configure_logging
from .crypto import FIELD_MODULUS, UINT64_MAX, commit, deposit_fields
from .errors import (
    BaseLedgerFailure,
    CorruptState,
    InsufficientFunds,
    InsufficientPoolBalance,
    InvalidAmount,
    NonceMismatch,
    Overflow,
    PoolError,
    ProofInvalid,
    RecordMismatch,
    SignatureInvalid,
    TransitionInProgress,
)
from .journal import PoolJournal
from .ledger import BaseLedgerAdapter, CustodyAdapter, InMemoryLedger
from .pool import PoolEvent, PoolLedger, PoolState
from .record import TransactionRecord, encode
from .relay import RelayEvent, RelayProxy, receive_fields, send_fields
from .signature import generate_keypair, public_key_of, sign_fields, verify_signature
from .storage import PoolStorage
from .verifier import (
    ProofVerifier,
    SignatureProofVerifier,
    VerifiedTransaction,
    prove,
    sign_record,
)

__version__ = "1.0.0"

__all__ = [
    "PoolLedger",
    "PoolState",
    "PoolEvent",
    "PoolClient",
    "PoolConfig",
    "PoolJournal",
    "PoolStorage",
    "RelayProxy",
    "RelayEvent",
    "TransactionRecord",
    "VerifiedTransaction",
    "ProofVerifier",
    "SignatureProofVerifier",
    "BaseLedgerAdapter",
    "InMemoryLedger",
    "CustodyAdapter",
    "FIELD_MODULUS",
    "UINT64_MAX",
    "encode",
    "commit",
    "deposit_fields",
    "receive_fields",
    "send_fields",
    "prove",
    "sign_record",
    "generate_keypair",
    "public_key_of",
    "sign_fields",
    "verify_signature",
    "configure_logging",
    "PoolError",
    "InvalidAmount",
    "SignatureInvalid",
    "ProofInvalid",
    "RecordMismatch",
    "NonceMismatch",
    "Overflow",
    "InsufficientPoolBalance",
    "InsufficientFunds",
    "BaseLedgerFailure",
    "TransitionInProgress",
    "CorruptState",
]
