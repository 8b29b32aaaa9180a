"""PoolJournal — a hash-linked log of committed pool transitions.

Each entry captures one transition: X (digest of the state before) -> Y
(digest of the state after), with XY binding both to the operation and
timestamp.

The fundamental rule: Entry[N].x == Entry[N-1].y. First entry's x is
``GENESIS``. The journal is not needed for the pool's correctness; it exists
so an auditor can check that the persisted state is the product of an
unbroken sequence of deposits and exits.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from typing import Any

from .crypto import field_bytes

GENESIS = "GENESIS"

STATE_DOMAIN = b"shieldpool/state/v1"
LINK_DOMAIN = b"shieldpool/link/v1"


def state_digest(state: dict) -> str:
    """Digest of a pool state dict over its three scalars, in fixed order."""
    scalars = [state["pool_balance"], state["next_nonce"], state.get("version", 0)]
    return hashlib.sha256(STATE_DOMAIN + field_bytes(scalars)).hexdigest()


def link_digest(x: str, operation: str, y: str, timestamp: float) -> str:
    """Digest binding an entry to its predecessor, operation and time."""
    h = hashlib.sha256(LINK_DOMAIN)
    for part in (x, operation, y, repr(float(timestamp))):
        encoded = part.encode("utf-8")
        h.update(len(encoded).to_bytes(4, "big"))
        h.update(encoded)
    return h.hexdigest()


@dataclass
class JournalEntry:
    """A single committed transition."""

    index: int
    timestamp: float
    operation: str

    x: str
    y: str
    xy: str

    state: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "timestamp": self.timestamp,
            "operation": self.operation,
            "x": self.x,
            "y": self.y,
            "xy": self.xy,
            "state": self.state,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JournalEntry":
        return cls(
            index=data["index"],
            timestamp=data["timestamp"],
            operation=data["operation"],
            x=data["x"],
            y=data["y"],
            xy=data["xy"],
            state=data.get("state", {}),
            metadata=data.get("metadata", {}),
        )


def verify_entry(entry: JournalEntry) -> bool:
    """Check an entry's link digest and that ``y`` matches its recorded state."""
    try:
        if entry.y != state_digest(entry.state):
            return False
    except (KeyError, TypeError, ValueError):
        return False
    return entry.xy == link_digest(entry.x, entry.operation, entry.y, entry.timestamp)


def verify_journal(entries: list[JournalEntry]) -> tuple[bool, int | None]:
    """Verify an entire journal.

    Returns (True, None) if valid, or (False, break_index) if broken.
    """
    previous_y = GENESIS
    for i, entry in enumerate(entries):
        if entry.index != i or entry.x != previous_y or not verify_entry(entry):
            return False, i
        previous_y = entry.y
    return True, None


@dataclass
class PoolJournal:
    """Ordered, append-only transition log for one pool."""

    entries: list[JournalEntry] = field(default_factory=list)

    @property
    def head(self) -> str:
        """Y of the latest entry, or ``GENESIS`` when empty."""
        return self.entries[-1].y if self.entries else GENESIS

    def append(
        self,
        operation: str,
        state: dict,
        metadata: dict | None = None,
        timestamp: float | None = None,
    ) -> JournalEntry:
        """Append the state reached by ``operation``."""
        ts = timestamp if timestamp is not None else time.time()
        y = state_digest(state)
        entry = JournalEntry(
            index=len(self.entries),
            timestamp=ts,
            operation=operation,
            x=self.head,
            y=y,
            xy=link_digest(self.head, operation, y, ts),
            state=dict(state),
            metadata=metadata or {},
        )
        self.entries.append(entry)
        return entry

    def verify(self) -> tuple[bool, int | None]:
        return verify_journal(self.entries)

    def matches(self, state: dict) -> bool:
        """True if the journal is intact and ends in ``state``.

        An empty journal matches any state, since journaling can be disabled.
        """
        if not self.entries:
            return True
        valid, _ = self.verify()
        return valid and self.head == state_digest(state)

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.entries]

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> "PoolJournal":
        return cls(entries=[JournalEntry.from_dict(e) for e in data])

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> JournalEntry:
        return self.entries[index]

    def __iter__(self):
        return iter(self.entries)
