"""Local JSON storage for pools.

A stored pool is only trusted if its state satisfies the pool invariants and,
when a journal is present, the journal is intact and ends in that state.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from .config import PoolConfig
from .errors import CorruptState
from .journal import PoolJournal
from .ledger import BaseLedgerAdapter
from .pool import PoolLedger, PoolState
from .verifier import ProofVerifier

logger = logging.getLogger(__name__)


def _read_json(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise CorruptState(f"{path.name} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CorruptState(f"{path.name} does not hold a pool object")
    return data


def check_pool_data(data: dict[str, Any]) -> PoolState:
    """Validate a serialized pool and return its state.

    Raises:
        CorruptState: If the state breaks an invariant, exceeds the configured
            maximum, or disagrees with the journal.
    """
    try:
        state = PoolState.from_dict(data["state"])
        config = PoolConfig.from_dict(data.get("config", {}))
        journal = PoolJournal.from_list(data.get("journal", []))
        pool_id = data["id"]
    except (KeyError, TypeError, ValueError) as exc:
        raise CorruptState(f"Invalid pool data: {exc}") from exc

    if state.pool_balance > config.max_balance:
        raise CorruptState(
            "Stored pool balance exceeds configured maximum",
            data={"pool_id": pool_id, "pool_balance": state.pool_balance},
        )
    if not journal.matches(state.to_dict()):
        _, break_index = journal.verify()
        raise CorruptState(
            "Stored state does not match its journal",
            data={"pool_id": pool_id, "break_index": break_index},
        )
    return state


class PoolStorage:
    """Persist pools (state, config, journal) to local JSON files."""

    def __init__(self, directory: str | Path = ".shieldpool") -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, pool_id: str) -> Path:
        return self.directory / f"{pool_id}.json"

    def save(self, pool: PoolLedger) -> Path:
        """Write a pool to disk atomically. Returns the file path."""
        path = self.path_for(pool.id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(pool.to_dict(), f, indent=2)
        os.replace(tmp, path)
        logger.debug("Saved pool %s to %s", pool.id, path)
        return path

    def load(
        self,
        pool_id: str,
        adapter: BaseLedgerAdapter,
        verifier: ProofVerifier | None = None,
    ) -> PoolLedger:
        """Load and validate a pool, wiring it to the given collaborators.

        Raises:
            FileNotFoundError: If no pool with this id is stored.
            CorruptState: If the stored data fails validation.
        """
        path = self.path_for(pool_id)
        if not path.exists():
            raise FileNotFoundError(f"Pool not found: {pool_id}")
        data = _read_json(path)
        try:
            check_pool_data(data)
        except CorruptState as exc:
            logger.error("Refusing to load pool %s: %s", pool_id, exc)
            raise
        return PoolLedger.from_dict(data, adapter=adapter, verifier=verifier)

    def list_pools(self) -> list[dict[str, Any]]:
        """Summarize every stored pool.

        Files that fail validation are listed with an ``error`` entry
        instead of their balances.
        """
        pools = []
        for path in sorted(self.directory.glob("*.json")):
            summary: dict[str, Any] = {"id": path.stem, "path": str(path)}
            try:
                state = check_pool_data(_read_json(path))
            except CorruptState as exc:
                logger.warning("Stored pool %s is corrupt: %s", path.stem, exc)
                summary["error"] = exc.to_dict()
            else:
                summary["pool_balance"] = state.pool_balance
                summary["next_nonce"] = state.next_nonce
            pools.append(summary)
        return pools

    def delete(self, pool_id: str) -> bool:
        """Delete a pool file. Returns True if deleted."""
        path = self.path_for(pool_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def exists(self, pool_id: str) -> bool:
        return self.path_for(pool_id).exists()
