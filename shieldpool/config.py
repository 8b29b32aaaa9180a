"""Pool configuration."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from .crypto import UINT64_MAX

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class PoolConfig:
    """Settings for one pool instance."""

    max_balance: int = UINT64_MAX
    initial_nonce: int = 1
    journal: bool = True
    storage_dir: str = ".shieldpool"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 < self.max_balance <= UINT64_MAX:
            raise ValueError(f"max_balance must be in (0, {UINT64_MAX}], got {self.max_balance}")
        if self.initial_nonce < 0:
            raise ValueError(f"initial_nonce must be non-negative, got {self.initial_nonce}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PoolConfig":
        """Build a config, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", sorted(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, path: str | Path) -> "PoolConfig":
        """Load a config from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def configure_logging(config: PoolConfig) -> logging.Logger:
    """Attach a stream handler to the package logger at the configured level."""
    pkg_logger = logging.getLogger("shieldpool")
    pkg_logger.setLevel(config.log_level.upper())
    if not pkg_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        pkg_logger.addHandler(handler)
    return pkg_logger
