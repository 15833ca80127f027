# src/flashloan_arb/state.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class AutomationStats:
    """Counters reported by AutomationLoop.status()."""

    blocks_scanned: int = 0
    opportunities_found: int = 0
    executions_attempted: int = 0
    executions_succeeded: int = 0
    executions_failed: int = 0
    skipped_duplicate: int = 0
    skipped_in_flight: int = 0
    last_block: Optional[int] = None
    total_profit_usd: float = 0.0
    started_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocks_scanned": self.blocks_scanned,
            "opportunities_found": self.opportunities_found,
            "executions_attempted": self.executions_attempted,
            "executions_succeeded": self.executions_succeeded,
            "executions_failed": self.executions_failed,
            "skipped_duplicate": self.skipped_duplicate,
            "skipped_in_flight": self.skipped_in_flight,
            "last_block": self.last_block,
            "total_profit_usd": self.total_profit_usd,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


@dataclass
class AutomationState:
    """
    State owned by one AutomationLoop.

    - in_flight_key: key of the execution currently running, None when idle
    - executed_keys: every key an execution was started for (append-only)
    - keys_path: optional file mirroring executed_keys, one key per line, so a
      restarted process does not resubmit an opportunity it already attempted

    try_begin() is the only way to start an execution. It checks and sets
    both guards without awaiting, so it is atomic on the event loop.
    """

    is_running: bool = False
    in_flight_key: Optional[str] = None
    executed_keys: Set[str] = field(default_factory=set)
    stats: AutomationStats = field(default_factory=AutomationStats)
    keys_path: Optional[Path] = None

    @classmethod
    def load(cls, keys_path: Optional[str] = None) -> "AutomationState":
        if not keys_path:
            return cls()
        path = Path(keys_path)
        keys: Set[str] = set()
        if path.exists():
            with path.open("r", encoding="utf-8") as f:
                keys = {line.strip() for line in f if line.strip()}
            logger.info("Loaded executed opportunity keys path=%s count=%s", path, len(keys))
        return cls(executed_keys=keys, keys_path=path)

    def already_executed(self, key: str) -> bool:
        return key in self.executed_keys

    def try_begin(self, key: str) -> bool:
        """
        Claim the execution slot for `key`.

        Returns False when the key was already executed or another execution
        is in flight; otherwise marks `key` in flight and consumes it.
        """
        if key in self.executed_keys:
            return False
        if self.in_flight_key is not None:
            return False
        self.in_flight_key = key
        self.executed_keys.add(key)
        self._persist(key)
        return True

    def finish(self, key: str) -> None:
        if self.in_flight_key == key:
            self.in_flight_key = None

    def _persist(self, key: str) -> None:
        if self.keys_path is None:
            return
        # The in-memory key still guards this process when the write fails.
        try:
            self.keys_path.parent.mkdir(parents=True, exist_ok=True)
            with self.keys_path.open("a", encoding="utf-8") as f:
                f.write(key + "\n")
                f.flush()
        except OSError:
            logger.exception("Failed to persist executed key=%s path=%s", key, self.keys_path)
