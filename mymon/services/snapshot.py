"""Process-list snapshots written by the trailing diagnostic step."""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config.models import TargetConfig


class ProcesslistSnapshot:
    """
    Persist SHOW FULL PROCESSLIST output for later inspection.

    Files live in the target's snapshot_dir and are pruned after
    snapshot_days. Nothing is written when snapshot_dir is unset.
    """

    PREFIX = "processlist_"

    def __init__(self, logger: logging.Logger):
        self.logger = logger.getChild(self.__class__.__name__)

    def write(
        self,
        target: TargetConfig,
        rows: List[Dict[str, Any]],
        now: Optional[float] = None
    ) -> Optional[Path]:
        """
        Write one snapshot file and prune expired ones.

        Args:
            target: Target whose process list was read
            rows: Process list rows
            now: Snapshot time (epoch seconds), defaults to current time

        Returns:
            Path of the written file, or None if snapshots are disabled
        """
        if not target.snapshot_dir:
            return None

        now = time.time() if now is None else now
        directory = Path(target.snapshot_dir)
        stamp = datetime.fromtimestamp(now).strftime("%Y%m%d%H%M%S")
        path = directory / (
            f"{self.PREFIX}{target.database.host}_{target.database.port}_{stamp}.json"
        )

        with open(path, "w") as f:
            json.dump(rows, f, indent=2, default=str)

        self.logger.debug(f"Saved {len(rows)} process(es) to {path}")
        self.prune(directory, target.snapshot_days, now)
        return path

    def prune(self, directory: Path, keep_days: int, now: Optional[float] = None) -> int:
        """
        Remove snapshots older than keep_days.

        Returns:
            int: Number of files removed
        """
        now = time.time() if now is None else now
        cutoff = now - keep_days * 86400
        removed = 0

        for path in directory.glob(f"{self.PREFIX}*.json"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                # Pruned concurrently by another pipeline sharing the directory
                continue

        if removed:
            self.logger.info(f"Pruned {removed} expired snapshot(s) from {directory}")
        return removed
