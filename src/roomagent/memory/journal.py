"""Durable memory journal.

Each agent identity gets one YAML multi-document file under
``<data_dir>/journal/``. Entries are serialized markup strings; appends run
under a file lock so several processes can share a data directory.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

import yaml
from filelock import FileLock

from roomagent.logging import get_logger

log = get_logger("memory.journal")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class JournalStore:
    """Append-only per-agent journal of serialized events."""

    def __init__(self, data_dir: str | Path, lock_timeout: float = 10) -> None:
        self._dir = Path(data_dir) / "journal"
        self._lock_timeout = lock_timeout

    def path_for(self, agent_id: str) -> Path:
        return self._dir / f"{_UNSAFE_CHARS.sub('_', agent_id)}.yaml"

    def _lock(self, path: Path) -> FileLock:
        return FileLock(path.with_suffix(".lock"), timeout=self._lock_timeout)

    def append(self, agent_id: str, entry: str) -> None:
        """Append one entry for agent_id."""
        path = self.path_for(agent_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        record = {"createdAt": datetime.now().astimezone().isoformat(), "entry": entry}
        with self._lock(path):
            with open(path, "a", encoding="utf-8") as f:
                f.write("---\n")
                yaml.safe_dump(record, f, default_flow_style=False, allow_unicode=True)

    def recent(self, agent_id: str, limit: int = 1000) -> list[str]:
        """The newest `limit` entries for agent_id, oldest first."""
        path = self.path_for(agent_id)
        if not path.exists():
            return []
        with self._lock(path):
            with open(path, encoding="utf-8") as f:
                try:
                    documents = [d for d in yaml.safe_load_all(f) if d]
                except yaml.YAMLError as e:
                    log.error("Journal %s is corrupted: %s", path, e)
                    return []
        entries = [str(d["entry"]) for d in documents if isinstance(d, dict) and "entry" in d]
        return entries[-limit:] if limit > 0 else []
