"""
Append-only JSONL ledger of revision events.

Records accepted proposals, blocked validations, reviews and plan
summaries. Thread-safe via threading.Lock; entries are never mutated.
Without a path the ledger stays in memory (the core performs no I/O
unless a caller asks for it).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import json
import logging
import threading

logger = logging.getLogger(__name__)


@dataclass
class LedgerEntry:
    """One line of the ledger."""
    seq: int
    event: str                  # accepted | blocked | reviewed | plan
    section_id: str = ""
    version: int = 0
    content_hash: str = ""
    timestamp: str = ""         # ISO 8601
    detail: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "event": self.event,
            "section_id": self.section_id,
            "version": self.version,
            "content_hash": self.content_hash,
            "timestamp": self.timestamp,
            "detail": self.detail,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LedgerEntry":
        return cls(
            seq=d["seq"],
            event=d["event"],
            section_id=d.get("section_id", ""),
            version=d.get("version", 0),
            content_hash=d.get("content_hash", ""),
            timestamp=d.get("timestamp", ""),
            detail=d.get("detail", ""),
            data=d.get("data", {}),
        )

    def to_json_line(self) -> str:
        """Serialize as a single JSONL line."""
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)


class RevisionLedger:
    """
    Append-only ledger with filtered queries.

    Args:
        path: JSONL file to append to (loaded if it exists); None keeps
            entries in memory only
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._entries: List[LedgerEntry] = []
        self._next_seq = 1
        if self._path and self._path.exists():
            self._load()

    def _load(self) -> None:
        with open(self._path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = LedgerEntry.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError) as e:
                    logger.warning(f"Skipping malformed ledger line {line_num}: {e}")
                    continue
                self._entries.append(entry)
                self._next_seq = max(self._next_seq, entry.seq + 1)

    def record(
        self,
        event: str,
        section_id: str = "",
        version: int = 0,
        content_hash: str = "",
        detail: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> LedgerEntry:
        """Append a new entry (thread-safe, written immediately when file-backed)."""
        with self._lock:
            entry = LedgerEntry(
                seq=self._next_seq,
                event=event,
                section_id=section_id,
                version=version,
                content_hash=content_hash,
                timestamp=datetime.now(timezone.utc).isoformat(),
                detail=detail,
                data=dict(data or {}),
            )
            self._next_seq += 1
            self._entries.append(entry)
            if self._path:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(self._path, "a", encoding="utf-8") as f:
                    f.write(entry.to_json_line() + "\n")
        return entry

    def get_all(self) -> List[LedgerEntry]:
        """All entries in append order."""
        with self._lock:
            return list(self._entries)

    def filter(
        self,
        event: Optional[str] = None,
        section_id: Optional[str] = None,
        since: Optional[str] = None,
    ) -> List[LedgerEntry]:
        """
        Filter entries by criteria.

        Args:
            event: Event name
            section_id: Section the event concerns
            since: ISO 8601 timestamp; entries strictly after it

        Returns:
            Matching entries in append order
        """
        with self._lock:
            result = list(self._entries)
        if event is not None:
            result = [e for e in result if e.event == event]
        if section_id is not None:
            result = [e for e in result if e.section_id == section_id]
        if since is not None:
            result = [e for e in result if e.timestamp > since]
        return result

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
