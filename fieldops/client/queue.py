"""
Durable offline queue for checkpoint marks.

Storage is an append-only JSON-lines log plus a replay cursor file holding the
number of log entries already acknowledged. Both are fsynced on every write so
a crash or restart never loses an accepted scan. Once every entry is
acknowledged the log is compacted back to empty.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

logger = logging.getLogger("fieldops.client.queue")

LOG_FILENAME = "marks.jsonl"
CURSOR_FILENAME = "marks.cursor"


@dataclass(frozen=True)
class QueuedMark:
    item_id: str
    payload: dict[str, Any]
    enqueued_at: str


def _fsync_write(path: Path, data: str) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class DurableMarkQueue:
    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.log_path = self.directory / LOG_FILENAME
        self.cursor_path = self.directory / CURSOR_FILENAME
        self._lock = threading.Lock()

    def _read_entries(self) -> list[QueuedMark]:
        if not self.log_path.exists():
            return []
        entries = []
        with open(self.log_path, encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    raw = json.loads(line)
                    entries.append(
                        QueuedMark(
                            item_id=raw["item_id"],
                            payload=raw["payload"],
                            enqueued_at=raw["enqueued_at"],
                        )
                    )
                except (ValueError, KeyError):
                    # torn tail write from a crash mid-append
                    logger.warning("queue_entry_unreadable", extra={"line": line_no, "path": str(self.log_path)})
        return entries

    def _read_cursor(self, entry_count: int) -> int:
        if not self.cursor_path.exists():
            return 0
        try:
            cursor = max(0, int(self.cursor_path.read_text(encoding="utf-8").strip() or 0))
        except ValueError:
            logger.warning("queue_cursor_unreadable", extra={"path": str(self.cursor_path)})
            return 0
        if cursor > entry_count:
            # stale cursor over a truncated log
            logger.warning(
                "queue_cursor_beyond_log",
                extra={"cursor": cursor, "entries": entry_count, "path": str(self.cursor_path)},
            )
            return 0
        return cursor

    def _ends_with_newline(self) -> bool:
        if not self.log_path.exists():
            return True
        with open(self.log_path, "rb") as handle:
            handle.seek(0, os.SEEK_END)
            if handle.tell() == 0:
                return True
            handle.seek(-1, os.SEEK_END)
            return handle.read(1) == b"\n"

    def append(self, payload: dict[str, Any], item_id: str | None = None) -> QueuedMark:
        item = QueuedMark(
            item_id=item_id or uuid4().hex,
            payload=payload,
            enqueued_at=datetime.now(timezone.utc).isoformat(),
        )
        line = json.dumps(
            {"item_id": item.item_id, "payload": item.payload, "enqueued_at": item.enqueued_at},
            separators=(",", ":"),
        )
        with self._lock:
            # a torn tail must not swallow the next entry
            prefix = "" if self._ends_with_newline() else "\n"
            with open(self.log_path, "a", encoding="utf-8") as handle:
                handle.write(prefix + line + "\n")
                handle.flush()
                os.fsync(handle.fileno())
        logger.info("queue_item_appended", extra={"item_id": item.item_id})
        return item

    def pending(self) -> list[QueuedMark]:
        with self._lock:
            entries = self._read_entries()
            return entries[self._read_cursor(len(entries)):]

    def peek(self) -> QueuedMark | None:
        items = self.pending()
        return items[0] if items else None

    def __len__(self) -> int:
        return len(self.pending())

    def ack(self, item_id: str) -> None:
        """Acknowledge the head of the queue. Only the oldest pending item can be acknowledged."""
        with self._lock:
            entries = self._read_entries()
            cursor = self._read_cursor(len(entries))
            if cursor >= len(entries):
                raise KeyError(f"queue is empty, cannot ack {item_id}")
            head = entries[cursor]
            if head.item_id != item_id:
                raise ValueError(f"ack out of order: head is {head.item_id}, got {item_id}")

            cursor += 1
            if cursor >= len(entries):
                self._compact()
            else:
                _fsync_write(self.cursor_path, str(cursor))
        logger.info("queue_item_acked", extra={"item_id": item_id})

    def _compact(self) -> None:
        # cursor before log
        _fsync_write(self.cursor_path, "0")
        _fsync_write(self.log_path, "")
        logger.info("queue_compacted", extra={"path": str(self.log_path)})
