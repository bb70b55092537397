"""ERROR-level log capture for the gateway's ``/errors`` endpoint.

A loguru sink copies every ERROR (and above) record into a bounded list.
With a path, records are also appended to a JSONL file and the newest ones
are read back on startup.
"""

from __future__ import annotations

import json
import sys
import threading
import traceback
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from loguru import logger


@dataclass
class ErrorRecord:
    ts: str
    level: str
    message: str
    where: str
    exception: str | None = None

    @classmethod
    def from_loguru(cls, record: dict[str, Any]) -> "ErrorRecord":
        exc = record.get("exception")
        return cls(
            ts=record["time"].isoformat(),
            level=record["level"].name,
            message=str(record["message"]),
            where=f"{record['name']}:{record['function']}:{record['line']}",
            exception="".join(traceback.format_exception(exc.type, exc.value, exc.traceback)) if exc else None,
        )


class ErrorStore:
    def __init__(self, path: Path | None = None, max_items: int = 500):
        self.path = path.expanduser() if path else None
        self._records: deque[ErrorRecord] = deque(maxlen=max(50, int(max_items)))
        self._lock = threading.Lock()
        self._records.extend(self._read_file())

    def _read_file(self) -> list[ErrorRecord]:
        if self.path is None or not self.path.exists():
            return []
        records = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                records.append(ErrorRecord(
                    ts=str(data.get("ts", "")),
                    level=str(data.get("level", "ERROR")),
                    message=str(data.get("message", "")),
                    where=str(data.get("where", "")),
                    exception=data.get("exception"),
                ))
        return records

    def add(self, rec: ErrorRecord) -> None:
        with self._lock:
            self._records.append(rec)
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(asdict(rec), ensure_ascii=True) + "\n")
        except OSError as e:
            # not through loguru: this runs inside a loguru sink
            print(f"error store: cannot write {self.path}: {e}", file=sys.stderr)

    def get(self, limit: int = 200) -> list[dict[str, Any]]:
        """Newest first."""
        with self._lock:
            newest = list(reversed(self._records))
        return [asdict(r) for r in newest[:max(1, int(limit))]]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        if self.path is not None:
            self.path.unlink(missing_ok=True)


_store: ErrorStore | None = None
_sink_id: int | None = None


def init_error_store(path: Path | None = None, max_items: int = 500) -> ErrorStore:
    """Create the process-wide store and attach its sink. Repeated calls reuse both."""
    global _store, _sink_id
    if _store is None:
        _store = ErrorStore(path, max_items)
    if _sink_id is None:
        store = _store
        _sink_id = logger.add(
            lambda message: store.add(ErrorRecord.from_loguru(message.record)),
            level="ERROR",
            diagnose=False,
            catch=True,
        )
    return _store


def shutdown_error_store() -> None:
    global _store, _sink_id
    if _sink_id is not None:
        logger.remove(_sink_id)
    _store, _sink_id = None, None


def get_errors(limit: int = 200) -> list[dict[str, Any]]:
    return _store.get(limit) if _store else []


def clear_errors() -> None:
    if _store:
        _store.clear()
