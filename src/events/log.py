"""
Append-only event log.

Ledgers and the registry append events here once an operation commits.
Off-chain indexers read it with ``query`` or ``subscribe`` to rebuild
per-identity inboxes. Records can optionally be mirrored to a JSONL file,
signed with an ed25519 key so a reader can check their provenance.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from nacl.signing import SigningKey

from crypto import sign_record, verify_record, sha256_hex, cjson
from events.types import Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogRecord:
    """One entry in the log"""

    seq: int  # Position in the log, starting at 1
    source: str  # Emitting component, e.g. "shard-0" or "registry"
    timestamp_ns: int
    event: Event

    @property
    def name(self) -> str:
        return self.event.name

    @property
    def identity(self) -> Optional[str]:
        return self.event.identity

    def to_dict(self) -> dict:
        body = self.event.to_dict()
        return {
            "seq": self.seq,
            "source": self.source,
            "ts_ns": self.timestamp_ns,
            "event": body["event"],
            "identity": self.identity,
            "args": body["args"],
            "args_hash": sha256_hex(cjson(body["args"])),
            "version": 1,
        }


class EventLog:
    """
    Totally ordered, append-only log of committed events.

    Thread-safe; subscribers are called synchronously in append order.
    """

    def __init__(
        self,
        sink_path: Optional[Path] = None,
        signer: Optional[SigningKey] = None,
    ):
        """
        Initialize event log.

        Args:
            sink_path: Optional JSONL file each record is appended to
            signer: Optional key used to sign JSONL lines
        """
        self.sink_path = Path(sink_path) if sink_path else None
        self.signer = signer
        self._records: List[LogRecord] = []
        self._subscribers: List[Callable[[LogRecord], None]] = []
        self._lock = threading.RLock()

        if self.sink_path:
            self.sink_path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, source: str, event: Event) -> LogRecord:
        """Append a single event and notify subscribers"""
        return self.extend(source, [event])[0]

    def extend(self, source: str, events: Iterable[Event]) -> List[LogRecord]:
        """
        Append several events emitted by one committed operation.

        Args:
            source: Emitting component
            events: Events in emission order

        Returns:
            The new log records
        """
        with self._lock:
            appended = []
            for event in events:
                record = LogRecord(
                    seq=len(self._records) + 1,
                    source=source,
                    timestamp_ns=time.time_ns(),
                    event=event,
                )
                self._records.append(record)
                appended.append(record)
                if self.sink_path:
                    self._write_line(record)

            for record in appended:
                for callback in list(self._subscribers):
                    callback(record)

            return appended

    def _write_line(self, record: LogRecord) -> None:
        line = record.to_dict()
        if self.signer is not None:
            line = sign_record(line, self.signer)
        with self.sink_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(line, separators=(",", ":")) + "\n")

    def subscribe(self, callback: Callable[[LogRecord], None]) -> Callable[[], None]:
        """
        Register a listener for new records.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def records(self) -> List[LogRecord]:
        with self._lock:
            return list(self._records)

    def query(
        self,
        name: Optional[str] = None,
        identity: Optional[str] = None,
        source: Optional[str] = None,
        since_seq: int = 0,
    ) -> List[LogRecord]:
        """
        Filter the log, oldest first.

        Args:
            name: Event name, e.g. "MessageSent"
            identity: Indexed identity hash
            source: Emitting component
            since_seq: Only records with seq greater than this

        Returns:
            Matching records
        """
        if identity is not None:
            identity = identity.lower()
        with self._lock:
            return [
                r
                for r in self._records
                if r.seq > since_seq
                and (name is None or r.name == name)
                and (identity is None or r.identity == identity)
                and (source is None or r.source == source)
            ]

    def __len__(self) -> int:
        return len(self._records)

    @staticmethod
    def verify_file(path: Path, expected_pk=None) -> bool:
        """
        Check every line of a signed JSONL sink.

        Returns:
            True if all lines carry a valid signature and seq is contiguous
        """
        expected_seq = 1
        with Path(path).open(encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                record = json.loads(line)
                if not verify_record(record, expected_pk):
                    logger.warning(f"Bad signature on log record {record.get('seq')}")
                    return False
                if record.get("seq") != expected_seq:
                    logger.warning(
                        f"Log gap: expected seq {expected_seq}, got {record.get('seq')}"
                    )
                    return False
                expected_seq += 1
        return True
