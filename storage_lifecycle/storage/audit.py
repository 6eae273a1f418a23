"""
Lifecycle Audit Log

Bounded, append-only record of lifecycle actions dispatched (or blocked)
by the executor. The in-memory ring buffer serves queries; an optional
sink persists every entry durably behind the same append contract.
"""
import json
import logging
import os
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Protocol

from storage_lifecycle.metrics import record_audit_append
from .lifecycle import LifecycleAction

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_CAPACITY = 10000


@dataclass(frozen=True)
class LifecycleAuditLogEntry:
    """
    One executed or blocked lifecycle action
    """
    timestamp: datetime
    file_key: str
    action: LifecycleAction
    file_metadata: Dict[str, Any] = field(default_factory=dict)
    rule_id: Optional[str] = None
    blocked: bool = False
    block_reason: Optional[str] = None
    execution_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'file_key': self.file_key,
            'action': self.action.value,
            'rule_id': self.rule_id,
            'blocked': self.blocked,
            'block_reason': self.block_reason,
            'execution_id': self.execution_id,
            'file_metadata': self.file_metadata,
        }


@dataclass
class AuditLogFilter:
    """
    Audit query filters; unset fields match everything
    """
    file_key_prefix: Optional[str] = None
    action: Optional[LifecycleAction] = None
    execution_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = None

    def matches(self, entry: LifecycleAuditLogEntry) -> bool:
        if self.file_key_prefix and not entry.file_key.startswith(self.file_key_prefix):
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.execution_id is not None and entry.execution_id != self.execution_id:
            return False
        if self.start_date is not None and entry.timestamp < self.start_date:
            return False
        if self.end_date is not None and entry.timestamp > self.end_date:
            return False
        return True


class AuditSinkError(Exception):
    """Durable audit write failed; the action is not considered audited."""
    pass


class AuditSink(Protocol):
    """Durable destination for audit entries."""

    def write(self, entry: LifecycleAuditLogEntry) -> None:
        ...


class NullAuditSink:
    """Sink that discards entries; the ring buffer is the only record."""

    def write(self, entry: LifecycleAuditLogEntry) -> None:
        return None


class JsonlFileAuditSink:
    """
    Append-only JSON Lines audit sink.

    Every entry is written and flushed (fsync) before ``write`` returns, so
    a crash cannot lose an acknowledged entry. Failures raise AuditSinkError.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

    def write(self, entry: LifecycleAuditLogEntry) -> None:
        line = json.dumps(entry.to_dict(), sort_keys=True, default=str, ensure_ascii=False)
        try:
            with self._lock:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
        except OSError as e:
            raise AuditSinkError(f"Failed to write audit entry to {self.path}: {e}") from e

    def read_all(self) -> List[Dict[str, Any]]:
        """Read back every persisted entry, oldest first."""
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


class AuditLog:
    """
    Thread-safe ring buffer of audit entries

    Oldest entries are evicted once ``capacity`` is reached. When a sink is
    configured it is written first; a sink failure propagates and the entry
    is not added to the buffer.
    """

    def __init__(self, capacity: int = DEFAULT_AUDIT_CAPACITY, sink: Optional[AuditSink] = None):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.sink = sink
        self._entries: Deque[LifecycleAuditLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, entry: LifecycleAuditLogEntry) -> None:
        if self.sink is not None:
            self.sink.write(entry)

        with self._lock:
            self._entries.append(entry)
            size = len(self._entries)

        record_audit_append(entry.action.value, entry.blocked, size)

    def query(self, filters: Optional[AuditLogFilter] = None) -> List[LifecycleAuditLogEntry]:
        """
        Query audit entries.

        Returns:
            Matching entries, newest first, truncated to ``filters.limit``
        """
        filters = filters or AuditLogFilter()
        with self._lock:
            snapshot = list(self._entries)

        # Reversed insertion order keeps equal timestamps newest first
        matches = [entry for entry in reversed(snapshot) if filters.matches(entry)]
        matches.sort(key=lambda entry: entry.timestamp, reverse=True)

        if filters.limit is not None:
            matches = matches[:filters.limit]
        return matches

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Process-wide audit log (created on first use)
_audit_log: Optional[AuditLog] = None
_audit_log_lock = threading.Lock()


def get_audit_log() -> AuditLog:
    """Get the process-wide audit log, creating it on first use."""
    global _audit_log
    with _audit_log_lock:
        if _audit_log is None:
            _audit_log = AuditLog()
        return _audit_log


def init_audit_log(capacity: int = DEFAULT_AUDIT_CAPACITY, sink: Optional[AuditSink] = None) -> AuditLog:
    """Replace the process-wide audit log."""
    global _audit_log
    with _audit_log_lock:
        _audit_log = AuditLog(capacity, sink)
        return _audit_log


def reset_audit_log() -> None:
    """Drop the process-wide audit log (test harness only)."""
    global _audit_log
    with _audit_log_lock:
        _audit_log = None
