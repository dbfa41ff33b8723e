"""Redaction-safe audit trail of per-variable outcomes."""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from envseal.constants import AUDIT_LOGGER_NAME
from envseal.models import OutcomeStatus, VariableOutcome


@dataclass(frozen=True)
class AuditRecord:
    path: Path
    key: str
    line_number: int
    operation: str
    status: str
    reason: str | None = None


class EncryptionOperationLogger:
    """Thread-safe, append-only accumulator of audit records.

    Each record is also forwarded to the ``envseal.audit`` logger.  Only
    metadata reaches either sink; ``VariableOutcome`` has no value field.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)
        self._lock = threading.Lock()
        self._records: list[AuditRecord] = []

    def record(self, path: Path, outcome: VariableOutcome) -> AuditRecord:
        entry = AuditRecord(
            path=path,
            key=outcome.key,
            line_number=outcome.line_number,
            operation=outcome.operation.value,
            status=outcome.status.value,
            reason=outcome.reason,
        )
        with self._lock:
            self._records.append(entry)

        if outcome.status is OutcomeStatus.FAILED:
            self._logger.warning(
                "%s:%d %s %s failed: %s",
                path,
                entry.line_number,
                entry.key,
                entry.operation,
                entry.reason,
            )
        else:
            self._logger.info("%s:%d %s %s", path, entry.line_number, entry.key, entry.operation)
        return entry

    def records(self) -> list[AuditRecord]:
        with self._lock:
            return list(self._records)

    def for_path(self, path: Path) -> list[AuditRecord]:
        with self._lock:
            return [r for r in self._records if r.path == path]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
