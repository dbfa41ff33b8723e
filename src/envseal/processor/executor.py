"""Applies the cryptographic transform to classified env lines."""

from concurrent.futures import ThreadPoolExecutor

from envseal.constants import DEFAULT_MAX_WORKERS
from envseal.crypto.service import CryptoService, DecryptionError, split_envelope
from envseal.models import (
    Classification,
    ClassifiedLine,
    EnvDocument,
    LineKind,
    OutcomeOperation,
    OutcomeStatus,
    VariableOutcome,
)


class VariableEncryptionExecutor:
    """Encrypt or decrypt candidate lines in place, one outcome per assignment.

    Candidates are independent, so they are transformed on a thread pool;
    each task only touches its own line.  Outcomes are returned in line order
    regardless of completion order.

    A ``DecryptionError`` is contained in a failed outcome and leaves the line
    unchanged.  ``CryptoConfigurationError`` is not caught: without a usable
    key nothing in the batch can proceed.
    """

    def __init__(
        self, crypto: CryptoService | None = None, max_workers: int = DEFAULT_MAX_WORKERS
    ) -> None:
        self._crypto = crypto or CryptoService()
        self._max_workers = max_workers

    def apply(
        self, document: EnvDocument, classified: list[ClassifiedLine], key: bytes
    ) -> tuple[EnvDocument, list[VariableOutcome]]:
        entries = [entry for entry in classified if entry.line.kind is LineKind.ASSIGNMENT]
        candidates = [i for i, entry in enumerate(entries) if _is_candidate(entry.classification)]

        results: dict[int, VariableOutcome] = {}
        if len(candidates) > 1 and self._max_workers > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                futures = {i: pool.submit(self._transform, entries[i], key) for i in candidates}
                # Collected by index so the outcome order never depends on completion order.
                for i in candidates:
                    results[i] = futures[i].result()
        else:
            for i in candidates:
                results[i] = self._transform(entries[i], key)

        outcomes = [
            results[i] if i in results else _skipped(entry) for i, entry in enumerate(entries)
        ]
        return document, outcomes

    def _transform(self, entry: ClassifiedLine, key: bytes) -> VariableOutcome:
        line = entry.line
        if line.key is None or line.value is None:
            return _skipped(entry)
        if entry.classification is Classification.ENCRYPT_CANDIDATE:
            line.replace_value(self._crypto.encrypt_text(line.value, key))
            return _outcome(entry, OutcomeOperation.ENCRYPTED)
        parts = split_envelope(line.value)
        if entry.classification is not Classification.DECRYPT_CANDIDATE or parts is None:
            return _skipped(entry)

        lead, token, trail = parts
        try:
            plaintext = self._crypto.decrypt_text(token, key)
        except DecryptionError as exc:
            return _outcome(entry, OutcomeOperation.DECRYPTED, reason=str(exc))
        if "\n" in plaintext or "\r" in plaintext:
            return _outcome(
                entry, OutcomeOperation.DECRYPTED, reason="decrypted value spans multiple lines"
            )
        # Quotes and padding around the envelope are kept.
        line.replace_value(f"{lead}{plaintext}{trail}")
        return _outcome(entry, OutcomeOperation.DECRYPTED)


def _is_candidate(classification: Classification) -> bool:
    return classification in (Classification.ENCRYPT_CANDIDATE, Classification.DECRYPT_CANDIDATE)


def _outcome(
    entry: ClassifiedLine, operation: OutcomeOperation, reason: str | None = None
) -> VariableOutcome:
    """Build an outcome for ``entry``; a ``reason`` marks it as failed."""
    return VariableOutcome(
        key=entry.line.key or "",
        line_number=entry.line.number,
        operation=operation,
        status=OutcomeStatus.FAILED if reason else OutcomeStatus.SUCCESS,
        reason=reason,
    )


def _skipped(entry: ClassifiedLine) -> VariableOutcome:
    return _outcome(entry, OutcomeOperation.SKIPPED)
