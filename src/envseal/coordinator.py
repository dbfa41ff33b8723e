"""Public facade: bulk encrypt/decrypt over a batch of env files."""

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from envseal.config import SensitivityPolicy, Settings
from envseal.crypto.service import CryptoService, validate_key
from envseal.models import BatchResult, FileOperationResult, Operation, PlaintextReport
from envseal.processor.audit import EncryptionOperationLogger
from envseal.processor.executor import VariableEncryptionExecutor
from envseal.processor.file_encryptor import (
    EnvironmentFileEncryptor,
    FileProcessingError,
    read_document,
)
from envseal.processor.resolver import EncryptionVariableResolver

logger = logging.getLogger(__name__)


class CryptoCoordinator:
    """Process every file of a batch and report the aggregate result.

    Files are independent and run concurrently.  A file-level failure
    (missing, unreadable, not UTF-8, or not writable) is recorded in that
    file's result and never stops the others.  Only a bad key aborts the
    batch, since no file could be processed without one.
    """

    def __init__(self, file_encryptor: EnvironmentFileEncryptor, max_workers: int = 4) -> None:
        self._file_encryptor = file_encryptor
        self._max_workers = max_workers

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        policy: SensitivityPolicy | None = None,
        audit: EncryptionOperationLogger | None = None,
    ) -> "CryptoCoordinator":
        """Wire up the full pipeline from loaded settings."""
        crypto = CryptoService()
        file_encryptor = EnvironmentFileEncryptor(
            resolver=EncryptionVariableResolver(policy or settings.policy),
            executor=VariableEncryptionExecutor(crypto, max_workers=settings.max_workers),
            audit=audit or EncryptionOperationLogger(),
        )
        return cls(file_encryptor, max_workers=settings.max_workers)

    def encrypt(self, paths: Iterable[Path | str], key: bytes) -> BatchResult:
        return self._run(paths, Operation.ENCRYPT, key)

    def decrypt(self, paths: Iterable[Path | str], key: bytes) -> BatchResult:
        return self._run(paths, Operation.DECRYPT, key)

    def find_unencrypted(self, paths: Iterable[Path | str]) -> PlaintextReport:
        """Report, per file, the sensitive keys whose values are still plain text.

        Read-only; nothing is written.  A file that cannot be read is recorded
        in ``errors`` and the scan carries on with the rest.
        """
        resolver = self._file_encryptor.resolver
        report = PlaintextReport()
        for path in _unique(paths):
            try:
                report.pending[path] = resolver.pending_keys(read_document(path))
            except FileProcessingError as exc:
                logger.error("Skipping %s: %s", path, exc)
                report.errors[path] = str(exc)
        return report

    def _run(self, paths: Iterable[Path | str], operation: Operation, key: bytes) -> BatchResult:
        validate_key(key)
        unique = _unique(paths)
        batch = BatchResult(operation=operation)
        if not unique:
            return batch

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(unique))) as pool:
            futures = [pool.submit(self._process_one, path, operation, key) for path in unique]
            for path, future in zip(unique, futures):
                batch.files[path] = future.result()

        logger.info(
            "%s: %d file(s), %d variable(s) changed, %d file(s) with failures",
            operation.value,
            len(batch.files),
            batch.mutated,
            len(batch.failed_files),
        )
        return batch

    def _process_one(self, path: Path, operation: Operation, key: bytes) -> FileOperationResult:
        try:
            return self._file_encryptor.process(path, operation, key)
        except FileProcessingError as exc:
            logger.error("Skipping %s: %s", path, exc)
            return FileOperationResult(path=path, operation=operation, error=str(exc))


def _unique(paths: Iterable[Path | str]) -> list[Path]:
    """Drop paths that resolve to a file already in the batch, keeping caller order."""
    seen: set[Path] = set()
    unique: list[Path] = []
    for raw in paths:
        path = Path(raw)
        resolved = path.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        unique.append(path)
    return unique
