"""Encrypts or decrypts one env file and persists it atomically.

The real path is only ever touched by ``os.replace``: the new content is
written to a temporary file in the same directory, flushed and fsynced, and
then renamed over the original.  A crash or a failed write therefore leaves
the original file as it was, and the temporary file is removed on every exit
path.
"""

import logging
import os
import stat
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

from envseal.domain.envfile import parse_env_text
from envseal.models import (
    EnvDocument,
    FileOperationResult,
    Operation,
    OutcomeStatus,
    VariableOutcome,
)
from envseal.processor.audit import EncryptionOperationLogger
from envseal.processor.executor import VariableEncryptionExecutor
from envseal.processor.resolver import EncryptionVariableResolver

logger = logging.getLogger(__name__)


class FileProcessingError(Exception):
    """Base class for errors that abort processing of a single file."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class FileAccessError(FileProcessingError):
    """Raised when the file is missing or cannot be read."""


class FileFormatError(FileProcessingError):
    """Raised when the file is not valid UTF-8."""


class FileWriteError(FileProcessingError):
    """Raised when the rewritten content cannot be committed to disk."""


def read_document(path: Path) -> EnvDocument:
    """Read and parse an env file without modifying it."""
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FileAccessError(path, exc.strerror or str(exc)) from exc
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FileFormatError(path, f"not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc
    return parse_env_text(text, path)


def atomic_write_text(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` via a same-directory temp file and a rename."""
    try:
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise FileWriteError(path, f"cannot create temporary file: {exc}") from exc
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, stat.S_IMODE(path.stat().st_mode))
        os.replace(tmp_path, path)
    except OSError as exc:
        raise FileWriteError(path, exc.strerror or str(exc)) from exc
    finally:
        tmp_path.unlink(missing_ok=True)


class EnvironmentFileEncryptor:
    """Apply one encrypt or decrypt pass to a single env file.

    All per-file state lives in local variables of ``process``, so a single
    instance can serve concurrent calls for different paths.  Calls for the
    same resolved path are serialised so two rewrites never interleave.
    """

    def __init__(
        self,
        resolver: EncryptionVariableResolver,
        executor: VariableEncryptionExecutor,
        audit: EncryptionOperationLogger,
    ) -> None:
        self._resolver = resolver
        self._executor = executor
        self._audit = audit
        # resolved path -> [lock, number of callers using it]
        self._path_locks: dict[Path, list] = {}
        self._locks_guard = threading.Lock()

    @property
    def resolver(self) -> EncryptionVariableResolver:
        return self._resolver

    def process(self, path: Path, operation: Operation, key: bytes) -> FileOperationResult:
        with self._locked(path):
            document = read_document(path)
            classified = self._resolver.classify(document, operation)
            document, outcomes = self._executor.apply(document, classified, key)

            rewritten = False
            if document.modified:
                try:
                    atomic_write_text(path, document.render())
                except FileWriteError as exc:
                    for outcome in outcomes:
                        self._audit.record(path, _unwritten(outcome, exc))
                    raise
                rewritten = True
                logger.debug("Rewrote %s", path)
            else:
                logger.debug("No changes for %s; left untouched", path)

            for outcome in outcomes:
                self._audit.record(path, outcome)

        return FileOperationResult(
            path=path, operation=operation, outcomes=outcomes, rewritten=rewritten
        )

    @contextmanager
    def _locked(self, path: Path) -> Iterator[None]:
        """Hold the lock for ``path``; the entry is dropped once nobody uses it."""
        key = path.resolve()
        with self._locks_guard:
            entry = self._path_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._path_locks[key]


def _unwritten(outcome: VariableOutcome, exc: FileWriteError) -> VariableOutcome:
    """Mark a transform that never reached disk as failed."""
    if not outcome.mutated:
        return outcome
    return replace(outcome, status=OutcomeStatus.FAILED, reason=f"not written: {exc}")
