"""Domain models."""

from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path


class LineKind(Enum):
    COMMENT = auto()
    BLANK = auto()
    ASSIGNMENT = auto()
    OPAQUE = auto()


class Operation(Enum):
    """The transform requested for a file."""

    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


class Classification(Enum):
    ALREADY_ENCRYPTED = auto()
    ENCRYPT_CANDIDATE = auto()
    DECRYPT_CANDIDATE = auto()
    IGNORE = auto()


class OutcomeOperation(Enum):
    ENCRYPTED = "encrypted"
    DECRYPTED = "decrypted"
    SKIPPED = "skipped"


class OutcomeStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class EnvLine:
    """One physical line of an env file.

    ``raw`` never includes the line terminator; that lives in ``newline`` so
    CRLF files and a missing trailing newline survive a rewrite untouched.
    For assignments, ``prefix`` is everything up to and including the first
    ``=`` (``export API_KEY=``) and ``value`` is the unparsed remainder.
    """

    raw: str
    kind: LineKind
    newline: str = "\n"
    number: int = 0
    key: str | None = None
    value: str | None = None
    prefix: str = ""
    modified: bool = False

    def replace_value(self, value: str) -> None:
        """Substitute the assignment value; the rest of the line is kept."""
        if self.kind is not LineKind.ASSIGNMENT:
            raise ValueError(f"line {self.number} is not an assignment")
        self.value = value
        self.modified = True

    def render(self) -> str:
        if not self.modified:
            return self.raw + self.newline
        return f"{self.prefix}{self.value}{self.newline}"


@dataclass
class EnvDocument:
    path: Path
    lines: list[EnvLine] = field(default_factory=list)

    def assignments(self) -> list[EnvLine]:
        return [line for line in self.lines if line.kind is LineKind.ASSIGNMENT]

    def get(self, key: str) -> EnvLine | None:
        """Return the first assignment for ``key``, or None if absent."""
        for line in self.assignments():
            if line.key == key:
                return line
        return None

    @property
    def modified(self) -> bool:
        return any(line.modified for line in self.lines)

    def render(self) -> str:
        return "".join(line.render() for line in self.lines)


@dataclass(frozen=True)
class ClassifiedLine:
    line: EnvLine
    classification: Classification


@dataclass(frozen=True)
class VariableOutcome:
    """Metadata about one processed assignment. Never carries the value."""

    key: str
    line_number: int
    operation: OutcomeOperation
    status: OutcomeStatus
    reason: str | None = None

    @property
    def mutated(self) -> bool:
        return (
            self.status is OutcomeStatus.SUCCESS
            and self.operation is not OutcomeOperation.SKIPPED
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "line": self.line_number,
            "operation": self.operation.value,
            "status": self.status.value,
            "reason": self.reason,
        }


@dataclass
class FileOperationResult:
    path: Path
    operation: Operation
    outcomes: list[VariableOutcome] = field(default_factory=list)
    rewritten: bool = False
    error: str | None = None

    @property
    def mutated(self) -> int:
        return sum(1 for o in self.outcomes if o.mutated)

    @property
    def failed(self) -> list[VariableOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.FAILED]

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.failed

    def to_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "operation": self.operation.value,
            "rewritten": self.rewritten,
            "mutated": self.mutated,
            "error": self.error,
            "variables": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class BatchResult:
    """Aggregate of every file processed in one coordinator call.

    ``files`` keeps the order in which the caller supplied the paths.
    """

    operation: Operation
    files: dict[Path, FileOperationResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(result.succeeded for result in self.files.values())

    @property
    def failed_files(self) -> list[Path]:
        return [path for path, result in self.files.items() if not result.succeeded]

    @property
    def mutated(self) -> int:
        return sum(result.mutated for result in self.files.values())

    def to_dict(self) -> dict[str, object]:
        return {
            "operation": self.operation.value,
            "succeeded": self.succeeded,
            "files": [result.to_dict() for result in self.files.values()],
        }


@dataclass
class PlaintextReport:
    """Result of a read-only scan for sensitive values still in plain text."""

    pending: dict[Path, list[str]] = field(default_factory=dict)
    errors: dict[Path, str] = field(default_factory=dict)

    @property
    def dirty(self) -> dict[Path, list[str]]:
        return {path: keys for path, keys in self.pending.items() if keys}

    @property
    def clean(self) -> bool:
        return not self.errors and not self.dirty
