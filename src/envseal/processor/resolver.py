"""Decides which assignments of an env file an operation should touch."""

from envseal.config import SensitivityPolicy
from envseal.crypto.service import looks_like_envelope
from envseal.models import Classification, ClassifiedLine, EnvDocument, EnvLine, LineKind, Operation


class EncryptionVariableResolver:
    """Classify every line of a document for an encrypt or decrypt pass.

    - Non-assignments and empty values are ignored.
    - Envelopes are decrypt candidates on a decrypt pass and reported as
      already encrypted on an encrypt pass, which keeps repeated encrypt runs
      idempotent.
    - Plain values are encrypt candidates only when the policy marks the key
      as sensitive.
    """

    def __init__(self, policy: SensitivityPolicy | None = None) -> None:
        self._policy = policy or SensitivityPolicy()

    @property
    def policy(self) -> SensitivityPolicy:
        return self._policy

    def classify(self, document: EnvDocument, operation: Operation) -> list[ClassifiedLine]:
        return [
            ClassifiedLine(line=line, classification=self.classify_line(line, operation))
            for line in document.lines
        ]

    def classify_line(self, line: EnvLine, operation: Operation) -> Classification:
        if line.kind is not LineKind.ASSIGNMENT or not line.value or line.key is None:
            return Classification.IGNORE

        encrypted = looks_like_envelope(line.value)
        if operation is Operation.DECRYPT:
            return Classification.DECRYPT_CANDIDATE if encrypted else Classification.IGNORE
        if encrypted:
            return Classification.ALREADY_ENCRYPTED
        if self._policy.is_sensitive(line.key):
            return Classification.ENCRYPT_CANDIDATE
        return Classification.IGNORE

    def pending_keys(self, document: EnvDocument) -> list[str]:
        """Keys an encrypt pass would touch, i.e. sensitive values still in plain text."""
        return [
            entry.line.key
            for entry in self.classify(document, Operation.ENCRYPT)
            if entry.classification is Classification.ENCRYPT_CANDIDATE and entry.line.key
        ]
