"""Unit tests for the resolver, executor and audit logger."""

import logging
import threading
from pathlib import Path

import pytest

from envseal.config import SensitivityPolicy
from envseal.crypto.service import CryptoConfigurationError, CryptoService, looks_like_envelope
from envseal.domain.envfile import parse_env_text
from envseal.models import (
    Classification,
    ClassifiedLine,
    EnvDocument,
    EnvLine,
    LineKind,
    Operation,
    OutcomeOperation,
    OutcomeStatus,
    VariableOutcome,
)
from envseal.processor.audit import EncryptionOperationLogger
from envseal.processor.executor import VariableEncryptionExecutor
from envseal.processor.resolver import EncryptionVariableResolver

KEY = bytes(range(32))

_POLICY = SensitivityPolicy(keys=["A", "C", "EMPTY"], suffixes=[])


def _classes(text: str, operation: Operation) -> dict[str, Classification]:
    resolver = EncryptionVariableResolver(_POLICY)
    document = parse_env_text(text)
    return {
        entry.line.raw: entry.classification for entry in resolver.classify(document, operation)
    }


class TestEncryptionVariableResolver:
    def test_sensitive_plain_values_are_encrypt_candidates(self):
        """
        Given A and C marked sensitive and B not
        When classified for encrypt
        Then A and C are candidates and B is ignored
        """
        result = _classes("A=secret1\nB=plain\nC=secret2\n", Operation.ENCRYPT)
        assert result == {
            "A=secret1": Classification.ENCRYPT_CANDIDATE,
            "B=plain": Classification.IGNORE,
            "C=secret2": Classification.ENCRYPT_CANDIDATE,
        }

    def test_envelope_is_already_encrypted_on_encrypt(self):
        """
        Given a sensitive key whose value is already an envelope
        When classified for encrypt
        Then it is ALREADY_ENCRYPTED, not a candidate
        """
        envelope = CryptoService().encrypt_text("secret", KEY)
        result = _classes(f"A={envelope}\n", Operation.ENCRYPT)
        assert result[f"A={envelope}"] is Classification.ALREADY_ENCRYPTED

    def test_envelope_is_decrypt_candidate_regardless_of_key(self):
        """
        Given an envelope stored under a key the policy does not mark
        When classified for decrypt
        Then it is still a decrypt candidate
        """
        envelope = CryptoService().encrypt_text("secret", KEY)
        result = _classes(f"UNLISTED={envelope}\n", Operation.DECRYPT)
        assert result[f"UNLISTED={envelope}"] is Classification.DECRYPT_CANDIDATE

    @pytest.mark.parametrize("template", ["A={}  ", 'A="{}"', "A= {}"])
    def test_padded_or_quoted_envelope_is_already_encrypted(self, template: str):
        """
        Given a sensitive key whose envelope has trailing spaces or quotes around it
        When classified for encrypt
        Then it is ALREADY_ENCRYPTED, never wrapped a second time
        """
        raw = template.format(CryptoService().encrypt_text("secret", KEY))
        assert _classes(raw + "\n", Operation.ENCRYPT)[raw] is Classification.ALREADY_ENCRYPTED

    def test_truncated_envelope_is_decrypt_candidate(self):
        """
        Given an envelope missing its tag component
        When classified for decrypt
        Then it is still a decrypt candidate so the failure gets reported
        """
        truncated = CryptoService().encrypt_text("secret", KEY).rsplit(":", 1)[0]
        result = _classes(f"A={truncated}\n", Operation.DECRYPT)
        assert result[f"A={truncated}"] is Classification.DECRYPT_CANDIDATE

    def test_plain_value_ignored_on_decrypt(self):
        """
        Given a sensitive key with a plain value
        When classified for decrypt
        Then it is ignored
        """
        assert _classes("A=secret\n", Operation.DECRYPT)["A=secret"] is Classification.IGNORE

    @pytest.mark.parametrize("operation", [Operation.ENCRYPT, Operation.DECRYPT])
    def test_empty_value_and_non_assignments_are_ignored(self, operation: Operation):
        """
        Given an empty sensitive value, a comment, a blank and an opaque line
        When classified for either operation
        Then every line is ignored
        """
        result = _classes("EMPTY=\n# A=secret\n\nnot an assignment\n", operation)
        assert set(result.values()) == {Classification.IGNORE}

    def test_classification_covers_every_line_in_order(self):
        """
        Given a four-line document
        When classified
        Then one entry per line is returned in line order
        """
        resolver = EncryptionVariableResolver(_POLICY)
        document = parse_env_text("A=1\n#c\n\nB=2\n")
        entries = resolver.classify(document, Operation.ENCRYPT)
        assert [entry.line.number for entry in entries] == [1, 2, 3, 4]

    def test_pending_keys(self):
        """
        Given one sensitive plain value, one encrypted value and one plain non-secret
        When pending_keys is called
        Then only the plain sensitive key is reported
        """
        envelope = CryptoService().encrypt_text("secret", KEY)
        resolver = EncryptionVariableResolver(_POLICY)
        document = parse_env_text(f"A=secret\nB=plain\nC={envelope}\n")
        assert resolver.pending_keys(document) == ["A"]


class TestVariableEncryptionExecutor:
    def _run(self, text: str, operation: Operation, max_workers: int = 4):
        document = parse_env_text(text)
        classified = EncryptionVariableResolver(_POLICY).classify(document, operation)
        executor = VariableEncryptionExecutor(CryptoService(), max_workers=max_workers)
        return executor.apply(document, classified, KEY)

    @pytest.mark.parametrize("max_workers", [1, 4])
    def test_encrypt_substitutes_envelopes(self, max_workers: int):
        """
        Given A and C sensitive
        When the executor encrypts the document (serially or on a pool)
        Then A and C hold envelopes, B is untouched, outcomes follow line order
        """
        document, outcomes = self._run(
            "A=secret1\nB=plain\n#comment\nC=secret2\n", Operation.ENCRYPT, max_workers
        )

        assert looks_like_envelope(document.get("A").value)
        assert looks_like_envelope(document.get("C").value)
        assert document.get("B").value == "plain"
        assert [(o.key, o.operation, o.status) for o in outcomes] == [
            ("A", OutcomeOperation.ENCRYPTED, OutcomeStatus.SUCCESS),
            ("B", OutcomeOperation.SKIPPED, OutcomeStatus.SUCCESS),
            ("C", OutcomeOperation.ENCRYPTED, OutcomeStatus.SUCCESS),
        ]

    def test_decrypt_failure_is_isolated(self):
        """
        Given one corrupted envelope between two valid ones
        When the executor decrypts
        Then exactly one outcome fails, its line is unchanged, the others decrypt
        """
        crypto = CryptoService()
        good_a = crypto.encrypt_text("one", KEY)
        good_c = crypto.encrypt_text("three", KEY)
        bad = crypto.encrypt_text("two", bytes(32))

        document, outcomes = self._run(f"A={good_a}\nB={bad}\nC={good_c}\n", Operation.DECRYPT)

        statuses = [o.status for o in outcomes]
        assert statuses.count(OutcomeStatus.FAILED) == 1
        assert statuses.count(OutcomeStatus.SUCCESS) == 2
        assert outcomes[1].key == "B"
        assert outcomes[1].reason
        assert document.get("A").value == "one"
        assert document.get("B").value == bad
        assert document.get("B").modified is False
        assert document.get("C").value == "three"

    def test_multiline_plaintext_is_refused(self):
        """
        Given an envelope whose plaintext contains a newline
        When the executor decrypts it
        Then the outcome fails and the line keeps its envelope
        """
        envelope = CryptoService().encrypt_text("line1\nline2", KEY)
        document, outcomes = self._run(f"A={envelope}\n", Operation.DECRYPT)
        assert outcomes[0].status is OutcomeStatus.FAILED
        assert document.get("A").value == envelope

    def test_quoted_envelope_decrypts_inside_its_quotes(self):
        """
        Given a quoted envelope followed by a trailing space
        When the executor decrypts it
        Then the plaintext replaces the token and the quotes and space are kept
        """
        envelope = CryptoService().encrypt_text("s3cret", KEY)
        document, outcomes = self._run(f'A="{envelope}" \n', Operation.DECRYPT)
        assert outcomes[0].status is OutcomeStatus.SUCCESS
        assert document.get("A").value == '"s3cret" '

    def test_no_outcome_for_non_assignments(self):
        """
        Given a document of only comments and blanks
        When the executor runs
        Then no outcomes are produced and nothing is modified
        """
        document, outcomes = self._run("# only\n\n", Operation.ENCRYPT)
        assert outcomes == []
        assert document.modified is False

    def test_candidate_without_value_is_skipped(self):
        """
        Given an assignment classified as a candidate but carrying no value
        When the executor runs
        Then it is reported as skipped instead of raising
        """
        line = EnvLine(raw="A", kind=LineKind.ASSIGNMENT, number=1, key="A", prefix="A=")
        document = EnvDocument(path=Path(".env"), lines=[line])
        classified = [ClassifiedLine(line=line, classification=Classification.ENCRYPT_CANDIDATE)]

        _, outcomes = VariableEncryptionExecutor(max_workers=1).apply(document, classified, KEY)

        assert [(o.key, o.operation) for o in outcomes] == [("A", OutcomeOperation.SKIPPED)]
        assert line.modified is False

    def test_bad_key_propagates(self):
        """
        Given an encrypt candidate and a short key
        When the executor runs
        Then CryptoConfigurationError propagates
        """
        document = parse_env_text("A=secret\n")
        classified = EncryptionVariableResolver(_POLICY).classify(document, Operation.ENCRYPT)
        with pytest.raises(CryptoConfigurationError):
            VariableEncryptionExecutor().apply(document, classified, b"short")


class TestEncryptionOperationLogger:
    def _outcome(self, key: str, status: OutcomeStatus = OutcomeStatus.SUCCESS) -> VariableOutcome:
        return VariableOutcome(
            key=key,
            line_number=3,
            operation=OutcomeOperation.DECRYPTED,
            status=status,
            reason="authentication failed" if status is OutcomeStatus.FAILED else None,
        )

    def test_record_accumulates_metadata(self):
        """
        Given a logger
        When one outcome is recorded
        Then a record with path, key, operation and status is kept
        """
        audit = EncryptionOperationLogger()
        audit.record(Path(".env"), self._outcome("A"))

        [record] = audit.records()
        assert record.path == Path(".env")
        assert record.key == "A"
        assert record.operation == "decrypted"
        assert record.status == "success"
        assert record.reason is None

    def test_failures_log_a_warning(self, caplog):
        """
        Given a failed outcome
        When recorded
        Then a WARNING naming the key and reason is emitted on envseal.audit
        """
        audit = EncryptionOperationLogger()
        with caplog.at_level(logging.INFO, logger="envseal.audit"):
            audit.record(Path(".env"), self._outcome("B", OutcomeStatus.FAILED))

        [log] = caplog.records
        assert log.levelno == logging.WARNING
        assert "B" in log.getMessage()
        assert "authentication failed" in log.getMessage()

    def test_never_logs_values(self, caplog):
        """
        Given a file decrypted through the executor
        When its outcomes are recorded
        Then neither the plaintext nor the envelope appears in the log
        """
        envelope = CryptoService().encrypt_text("hunter2", KEY)
        document = parse_env_text(f"A={envelope}\n")
        classified = EncryptionVariableResolver(_POLICY).classify(document, Operation.DECRYPT)
        _, outcomes = VariableEncryptionExecutor().apply(document, classified, KEY)

        audit = EncryptionOperationLogger()
        with caplog.at_level(logging.DEBUG, logger="envseal.audit"):
            for outcome in outcomes:
                audit.record(Path(".env"), outcome)

        assert "hunter2" not in caplog.text
        assert envelope not in caplog.text

    def test_for_path_and_clear(self):
        """
        Given records for two files
        When for_path and then clear are called
        Then filtering returns one file's records and clear empties the log
        """
        audit = EncryptionOperationLogger()
        audit.record(Path("a.env"), self._outcome("A"))
        audit.record(Path("b.env"), self._outcome("B"))

        assert [r.key for r in audit.for_path(Path("b.env"))] == ["B"]
        audit.clear()
        assert audit.records() == []

    def test_concurrent_records_are_all_kept(self):
        """
        Given many threads recording at once
        When they finish
        Then no record is lost
        """
        audit = EncryptionOperationLogger(logging.getLogger("envseal.test.silent"))

        def worker(n: int) -> None:
            for i in range(50):
                audit.record(Path(f"{n}.env"), self._outcome(f"K{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(audit.records()) == 400
