"""Run-time access to individual variables, decrypting envelopes on the fly.

Used by tooling that needs a credential (e.g. to log a browser session in)
without rewriting the env file it came from.
"""

import os
from collections.abc import Iterable, Mapping
from pathlib import Path

from envseal.crypto.service import CryptoService, split_envelope, validate_key
from envseal.processor.file_encryptor import read_document


class MissingVariableError(KeyError):
    """Raised when a requested variable is not defined."""


class RuntimeVariableResolver:
    """Resolve variable values, decrypting the ones stored as envelopes.

    Plain values are returned unchanged.  A value that looks like an envelope
    but cannot be decrypted raises ``DecryptionError`` rather than being
    handed back in encrypted form.
    """

    def __init__(self, key: bytes, crypto: CryptoService | None = None) -> None:
        self._key = validate_key(key)
        self._crypto = crypto or CryptoService()

    def resolve(self, name: str, environ: Mapping[str, str] | None = None) -> str:
        source = os.environ if environ is None else environ
        if name not in source:
            raise MissingVariableError(name)
        return self._reveal(source[name])

    def resolve_file(self, path: Path, names: Iterable[str]) -> dict[str, str]:
        """Return decrypted values for ``names`` from the env file at ``path``."""
        document = read_document(path)
        values: dict[str, str] = {}
        for name in names:
            line = document.get(name)
            if line is None or line.value is None:
                raise MissingVariableError(f"{name} (in {path})")
            values[name] = self._reveal(line.value)
        return values

    def _reveal(self, value: str) -> str:
        parts = split_envelope(value)
        if parts is None:
            return value
        lead, token, trail = parts
        return f"{lead}{self._crypto.decrypt_text(token, self._key)}{trail}"
