"""AES-256-GCM primitives and the printable envelope that carries their output.

An envelope is a single token that fits unescaped inside a ``KEY=value`` line::

    ENCv1:A256GCM:<nonce>:<ciphertext>:<tag>

Every binary component is unpadded URL-safe base64.  The version and
algorithm header is bound to the ciphertext as associated data, so editing
any character of the token makes decryption fail instead of yielding a
different plaintext.
"""

import base64
import binascii
import os
import re
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from envseal.constants import (
    ALGORITHM_AES256_GCM,
    ENVELOPE_SEPARATOR,
    ENVELOPE_VERSION,
    KEY_SIZE,
    NONCE_SIZE,
    SUPPORTED_ALGORITHMS,
    TAG_SIZE,
)


class CryptoConfigurationError(Exception):
    """Raised when the key is missing or has the wrong length."""


class DecryptionError(Exception):
    """Raised when an envelope is malformed, unsupported, or fails authentication."""


# Any value whose token starts with this prefix is treated as an envelope, so a
# damaged one is reported as a failed decryption rather than passed through or
# wrapped a second time.  Strict validation happens in ``from_text``.
_ENVELOPE_PREFIX = f"{ENVELOPE_VERSION}{ENVELOPE_SEPARATOR}"

_ENVELOPE_SHAPE = re.compile(
    rf"^{ENVELOPE_VERSION}:[A-Za-z0-9]+:[A-Za-z0-9_-]+:[A-Za-z0-9_-]*:[A-Za-z0-9_-]+$"
)

_QUOTES = ('"', "'")


def split_envelope(value: str) -> tuple[str, str, str] | None:
    """Split ``value`` into ``(lead, token, trail)`` if it holds an envelope.

    Surrounding whitespace and one pair of matching quotes end up in ``lead``
    and ``trail`` so a rewrite can put them back.  Returns None for plain values.
    """
    stripped = value.strip()
    start = len(value) - len(value.lstrip())
    end = start + len(stripped)
    if len(stripped) >= 2 and stripped[0] in _QUOTES and stripped[-1] == stripped[0]:
        start += 1
        end -= 1
    token = value[start:end]
    if not token.startswith(_ENVELOPE_PREFIX):
        return None
    return value[:start], token, value[end:]


def looks_like_envelope(value: str) -> bool:
    """Return True if ``value`` holds an envelope, possibly quoted or padded."""
    return split_envelope(value) is not None


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str, component: str) -> bytes:
    try:
        data = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"malformed envelope: invalid {component} encoding") from exc
    # Reject non-canonical spellings (stray low bits in the last character).
    if _b64encode(data) != text:
        raise DecryptionError(f"malformed envelope: non-canonical {component} encoding")
    return data


@dataclass(frozen=True)
class EncryptionEnvelope:
    algorithm: str
    nonce: bytes
    ciphertext: bytes
    tag: bytes

    @property
    def header(self) -> str:
        return f"{ENVELOPE_VERSION}{ENVELOPE_SEPARATOR}{self.algorithm}"

    def to_text(self) -> str:
        return ENVELOPE_SEPARATOR.join(
            [
                self.header,
                _b64encode(self.nonce),
                _b64encode(self.ciphertext),
                _b64encode(self.tag),
            ]
        )

    def __str__(self) -> str:
        return self.to_text()

    @classmethod
    def from_text(cls, text: str) -> "EncryptionEnvelope":
        """Parse the text form strictly. Raises DecryptionError on any deviation."""
        if _ENVELOPE_SHAPE.match(text) is None:
            raise DecryptionError("malformed envelope: unrecognised format")
        _version, algorithm, nonce, ciphertext, tag = text.split(ENVELOPE_SEPARATOR)
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise DecryptionError(f"unsupported algorithm '{algorithm}'")
        envelope = cls(
            algorithm=algorithm,
            nonce=_b64decode(nonce, "nonce"),
            ciphertext=_b64decode(ciphertext, "ciphertext"),
            tag=_b64decode(tag, "tag"),
        )
        if len(envelope.nonce) != NONCE_SIZE:
            raise DecryptionError("malformed envelope: bad nonce length")
        if len(envelope.tag) != TAG_SIZE:
            raise DecryptionError("malformed envelope: bad tag length")
        return envelope


def validate_key(key: bytes | None) -> bytes:
    """Return ``key`` unchanged if it is usable for AES-256-GCM."""
    if not key:
        raise CryptoConfigurationError("no encryption key supplied")
    if len(key) != KEY_SIZE:
        raise CryptoConfigurationError(
            f"encryption key must be {KEY_SIZE} bytes, got {len(key)}"
        )
    return key


def decode_key(text: str | None) -> bytes:
    """Decode the URL-safe base64 text form of a key (as kept in an environment variable)."""
    if text is None or not text.strip():
        raise CryptoConfigurationError("no encryption key supplied")
    cleaned = text.strip()
    try:
        key = base64.urlsafe_b64decode(cleaned + "=" * (-len(cleaned) % 4))
    except (binascii.Error, ValueError) as exc:
        raise CryptoConfigurationError("encryption key is not valid base64") from exc
    return validate_key(key)


class CryptoService:
    """Stateless wrapper around AES-256-GCM.

    Each ``encrypt`` call draws a fresh random nonce, so encrypting the same
    plaintext twice yields different envelopes.  An explicit ``nonce`` is
    accepted for deterministic tests only.
    """

    def encrypt(
        self, plaintext: bytes, key: bytes, nonce: bytes | None = None
    ) -> EncryptionEnvelope:
        aesgcm = AESGCM(validate_key(key))
        if nonce is None:
            nonce = os.urandom(NONCE_SIZE)
        elif len(nonce) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes")
        header = f"{ENVELOPE_VERSION}{ENVELOPE_SEPARATOR}{ALGORITHM_AES256_GCM}"
        sealed = aesgcm.encrypt(nonce, plaintext, header.encode("ascii"))
        return EncryptionEnvelope(
            algorithm=ALGORITHM_AES256_GCM,
            nonce=nonce,
            ciphertext=sealed[:-TAG_SIZE],
            tag=sealed[-TAG_SIZE:],
        )

    def decrypt(self, envelope: EncryptionEnvelope | str, key: bytes) -> bytes:
        aesgcm = AESGCM(validate_key(key))
        if isinstance(envelope, str):
            envelope = EncryptionEnvelope.from_text(envelope)
        if envelope.algorithm not in SUPPORTED_ALGORITHMS:
            raise DecryptionError(f"unsupported algorithm '{envelope.algorithm}'")
        try:
            return aesgcm.decrypt(
                envelope.nonce, envelope.ciphertext + envelope.tag, envelope.header.encode("ascii")
            )
        except InvalidTag as exc:
            raise DecryptionError("authentication failed (tampered value or wrong key)") from exc

    def encrypt_text(self, plaintext: str, key: bytes) -> str:
        return self.encrypt(plaintext.encode("utf-8"), key).to_text()

    def decrypt_text(self, envelope: EncryptionEnvelope | str, key: bytes) -> str:
        plaintext = self.decrypt(envelope, key)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("decrypted value is not valid UTF-8") from exc
