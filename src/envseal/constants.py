"""Application-wide constants."""

APP_TITLE = "envseal"

# Envelope layout: ENCv1:A256GCM:<nonce>:<ciphertext>:<tag>
ENVELOPE_VERSION = "ENCv1"
ALGORITHM_AES256_GCM = "A256GCM"
SUPPORTED_ALGORITHMS: tuple[str, ...] = (ALGORITHM_AES256_GCM,)
ENVELOPE_SEPARATOR = ":"

KEY_SIZE = 32  # bytes, AES-256
NONCE_SIZE = 12  # bytes, 96-bit GCM nonce
TAG_SIZE = 16  # bytes, 128-bit GCM tag

DEFAULT_KEY_VARIABLE = "ENVSEAL_KEY"
DEFAULT_MAX_WORKERS = 8

DEFAULT_SENSITIVE_KEYS: list[str] = []
DEFAULT_SENSITIVE_SUFFIXES: list[str] = [
    "_PASSWORD",
    "_PASSWD",
    "_SECRET",
    "_TOKEN",
    "_API_KEY",
    "_PRIVATE_KEY",
]

AUDIT_LOGGER_NAME = "envseal.audit"

SUMMARY_COLUMNS = ("File", "Key", "Operation", "Status", "Reason")
