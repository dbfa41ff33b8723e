"""Config file loading, validation, and persistence.

Schema on disk (~/.config/envseal/config.json):

    {
        "sensitive_keys": ["USERNAME", "PASSWORD"],
        "sensitive_suffixes": ["_PASSWORD", "_SECRET", "_TOKEN", "_API_KEY"],
        "ignore_case": true,
        "key_variable": "ENVSEAL_KEY",
        "max_workers": 8
    }

Keys prefixed with "_" are reserved (e.g. "_comment") and are stripped on load.
"""

import json
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from envseal.constants import (
    DEFAULT_KEY_VARIABLE,
    DEFAULT_MAX_WORKERS,
    DEFAULT_SENSITIVE_KEYS,
    DEFAULT_SENSITIVE_SUFFIXES,
)

CONFIG_PATH = Path("~/.config/envseal/config.json").expanduser()

_README_PATH = Path("~/.config/envseal/README.md").expanduser()

_README_CONTENT = """\
# envseal configuration

Edit `config.json` in this directory to choose which variables envseal encrypts.

## Which keys are sensitive

A variable is encrypted by `envseal encrypt` when its key is either

- listed in `sensitive_keys` (exact match), or
- ends with one of `sensitive_suffixes` (e.g. `DB_PASSWORD` matches `_PASSWORD`).

Matching ignores case unless `ignore_case` is `false`.  Values that are already
encrypted are never touched again, and empty values are never encrypted.

## Schema

```json
{
    "sensitive_keys": ["USERNAME", "PASSWORD"],
    "sensitive_suffixes": ["_PASSWORD", "_SECRET", "_TOKEN", "_API_KEY"],
    "ignore_case": true,
    "key_variable": "ENVSEAL_KEY",
    "max_workers": 8
}
```

`key_variable` names the environment variable holding the 32-byte key as
URL-safe base64.  Keys prefixed with `_` (e.g. `_comment`) are ignored.
"""


class SensitivityPolicy(BaseModel):
    """Naming convention deciding which keys get encrypted."""

    keys: list[str] = Field(default_factory=lambda: list(DEFAULT_SENSITIVE_KEYS))
    suffixes: list[str] = Field(default_factory=lambda: list(DEFAULT_SENSITIVE_SUFFIXES))
    ignore_case: bool = True

    def is_sensitive(self, key: str) -> bool:
        if self.ignore_case:
            key = key.upper()
            keys = {k.upper() for k in self.keys}
            suffixes = tuple(s.upper() for s in self.suffixes)
        else:
            keys = set(self.keys)
            suffixes = tuple(self.suffixes)
        return key in keys or key.endswith(suffixes)

    def extended(
        self, keys: list[str] | None = None, suffixes: list[str] | None = None
    ) -> "SensitivityPolicy":
        """Return a copy with extra keys/suffixes appended (CLI overrides)."""
        return self.model_copy(
            update={
                "keys": [*self.keys, *(keys or [])],
                "suffixes": [*self.suffixes, *(suffixes or [])],
            }
        )


class Settings(BaseModel):
    sensitive_keys: list[str] = Field(default_factory=lambda: list(DEFAULT_SENSITIVE_KEYS))
    sensitive_suffixes: list[str] = Field(default_factory=lambda: list(DEFAULT_SENSITIVE_SUFFIXES))
    ignore_case: bool = True
    key_variable: str = DEFAULT_KEY_VARIABLE
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, ge=1)

    @property
    def policy(self) -> SensitivityPolicy:
        return SensitivityPolicy(
            keys=self.sensitive_keys,
            suffixes=self.sensitive_suffixes,
            ignore_case=self.ignore_case,
        )


class ConfigError(Exception):
    """Raised when config.json exists but cannot be parsed or validated."""


def load_config(path: Path | None = None) -> Settings:
    """Load and validate the config file.

    Creates the config directory, a default config.json, and a README on first
    run, returning default settings.  Raises ConfigError if the file exists
    but is malformed.
    """
    path = path or CONFIG_PATH
    if not path.exists():
        if path == CONFIG_PATH:
            _bootstrap()
        return Settings()

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    try:
        raw: object = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path.name} is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path.name} must be a JSON object at the top level")

    # Strip reserved/comment keys.
    data = {k: v for k, v in raw.items() if not k.startswith("_")}

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {path}: {exc}") from exc


def save_config(settings: Settings, path: Path | None = None) -> None:
    """Persist settings to disk, creating directories as needed."""
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.model_dump(), indent=2), encoding="utf-8")


def _bootstrap() -> None:
    """Create the config directory, a config.json holding the defaults, and a README."""
    save_config(Settings(), CONFIG_PATH)
    if not _README_PATH.exists():
        _README_PATH.write_text(_README_CONTENT, encoding="utf-8")
