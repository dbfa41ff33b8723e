"""Command-line entry point: encrypt, decrypt and inspect env files."""

import json
import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from envseal.config import ConfigError, Settings, load_config
from envseal.constants import APP_TITLE, SUMMARY_COLUMNS
from envseal.coordinator import CryptoCoordinator
from envseal.crypto.service import CryptoConfigurationError, DecryptionError, decode_key
from envseal.models import BatchResult, OutcomeOperation, OutcomeStatus
from envseal.processor.file_encryptor import FileProcessingError
from envseal.runtime import MissingVariableError, RuntimeVariableResolver

app = typer.Typer(
    name=APP_TITLE,
    help="Encrypt and decrypt secret values inside KEY=value env files",
    no_args_is_help=True,
)

# Exit codes
EXIT_FAILED = 1
EXIT_CONFIG = 2

# Module-level defaults for Typer arguments
_PATHS_HELP = "Env files to process"
_SENSITIVE_HELP = "Extra key to treat as sensitive (repeatable)"
_SUFFIX_HELP = "Extra key suffix to treat as sensitive (repeatable)"
_KEY_ENV_HELP = "Environment variable holding the base64 key (default from config)"
_CONFIG_HELP = "Path to config.json (default ~/.config/envseal/config.json)"
_JSON_HELP = "Print the machine-readable summary as JSON"

_STATUS_STYLES = {OutcomeStatus.SUCCESS: "green", OutcomeStatus.FAILED: "bold red"}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every processed variable"),
) -> None:
    """envseal keeps secrets in env files encrypted at rest."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command()
def encrypt(
    paths: list[Path] = typer.Argument(..., help=_PATHS_HELP),  # noqa: B008
    sensitive: list[str] = typer.Option(  # noqa: B008
        [], "--sensitive", "-s", help=_SENSITIVE_HELP
    ),
    suffix: list[str] = typer.Option([], "--suffix", help=_SUFFIX_HELP),  # noqa: B008
    key_env: str | None = typer.Option(None, "--key-env", help=_KEY_ENV_HELP),
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),  # noqa: B008
    as_json: bool = typer.Option(False, "--json", help=_JSON_HELP),
) -> None:
    """Encrypt the sensitive values of each file in place."""
    settings = _load_settings(config_path)
    key = _load_key(settings, key_env)
    coordinator = CryptoCoordinator.from_settings(
        settings, policy=settings.policy.extended(keys=sensitive, suffixes=suffix)
    )
    _finish(coordinator.encrypt(paths, key), as_json)


@app.command()
def decrypt(
    paths: list[Path] = typer.Argument(..., help=_PATHS_HELP),  # noqa: B008
    key_env: str | None = typer.Option(None, "--key-env", help=_KEY_ENV_HELP),
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),  # noqa: B008
    as_json: bool = typer.Option(False, "--json", help=_JSON_HELP),
) -> None:
    """Decrypt every encrypted value of each file in place."""
    settings = _load_settings(config_path)
    key = _load_key(settings, key_env)
    coordinator = CryptoCoordinator.from_settings(settings)
    _finish(coordinator.decrypt(paths, key), as_json)


@app.command()
def check(
    paths: list[Path] = typer.Argument(..., help=_PATHS_HELP),  # noqa: B008
    sensitive: list[str] = typer.Option(  # noqa: B008
        [], "--sensitive", "-s", help=_SENSITIVE_HELP
    ),
    suffix: list[str] = typer.Option([], "--suffix", help=_SUFFIX_HELP),  # noqa: B008
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),  # noqa: B008
) -> None:
    """Fail if any sensitive value is still in plain text (for pre-commit hooks)."""
    settings = _load_settings(config_path)
    coordinator = CryptoCoordinator.from_settings(
        settings, policy=settings.policy.extended(keys=sensitive, suffixes=suffix)
    )
    report = coordinator.find_unencrypted(paths)

    for error in report.errors.values():
        typer.echo(f"Error: {error}", err=True)
    for path, keys in report.dirty.items():
        typer.echo(f"{path}: unencrypted {', '.join(keys)}", err=True)
    if not report.clean:
        raise typer.Exit(EXIT_FAILED)
    typer.echo(f"{len(report.pending)} file(s) clean")


@app.command()
def get(
    path: Path = typer.Argument(..., help="Env file to read"),  # noqa: B008
    name: str = typer.Argument(..., help="Variable to print"),
    key_env: str | None = typer.Option(None, "--key-env", help=_KEY_ENV_HELP),
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),  # noqa: B008
) -> None:
    """Print the decrypted value of one variable without rewriting the file."""
    settings = _load_settings(config_path)
    resolver = RuntimeVariableResolver(_load_key(settings, key_env))
    try:
        value = resolver.resolve_file(path, [name])[name]
    except (FileProcessingError, MissingVariableError, DecryptionError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(EXIT_FAILED) from exc
    typer.echo(value)


def _load_settings(config_path: Path | None) -> Settings:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        typer.echo(f"Config error: {exc}", err=True)
        raise typer.Exit(EXIT_CONFIG) from exc


def _load_key(settings: Settings, key_env: str | None) -> bytes:
    variable = key_env or settings.key_variable
    try:
        return decode_key(os.environ.get(variable))
    except CryptoConfigurationError as exc:
        typer.echo(f"Key error ({variable}): {exc}", err=True)
        raise typer.Exit(EXIT_CONFIG) from exc


def _finish(batch: BatchResult, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(batch.to_dict(), indent=2))
    else:
        _render(batch)
    if not batch.succeeded:
        raise typer.Exit(EXIT_FAILED)


def _render(batch: BatchResult) -> None:
    console = Console()
    table = Table(*SUMMARY_COLUMNS, title=f"{APP_TITLE} {batch.operation.value}")
    for path, result in batch.files.items():
        if result.error is not None:
            failed = _STATUS_STYLES[OutcomeStatus.FAILED]
            table.add_row(escape(str(path)), "", "", f"[{failed}]failed", escape(result.error))
            continue
        for outcome in result.outcomes:
            if outcome.operation is OutcomeOperation.SKIPPED:
                continue
            style = _STATUS_STYLES[outcome.status]
            table.add_row(
                escape(str(path)),
                outcome.key,
                outcome.operation.value,
                f"[{style}]{outcome.status.value}",
                escape(outcome.reason or ""),
            )
    if table.row_count:
        console.print(table)
    console.print(
        f"{len(batch.files)} file(s), {batch.mutated} variable(s) changed, "
        f"{len(batch.failed_files)} file(s) with failures"
    )
