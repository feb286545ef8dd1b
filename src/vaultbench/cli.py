# src/vaultbench/cli.py
"""vaultbench Command Line Interface.

Usage:
    # Detokenize rows from a file against the vault configured in the environment
    vaultbench detokenize --input rows.json

    # Tokenize from stdin with a YAML config and a 20s batch deadline
    echo '[[0, "Alice"], [1, "Bob"]]' | vaultbench tokenize --config vaultbench.yaml --timeout 20

    # Serve the fake vault for local benchmarks
    vaultbench fake-vault --port 8900 --latency-ms 25
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from vaultbench import __version__
from vaultbench.contracts import BatchParseError, Operation
from vaultbench.core.config import DEFAULT_ENTITY, VaultConfig, load_settings, load_vault_configs
from vaultbench.engine.processor import VaultBatchProcessor
from vaultbench.pooling import CancelScope
from vaultbench.testing.fake_vault import DEFAULT_SERVED_MAX_TOKENS

app = typer.Typer(
    name="vaultbench",
    help="vaultbench: batched, deduplicating vault tokenize/detokenize client.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"vaultbench version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load VAULT_* variables from a .env file without overriding the environment.

    Raises:
        typer.Exit: If an explicit env_file doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """vaultbench: batched, deduplicating vault tokenize/detokenize client."""
    from vaultbench.core.logging import configure_logging

    # stdout carries result rows
    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO", stream=sys.stderr)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


@contextmanager
def _shutdown_scope(timeout_seconds: float | None) -> Iterator[CancelScope]:
    """Yield a CancelScope that SIGINT/SIGTERM cancel.

    The first signal cancels the batch (partial results are still
    printed); default SIGINT handling is restored so a second Ctrl-C
    force-kills. Signal handlers are only installed on the main thread.
    """
    shutdown_event = threading.Event()
    scope = CancelScope(timeout_seconds=timeout_seconds, event=shutdown_event)

    if threading.current_thread() is not threading.main_thread():
        yield scope
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, frame: Any) -> None:
        scope.cancel(f"interrupted by {signal.Signals(signum).name}")
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield scope
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


def _resolve_vault(config_path: Path | None, entity: str | None) -> tuple[VaultConfig, float | None]:
    """Pick the VaultConfig for an entity from YAML settings or the environment.

    Returns:
        (vault config, default batch timeout from settings)

    Raises:
        typer.Exit: If no vault is configured or the entity is unknown
    """
    if config_path is not None:
        try:
            settings = load_settings(config_path.expanduser())
        except (YamlParserError, YamlScannerError) as e:
            typer.echo(f"YAML syntax error in {config_path}: {e.problem}", err=True)
            raise typer.Exit(1) from None
        except FileNotFoundError:
            typer.echo(f"Error: Config file not found: {config_path}", err=True)
            raise typer.Exit(1) from None
        except ValidationError as e:
            typer.echo("Configuration errors:", err=True)
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                typer.echo(f"  - {loc}: {error['msg']}", err=True)
            raise typer.Exit(1) from None
        vaults = settings.vaults
        default_entity = settings.default_entity
        timeout = settings.batch_timeout_seconds
    else:
        try:
            vaults = load_vault_configs() or {}
        except ValidationError as e:
            typer.echo(f"Invalid VAULT_* environment: {e.error_count()} error(s)", err=True)
            raise typer.Exit(1) from None
        default_entity = DEFAULT_ENTITY
        timeout = None

    if not vaults:
        typer.echo("Error: No vault configured (set VAULT_URL and VAULT_ID, or pass --config).", err=True)
        raise typer.Exit(1)

    name = (entity or default_entity).upper()
    if name not in vaults:
        typer.echo(f"Error: Unknown entity {name!r}. Configured: {', '.join(sorted(vaults))}", err=True)
        raise typer.Exit(1)
    return vaults[name], timeout


def _read_rows(input_path: Path | None) -> Any:
    """Read ``[[row_key, value], ...]`` or ``{"data": [...]}`` JSON."""
    try:
        raw = input_path.read_text(encoding="utf-8") if input_path is not None else sys.stdin.read()
    except OSError as e:
        typer.echo(f"Error: Cannot read input: {e}", err=True)
        raise typer.Exit(1) from None

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Input is not valid JSON: {e}", err=True)
        raise typer.Exit(1) from None

    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _run(
    operation: Operation,
    input_path: Path | None,
    config_path: Path | None,
    entity: str | None,
    timeout: float | None,
) -> None:
    vault_config, default_timeout = _resolve_vault(config_path, entity)
    rows = _read_rows(input_path)

    processor = VaultBatchProcessor.from_config(vault_config)
    try:
        with _shutdown_scope(timeout if timeout is not None else default_timeout) as scope:
            result = processor.process(operation, rows, scope=scope)
    except BatchParseError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    finally:
        processor.close()

    typer.echo(json.dumps(result.rows, ensure_ascii=False))
    if result.metrics.error_count or result.metrics.malformed_count:
        raise typer.Exit(2)


_INPUT_OPTION = typer.Option(None, "--input", "-i", help="JSON rows file (stdin if omitted).")
_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Settings YAML (VAULT_* environment if omitted).")
_ENTITY_OPTION = typer.Option(None, "--entity", "-e", help="Entity whose vault to use (default entity if omitted).")
_TIMEOUT_OPTION = typer.Option(None, "--timeout", "-t", min=0.001, help="Batch deadline in seconds.")


@app.command()
def tokenize(
    input_path: Path | None = _INPUT_OPTION,
    config_path: Path | None = _CONFIG_OPTION,
    entity: str | None = _ENTITY_OPTION,
    timeout: float | None = _TIMEOUT_OPTION,
) -> None:
    """Tokenize [[row_key, value], ...] and print [[row_key, token], ...].

    Exit code 2 means at least one row carries an error placeholder.
    """
    _run(Operation.TOKENIZE, input_path, config_path, entity, timeout)


@app.command()
def detokenize(
    input_path: Path | None = _INPUT_OPTION,
    config_path: Path | None = _CONFIG_OPTION,
    entity: str | None = _ENTITY_OPTION,
    timeout: float | None = _TIMEOUT_OPTION,
) -> None:
    """Detokenize [[row_key, token], ...] and print [[row_key, value], ...].

    Exit code 2 means at least one row carries an error placeholder.
    """
    _run(Operation.DETOKENIZE, input_path, config_path, entity, timeout)


@app.command("fake-vault")
def fake_vault(
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to."),
    port: int = typer.Option(8900, "--port", "-p", help="Port to listen on."),
    latency_ms: float = typer.Option(0.0, "--latency-ms", min=0.0, help="Delay added to every vault request."),
    vault_id: str | None = typer.Option(None, "--vault-id", help="Only accept requests for this vault id."),
    max_tokens: int = typer.Option(
        DEFAULT_SERVED_MAX_TOKENS, "--max-tokens", min=1, help="Tokens kept before the oldest are evicted."
    ),
) -> None:
    """Serve an in-memory fake vault with the real tokenize/detokenize endpoints."""
    import uvicorn

    from vaultbench.testing.fake_vault import create_app

    typer.echo(f"Starting fake vault on http://{host}:{port}")
    typer.echo(f"  Latency: {latency_ms}ms")
    typer.echo(f"  Vault id: {vault_id or 'any'}")
    typer.echo(f"  Token capacity: {max_tokens}")

    vault_app = create_app(latency_ms=latency_ms, vault_id=vault_id, max_tokens=max_tokens)
    uvicorn.run(vault_app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    app()
