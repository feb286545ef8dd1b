"""Configuration schema and loading for vaultbench.

Two sources:

1. ``load_vault_configs(environ)`` reads the flat ``VAULT_*`` environment
   variables a deployed external function is given, one VaultConfig per
   entity (NAME, ID, SSN, DOB, EMAIL).
2. ``load_settings(path)`` reads a YAML settings file through Dynaconf with
   ``VAULTBENCH_*`` environment overrides, for the CLI.

Configs are built once and passed by reference into constructors. Nothing
in this package reads configuration from module globals.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Self

import structlog
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from vaultbench.pooling.config import PoolConfig

logger = structlog.get_logger(__name__)

DEFAULT_SUB_BATCH_SIZE = 25
DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_RETRY_DELAY_MS = 500
DEFAULT_TABLE_NAME = "table1"
DEFAULT_COLUMN_NAME = "name"
DEFAULT_ENTITY = "NAME"

# Entities that may have their own vault via VAULT_ID_{ENTITY}
ENTITIES: tuple[str, ...] = ("NAME", "ID", "SSN", "DOB", "EMAIL")


class VaultConfig(BaseModel):
    """Connection and batching settings for one vault table/column.

    Attributes:
        vault_url: Data-plane base URL (http or https, no trailing slash)
        account_id: Sent as the account header when non-empty
        api_key: Bearer credential
        vault_id: Vault identifier placed in every request body
        table_name: Table used by tokenize inserts
        column_name: Column whose value is tokenized
        sub_batch_size: Max items per vault call
        max_concurrency: Max vault calls in flight per batch
        retry_delay_ms: Fixed delay before the single retry of a 5xx/429
        request_timeout_seconds: Per-request HTTP timeout
        account_id_header: Header name carrying account_id
    """

    model_config = {"frozen": True, "extra": "forbid"}

    vault_url: str = Field(description="Vault data-plane base URL")
    account_id: str = Field(default="", description="Account identifier")
    api_key: SecretStr = Field(description="Bearer API key")
    vault_id: str = Field(min_length=1, description="Vault identifier")
    table_name: str = Field(default=DEFAULT_TABLE_NAME, min_length=1)
    column_name: str = Field(default=DEFAULT_COLUMN_NAME, min_length=1)
    sub_batch_size: int = Field(default=DEFAULT_SUB_BATCH_SIZE, ge=1)
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    retry_delay_ms: int = Field(default=DEFAULT_RETRY_DELAY_MS, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    account_id_header: str = Field(default="X-Account-Id", min_length=1)

    @field_validator("vault_url")
    @classmethod
    def _validate_vault_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"vault_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    def to_pool_config(self) -> PoolConfig:
        """Convert to the dispatcher's PoolConfig."""
        return PoolConfig(max_concurrency=self.max_concurrency)


class VaultBenchSettings(BaseModel):
    """Top-level settings loaded from YAML.

    Attributes:
        vaults: VaultConfig per entity name (upper-case)
        default_entity: Entity used when a request does not name one
        simulated_delay_ms: Mock-mode delay per request
        batch_timeout_seconds: Deadline for one batch, None for no deadline
    """

    model_config = {"frozen": True, "extra": "forbid"}

    vaults: dict[str, VaultConfig] = Field(default_factory=dict)
    default_entity: str = DEFAULT_ENTITY
    simulated_delay_ms: int = Field(default=0, ge=0)
    batch_timeout_seconds: float | None = Field(default=None, gt=0)

    @field_validator("vaults")
    @classmethod
    def _upper_entity_names(cls, v: dict[str, VaultConfig]) -> dict[str, VaultConfig]:
        return {name.upper(): cfg for name, cfg in v.items()}

    @model_validator(mode="after")
    def _validate_default_entity(self) -> Self:
        if self.vaults and self.default_entity.upper() not in self.vaults:
            raise ValueError(f"default_entity {self.default_entity!r} has no vault (configured: {sorted(self.vaults)})")
        return self


# Names the deployed benchmark function was configured with before the
# VAULT_* names. A VAULT_* variable wins when both are set.
LEGACY_ENV_NAMES: dict[str, str] = {
    "VAULT_URL": "SKYFLOW_DATA_PLANE_URL",
    "VAULT_API_KEY": "SKYFLOW_API_KEY",
    "VAULT_ACCOUNT_ID": "SKYFLOW_ACCOUNT_ID",
    "VAULT_ID": "SKYFLOW_VAULT_ID",
    "VAULT_TABLE_NAME": "SKYFLOW_TABLE_NAME",
    "VAULT_COLUMN_NAME": "SKYFLOW_COLUMN_NAME",
    "VAULT_SUB_BATCH_SIZE": "SKYFLOW_BATCH_SIZE",
    "VAULT_MAX_CONCURRENCY": "SKYFLOW_MAX_CONCURRENCY",
    **{f"VAULT_ID_{entity}": f"SKYFLOW_VAULT_ID_{entity}" for entity in ENTITIES},
}


def _env(environ: Mapping[str, str], key: str) -> str:
    """Value of a VAULT_* variable, falling back to its legacy name."""
    value = environ.get(key, "")
    if not value and key in LEGACY_ENV_NAMES:
        value = environ.get(LEGACY_ENV_NAMES[key], "")
    return value


def _env_or_default(environ: Mapping[str, str], key: str, fallback: str) -> str:
    value = _env(environ, key)
    return value if value else fallback


def _env_int_or_default(environ: Mapping[str, str], key: str, fallback: int) -> int:
    """Positive integer from the environment; anything else means fallback."""
    value = _env(environ, key)
    if value:
        try:
            n = int(value)
        except ValueError:
            return fallback
        if n > 0:
            return n
    return fallback


def load_vault_configs(environ: Mapping[str, str] | None = None) -> dict[str, VaultConfig] | None:
    """Read per-entity vault configs from ``VAULT_*`` environment variables.

    Returns None when ``VAULT_URL`` is unset (mock mode), or when it is set
    but no vault id is configured anywhere.

    Per-entity vault ids (``VAULT_ID_NAME``, ``VAULT_ID_SSN``, ...) win. If
    none are present, a single ``VAULT_ID`` is registered as entity NAME
    with ``VAULT_TABLE_NAME``/``VAULT_COLUMN_NAME``.

    Every variable also answers to its ``SKYFLOW_*`` name (see
    ``LEGACY_ENV_NAMES``).
    """
    if environ is None:
        environ = os.environ

    url = _env(environ, "VAULT_URL")
    if not url:
        return None

    api_key = _env(environ, "VAULT_API_KEY")
    account_id = _env(environ, "VAULT_ACCOUNT_ID")
    sub_batch_size = _env_int_or_default(environ, "VAULT_SUB_BATCH_SIZE", DEFAULT_SUB_BATCH_SIZE)
    max_concurrency = _env_int_or_default(environ, "VAULT_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)

    if not api_key:
        logger.warning("VAULT_URL set but VAULT_API_KEY missing, vault calls will fail")

    shared: dict[str, Any] = {
        "vault_url": url,
        "account_id": account_id,
        "api_key": api_key,
        "sub_batch_size": sub_batch_size,
        "max_concurrency": max_concurrency,
    }

    configs: dict[str, VaultConfig] = {}
    for entity in ENTITIES:
        vault_id = _env(environ, f"VAULT_ID_{entity}")
        if not vault_id:
            continue
        configs[entity] = VaultConfig(
            **shared,
            vault_id=vault_id,
            table_name=DEFAULT_TABLE_NAME,
            column_name=entity.lower(),
        )

    if not configs:
        vault_id = _env(environ, "VAULT_ID")
        if not vault_id:
            logger.warning("VAULT_URL set but no VAULT_ID or per-entity vault ids found")
            return None
        configs[DEFAULT_ENTITY] = VaultConfig(
            **shared,
            vault_id=vault_id,
            table_name=_env_or_default(environ, "VAULT_TABLE_NAME", DEFAULT_TABLE_NAME),
            column_name=_env_or_default(environ, "VAULT_COLUMN_NAME", DEFAULT_COLUMN_NAME),
        )

    return configs


# ${NAME} or ${NAME:-fallback}
_PLACEHOLDER = re.compile(r"\$\{(?P<name>[A-Z_][A-Z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


def _substitute(match: re.Match[str], environ: Mapping[str, str]) -> str:
    """Resolve one placeholder the way a POSIX shell resolves ``${NAME:-fallback}``.

    An empty variable counts as unset when a fallback is given. A
    placeholder that cannot be resolved stays in the text, so the
    validation error names the missing variable.
    """
    name, fallback = match.group("name"), match.group("fallback")
    current = environ.get(name)
    if fallback is not None:
        return current or fallback
    return current if current is not None else match.group(0)


def _expand_env_vars(node: Any, environ: Mapping[str, str] | None = None) -> Any:
    """Expand placeholders in every string of a loaded settings tree."""
    env = os.environ if environ is None else environ
    match node:
        case str():
            return _PLACEHOLDER.sub(lambda m: _substitute(m, env), node)
        case dict():
            return {key: _expand_env_vars(value, env) for key, value in node.items()}
        case list():
            return [_expand_env_vars(item, env) for item in node]
        case _:
            return node


def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
    """Lower-case setting keys; Dynaconf upper-cases them on the way in.

    Entity names under ``vaults`` keep their case (validated to upper later),
    but the VaultConfig field names inside each entity are lower-cased.
    """
    out: dict[str, Any] = {}
    for key, value in raw.items():
        lowered = key.lower()
        if lowered == "vaults" and isinstance(value, dict):
            out[lowered] = {
                entity: {k.lower(): v for k, v in cfg.items()} if isinstance(cfg, dict) else cfg
                for entity, cfg in value.items()
            }
        else:
            out[lowered] = value
    return out


def load_settings(config_path: Path) -> VaultBenchSettings:
    """Load settings from YAML with environment variable overrides.

    Precedence:
    1. Environment variables (VAULTBENCH_*) - highest priority
    2. Config file
    3. Defaults from the pydantic schema - lowest priority

    Nested keys use a double underscore:
    ``VAULTBENCH_VAULTS__NAME__MAX_CONCURRENCY=20``.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If configuration fails pydantic validation
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="VAULTBENCH",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(_normalize_keys(raw_config))

    return VaultBenchSettings(**raw_config)
