"""Configuration and logging."""

from vaultbench.core.config import (
    VaultBenchSettings,
    VaultConfig,
    load_settings,
    load_vault_configs,
)
from vaultbench.core.logging import METRIC_EVENT, configure_logging, log_metric

__all__ = [
    "METRIC_EVENT",
    "VaultBenchSettings",
    "VaultConfig",
    "configure_logging",
    "load_settings",
    "load_vault_configs",
    "log_metric",
]
