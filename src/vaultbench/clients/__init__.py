"""Clients for external services called during batch processing."""

from vaultbench.clients.retry import RetryConfig, RetryManager
from vaultbench.clients.vault import DETOKENIZE_PATH, TOKENIZE_PATH, VaultClient

__all__ = [
    "DETOKENIZE_PATH",
    "TOKENIZE_PATH",
    "RetryConfig",
    "RetryManager",
    "VaultClient",
]
