"""Test and benchmark doubles for vaultbench."""

from vaultbench.testing.fake_vault import FakeVault, FakeVaultStats, create_app

__all__ = [
    "FakeVault",
    "FakeVaultStats",
    "create_app",
]
