# tests/conftest.py
"""Shared test fixtures.

Fixtures build vault configs, fake vaults and processors wired to each
other in-process, so no test opens a real socket.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings
from structlog.testing import capture_logs

from vaultbench.core.config import VaultConfig
from vaultbench.engine.processor import VaultBatchProcessor
from vaultbench.testing.fake_vault import FakeVault

VAULT_URL = "https://vault.test"


def make_vault_config(**overrides: Any) -> VaultConfig:
    """VaultConfig with test defaults; retries are immediate unless overridden."""
    fields: dict[str, Any] = {
        "vault_url": VAULT_URL,
        "account_id": "acct-1",
        "api_key": "sk-test",
        "vault_id": "vault-1",
        "retry_delay_ms": 0,
    }
    fields.update(overrides)
    return VaultConfig(**fields)


@pytest.fixture
def make_config() -> Callable[..., VaultConfig]:
    """Factory fixture for VaultConfig with test defaults."""
    return make_vault_config


@pytest.fixture
def vault_config() -> VaultConfig:
    return make_vault_config()


@pytest.fixture
def fake_vault() -> FakeVault:
    return FakeVault(record_requests=True)


@pytest.fixture
def processor(fake_vault: FakeVault) -> Iterator[VaultBatchProcessor]:
    """Processor talking to the fake vault (sub-batch size 2, concurrency 2)."""
    config = make_vault_config(sub_batch_size=2, max_concurrency=2)
    proc = VaultBatchProcessor.from_config(config, transport=fake_vault.transport(), emit_metrics=False)
    yield proc
    proc.close()


@pytest.fixture
def log_capture() -> Iterator[list[dict[str, Any]]]:
    """Capture structlog events emitted during the test."""
    with capture_logs() as logs:
        yield logs


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
