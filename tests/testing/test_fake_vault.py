# tests/testing/test_fake_vault.py
"""Tests for the FakeVault transport and Starlette app."""

from __future__ import annotations

import httpx
import pytest
from starlette.testclient import TestClient

from vaultbench.clients.vault import DETOKENIZE_PATH, TOKENIZE_PATH
from vaultbench.testing.fake_vault import FakeVault, create_app


def _client(vault: FakeVault) -> httpx.Client:
    return httpx.Client(base_url="https://vault.test", transport=vault.transport())


class TestTransport:
    def test_tokenize_then_detokenize(self) -> None:
        vault = FakeVault()
        with _client(vault) as client:
            inserted = client.post(
                TOKENIZE_PATH,
                json={"vaultID": "v", "tableName": "t", "records": [{"data": {"name": "Alice"}}]},
            )
            token = inserted.json()["records"][0]["tokens"]["name"][0]["token"]
            resolved = client.post(DETOKENIZE_PATH, json={"vaultID": "v", "tokens": [token]})

        assert inserted.status_code == 200
        assert resolved.json() == {"response": [{"token": token, "value": "Alice"}]}

    def test_same_value_gets_distinct_tokens(self) -> None:
        vault = FakeVault()
        with _client(vault) as client:
            body = client.post(
                TOKENIZE_PATH,
                json={"vaultID": "v", "records": [{"data": {"name": "Alice"}}, {"data": {"name": "Alice"}}]},
            ).json()

        tokens = [r["tokens"]["name"][0]["token"] for r in body["records"]]
        assert tokens[0] != tokens[1]

    def test_unknown_token_404(self) -> None:
        with _client(FakeVault()) as client:
            response = client.post(DETOKENIZE_PATH, json={"vaultID": "v", "tokens": ["nope"]})
        assert response.status_code == 404

    def test_injected_failures_consumed_in_order(self) -> None:
        vault = FakeVault()
        vault.seed("t1", "Alice")
        vault.fail_next(503, 429)

        with _client(vault) as client:
            statuses = [client.post(DETOKENIZE_PATH, json={"tokens": ["t1"]}).status_code for _ in range(3)]

        assert statuses == [503, 429, 200]
        assert vault.stats().call_count == 3

    def test_vault_id_enforced(self) -> None:
        vault = FakeVault(vault_id="right")
        vault.seed("t1", "Alice")
        with _client(vault) as client:
            response = client.post(DETOKENIZE_PATH, json={"vaultID": "wrong", "tokens": ["t1"]})
        assert response.status_code == 404

    def test_invalid_json(self) -> None:
        with _client(FakeVault()) as client:
            response = client.post(DETOKENIZE_PATH, content=b"not json")
        assert response.status_code == 400

    def test_stats_and_reset(self) -> None:
        vault = FakeVault(record_requests=True)
        vault.seed("t1", "A")
        with _client(vault) as client:
            client.post(DETOKENIZE_PATH, json={"tokens": ["t1", "t1"]})

        stats = vault.stats()
        assert stats.call_sizes == (2,)
        assert stats.detokenize_calls == 1
        assert stats.tokenize_calls == 0

        vault.reset()
        assert vault.stats().call_count == 0
        assert vault.requests == []


class TestStarletteApp:
    def test_round_trip_over_asgi(self) -> None:
        app = create_app()
        with TestClient(app) as client:
            inserted = client.post(TOKENIZE_PATH, json={"vaultID": "v", "records": [{"data": {"name": "Bob"}}]})
            token = inserted.json()["records"][0]["tokens"]["name"][0]["token"]
            resolved = client.post(DETOKENIZE_PATH, json={"vaultID": "v", "tokens": [token]})
            stats = client.get("/admin/stats").json()

        assert resolved.json()["response"][0]["value"] == "Bob"
        assert stats["call_count"] == 2
        assert app.state.vault.stats().tokenize_calls == 1

    def test_health(self) -> None:
        with TestClient(create_app()) as client:
            assert client.get("/health").json() == {"status": "ok"}

    def test_served_app_keeps_no_request_history(self) -> None:
        app = create_app()
        with TestClient(app) as client:
            for _ in range(5):
                client.post(DETOKENIZE_PATH, json={"vaultID": "v", "tokens": ["unknown"]})

        vault = app.state.vault
        assert vault.stats().call_count == 5
        assert vault.stats().call_sizes == ()
        assert vault.requests == []


class TestBoundedState:
    def test_not_recording_by_default(self) -> None:
        vault = FakeVault()
        vault.seed("t1", "A")
        with _client(vault) as client:
            client.post(DETOKENIZE_PATH, json={"tokens": ["t1"]})

        assert vault.requests == []
        assert vault.stats().call_sizes == ()
        assert vault.stats().detokenize_calls == 1

    def test_token_store_evicts_oldest(self) -> None:
        vault = FakeVault(max_tokens=2)
        vault.seed("t1", "A")
        vault.seed("t2", "B")
        vault.seed("t3", "C")

        assert vault.token_count() == 2
        with _client(vault) as client:
            assert client.post(DETOKENIZE_PATH, json={"tokens": ["t1"]}).status_code == 404
            assert client.post(DETOKENIZE_PATH, json={"tokens": ["t2", "t3"]}).status_code == 200

    def test_tokenize_respects_capacity(self) -> None:
        vault = FakeVault(max_tokens=3)
        with _client(vault) as client:
            client.post(TOKENIZE_PATH, json={"records": [{"data": {"name": str(i)}} for i in range(10)]})

        assert vault.token_count() == 3

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError, match="max_tokens"):
            FakeVault(max_tokens=0)
