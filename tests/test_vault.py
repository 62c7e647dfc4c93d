from __future__ import annotations

import json

import httpx
import pytest

from cluster_bootstrap.errors import RemoteOperationError, TransientInfrastructureError
from cluster_bootstrap.retry import RetryPolicy
from cluster_bootstrap.vault import VaultKeyStore


def _store(handler, namespace=None) -> VaultKeyStore:
    return VaultKeyStore("http://10.0.0.5:8200", "root", namespace, transport=httpx.MockTransport(handler))


class TestVaultKeyStore:
    def test_create_key_request(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        with _store(handler, namespace="team") as store:
            store.create_key("validator-0__owner")

        (request,) = seen
        assert request.method == "POST"
        assert request.url.path == "/v1/transit/keys/validator-0__owner"
        assert request.headers["X-Vault-Token"] == "root"
        assert request.headers["X-Vault-Namespace"] == "team"
        assert json.loads(request.content) == {"type": "ed25519", "exportable": True}

    def test_no_namespace_header_by_default(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        with _store(handler) as store:
            store.create_key("k")
        assert "X-Vault-Namespace" not in seen[0].headers

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_unavailable_is_transient(self, status):
        with _store(lambda r: httpx.Response(status)) as store:
            with pytest.raises(TransientInfrastructureError, match=f"HTTP {status}"):
                store.create_key("k")

    def test_connection_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with _store(handler) as store:
            with pytest.raises(TransientInfrastructureError, match="unreachable"):
                store.create_key("k")

    def test_mount_not_enabled_yet_is_transient(self):
        with _store(lambda r: httpx.Response(404, json={"errors": ["no handler for route"]})) as store:
            with pytest.raises(TransientInfrastructureError, match="HTTP 404"):
                store.create_key("k")

    def test_retry_waits_for_transit_mount(self):
        responses = iter([404, 404, 204])
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(next(responses))

        with _store(handler) as store:
            RetryPolicy(max_attempts=5, delay_seconds=0).call(lambda: store.create_key("validator-0__owner"))
        assert calls == ["/v1/transit/keys/validator-0__owner"] * 3

    def test_rejected_request(self):
        with _store(lambda r: httpx.Response(403, text="permission denied")) as store:
            with pytest.raises(RemoteOperationError, match="HTTP 403 permission denied"):
                store.create_key("k")
