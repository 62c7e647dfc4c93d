# /*
# Copyright 2026 The Cluster Bootstrap Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Vault transit-engine client used to create validator key slots."""

from __future__ import annotations

import httpx

from cluster_bootstrap import logger
from cluster_bootstrap.constants import (
    DEFAULT_VAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_VAULT_TRANSIT_MOUNT,
)
from cluster_bootstrap.errors import RemoteOperationError, TransientInfrastructureError

# A freshly started dev server answers 404 until its startup script has enabled
# the transit mount. 429 and 503 cover standby and sealed servers.
_TRANSIENT_STATUSES = frozenset({404, 429, 500, 502, 503, 504})


class VaultKeyStore:
    """Creates Ed25519 keys in a Vault transit engine.

    Key creation is an upsert on the Vault side, so creating an existing key
    succeeds and leaves the key untouched.

    Example:
        store = VaultKeyStore("http://10.0.0.5:8200", "root")
        try:
            store.create_key("validator-0__owner")
        finally:
            store.close()
    """

    def __init__(
        self,
        url: str,
        token: str,
        namespace: str | None = None,
        *,
        mount: str = DEFAULT_VAULT_TRANSIT_MOUNT,
        timeout: float = DEFAULT_VAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"X-Vault-Token": token, "Accept": "application/json"}
        if namespace:
            headers["X-Vault-Namespace"] = namespace
        self.url = url
        self._mount = mount.strip("/")
        self._client = httpx.Client(base_url=url, headers=headers, timeout=timeout, transport=transport)

    def create_key(self, name: str) -> None:
        """Create the transit key ``name``.

        Raises:
            TransientInfrastructureError: If Vault is unreachable or not serving the
                transit mount yet.
            RemoteOperationError: For any other rejected request.
        """
        path = f"/v1/{self._mount}/keys/{name}"
        try:
            resp = self._client.post(path, json={"type": "ed25519", "exportable": True})
        except httpx.TransportError as err:
            raise TransientInfrastructureError(f"Vault at {self.url} unreachable creating {name}: {err}") from err

        if resp.status_code in _TRANSIENT_STATUSES:
            raise TransientInfrastructureError(
                f"Vault at {self.url} unavailable creating {name}: HTTP {resp.status_code}"
            )
        if resp.is_error:
            raise RemoteOperationError(
                f"Failed to create {name} at {self.url}: HTTP {resp.status_code} {resp.text[:200]}"
            )
        logger.debug("Created key %s at %s", name, self.url)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> VaultKeyStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
