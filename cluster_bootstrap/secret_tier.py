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

"""Key slot creation on secret-store nodes."""

from __future__ import annotations

from cluster_bootstrap import logger
from cluster_bootstrap.config import BootstrapSettings
from cluster_bootstrap.constants import ROOT_KEY, VALIDATOR_KEY_SLOTS
from cluster_bootstrap.provisioner import KeyStoreFactory
from cluster_bootstrap.roles import NodeHandle, validator_node_name


def key_slot_name(identity: str, key: str) -> str:
    return f"{identity}__{key}"


def key_slots_for(index: int, root_identity: str) -> list[str]:
    """Key slots a secret-store node must hold, root key first on index 0."""
    identity = validator_node_name(index)
    slots = [key_slot_name(identity, key) for key in VALIDATOR_KEY_SLOTS]
    if index == 0:
        slots.insert(0, key_slot_name(root_identity, ROOT_KEY))
    return slots


class SecretTierInitializer:
    """Creates the key slots of one secret-store node per call.

    The call does not retry by itself; the orchestrator wraps it in the
    configured :class:`~cluster_bootstrap.retry.RetryPolicy`. Since key
    creation is idempotent, re-running a partially completed call converges
    on the same key set.
    """

    def __init__(self, settings: BootstrapSettings, key_store_factory: KeyStoreFactory) -> None:
        self._settings = settings
        self._key_store_factory = key_store_factory

    def initialize_node(self, index: int, node: NodeHandle) -> None:
        """Create every key slot for validator ``index`` on ``node``.

        Raises:
            TransientInfrastructureError: If the secret store is not reachable yet.
            RemoteOperationError: If the secret store rejected a key.
        """
        url = self._settings.vault_url(node.internal_address)
        store = self._key_store_factory(url, self._settings.vault_token, None)
        try:
            for slot in key_slots_for(index, self._settings.root_identity):
                store.create_key(slot)
        finally:
            store.close()
        logger.info("Initialized key slots on %s (%s)", node.name, url)
