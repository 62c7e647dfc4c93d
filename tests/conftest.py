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

from __future__ import annotations

import threading
from collections import Counter
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import sh

from cluster_bootstrap.config import BootstrapSettings
from cluster_bootstrap.errors import RemoteOperationError, TransientInfrastructureError
from cluster_bootstrap.roles import Instance, InstanceConfig, NodeHandle


class FakeProvisioner:
    """In-memory scheduler. Node ``<name>`` gets address ``10.0.<n>.<m>``."""

    def __init__(
        self,
        fail_allocation: str | None = None,
        fail_copy: str | None = None,
        fail_cleanup: bool = False,
    ) -> None:
        self.fail_allocation = fail_allocation
        self.fail_cleanup = fail_cleanup
        self.fail_copy = fail_copy
        self.lock = threading.Lock()
        self.events: list[tuple] = []
        self.allocated: list[str] = []
        self.spawned: list[InstanceConfig] = []
        self.wiped: list[str] = []
        self.copies: list[tuple[str, str, str, bytes]] = []
        self.cleanups = 0

    def _record(self, *event) -> None:
        with self.lock:
            self.events.append(event)

    def cleanup(self) -> None:
        if self.fail_cleanup:
            raise RemoteOperationError("kubectl delete timed out")
        self.cleanups += 1
        self._record("cleanup")

    def allocate_node(self, name: str) -> NodeHandle:
        if name == self.fail_allocation:
            raise RemoteOperationError("pod never scheduled")
        with self.lock:
            self.allocated.append(name)
            n = len(self.allocated)
        self._record("allocate", name)
        return NodeHandle(name=name, node_name=f"pool-{n}", internal_address=f"10.0.{n // 250}.{n % 250 + 1}")

    def wipe_data(self, node_name: str) -> None:
        with self.lock:
            self.wiped.append(node_name)
        self._record("wipe", node_name)

    def spawn_instance(self, config: InstanceConfig) -> Instance:
        with self.lock:
            self.spawned.append(config)
        self._record("spawn", config.peer_name)
        return Instance(
            peer_name=config.peer_name,
            role=config.role.kind,
            node_name=config.node.node_name,
            address=config.node.internal_address,
            image_tag=getattr(config.role, "image_tag", "dev"),
        )

    def copy_file(self, node_name: str, container_name: str, dest_path: str, data: bytes) -> None:
        if container_name == self.fail_copy:
            raise RemoteOperationError("kubectl cp failed")
        with self.lock:
            self.copies.append((node_name, container_name, dest_path, data))
        self._record("copy", container_name)


class FakeScaler:
    """Records resize calls; a resize to ``fail_target`` raises after being recorded."""

    def __init__(self, fail_target: int | None = None) -> None:
        self.fail_target = fail_target
        self.calls: list[tuple[int, float, bool, bool]] = []

    def resize(self, target_count, buffer_percent, wait_for_scale_up, wait_for_scale_down) -> None:
        self.calls.append((target_count, buffer_percent, wait_for_scale_up, wait_for_scale_down))
        if target_count == self.fail_target:
            raise RemoteOperationError("k3d node create failed: out of memory")


class FakeKeyStore:
    def __init__(self, registry: FakeKeyStoreRegistry, url: str) -> None:
        self.registry = registry
        self.url = url
        self.closed = False

    def create_key(self, name: str) -> None:
        self.registry.create(self.url, name)

    def close(self) -> None:
        self.closed = True


class FakeKeyStoreRegistry:
    """Key sets per secret-store URL; ``transient_failures`` fail the first N creates per URL."""

    def __init__(self, transient_failures: int = 0) -> None:
        self.transient_failures = transient_failures
        self.keys: dict[str, set[str]] = {}
        self.creates: Counter = Counter()
        self.failures: Counter = Counter()
        self.stores: list[FakeKeyStore] = []
        self.lock = threading.Lock()

    def factory(self, url: str, token: str, namespace: str | None) -> FakeKeyStore:
        store = FakeKeyStore(self, url)
        with self.lock:
            self.stores.append(store)
        return store

    def create(self, url: str, name: str) -> None:
        with self.lock:
            if self.failures[url] < self.transient_failures:
                self.failures[url] += 1
                raise TransientInfrastructureError(f"{url} sealed")
            self.creates[(url, name)] += 1
            self.keys.setdefault(url, set()).add(name)


class FakeGenesisTool:
    """Records genesis calls in order; ``finalize`` writes a fixed artifact."""

    ARTIFACT = b"\x00genesis-blob\x01"

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.lock = threading.Lock()

    def _record(self, *call) -> None:
        with self.lock:
            self.calls.append(call)

    def set_layout(self, path: Path, namespace: str) -> None:
        self._record("set_layout", path.read_text(), namespace)

    def register_root_key(self, validator_backend, identity: str) -> None:
        self._record("root_key", identity, validator_backend.server)

    def register_owner_key(self, validator_backend, identity: str) -> None:
        self._record("owner_key", identity, validator_backend.server)

    def register_operator_key(self, validator_backend, identity: str) -> None:
        self._record("operator_key", identity, validator_backend.server)

    def register_validator_config(self, owner, validator_address, fullnode_address, chain_id,
                                  validator_backend, identity) -> None:
        self._record("validator_config", identity, str(validator_address), str(fullnode_address), chain_id)

    def set_operator(self, owner: str, operator: str) -> None:
        self._record("set_operator", owner, operator)

    def finalize(self, chain_id: int, output_path: Path) -> None:
        output_path.write_bytes(self.ARTIFACT)
        self._record("finalize", chain_id)

    def create_waypoint(self, chain_id: int, validator_backend, identity: str) -> None:
        self._record("waypoint", identity)

    def extract_private_key(self, key_name: str, output_path: Path, validator_backend) -> None:
        output_path.write_text("mint-key")
        self._record("extract", key_name)

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def settings(tmp_path: Path) -> BootstrapSettings:
    return BootstrapSettings(work_dir=tmp_path / "work", key_init_retry_delay=0)


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def scaler() -> FakeScaler:
    return FakeScaler()


@pytest.fixture
def key_stores() -> FakeKeyStoreRegistry:
    return FakeKeyStoreRegistry()


@pytest.fixture
def genesis_tool() -> FakeGenesisTool:
    return FakeGenesisTool()


@pytest.fixture
def make_provisioner():
    return FakeProvisioner


@pytest.fixture
def make_key_stores():
    return FakeKeyStoreRegistry


@pytest.fixture
def fake_sh(monkeypatch):
    """Replace ``<module>.sh`` with a mock that keeps sh's real exception types."""

    def _install(module: str) -> MagicMock:
        mock = MagicMock()
        mock.ErrorReturnCode = sh.ErrorReturnCode
        mock.TimeoutException = sh.TimeoutException
        mock.CommandNotFound = sh.CommandNotFound
        monkeypatch.setattr(f"{module}.sh", mock)
        return mock

    return _install
