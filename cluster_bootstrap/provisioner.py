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

"""Capabilities the orchestrator needs from the scheduler, pool, and secret store."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from cluster_bootstrap.roles import Instance, InstanceConfig, NodeHandle


@runtime_checkable
class NodeProvisioner(Protocol):
    """Scheduler backend that allocates nodes and runs workloads on them.

    Every method blocks until the remote operation finished and raises a
    :class:`~cluster_bootstrap.errors.ProvisionError` subclass on failure.
    """

    def cleanup(self) -> None:
        """Remove every workload and allocation left by a previous run."""
        ...

    def allocate_node(self, name: str) -> NodeHandle:
        """Reserve a pool node for the slot ``name``; idempotent per name."""
        ...

    def wipe_data(self, node_name: str) -> None:
        """Delete persistent workload data on a pool node."""
        ...

    def spawn_instance(self, config: InstanceConfig) -> Instance:
        """Start the workload described by ``config`` on its node."""
        ...

    def copy_file(self, node_name: str, container_name: str, dest_path: str, data: bytes) -> None:
        """Write ``data`` to ``dest_path`` on a pool node."""
        ...


@runtime_checkable
class PoolScaler(Protocol):
    """Compute pool whose capacity can be resized."""

    def resize(
        self,
        target_count: int,
        buffer_percent: float,
        wait_for_scale_up: bool,
        wait_for_scale_down: bool,
    ) -> None:
        """Resize the pool to ``target_count`` plus ``buffer_percent`` headroom."""
        ...


@runtime_checkable
class KeyStore(Protocol):
    """Remote secret store holding named key slots."""

    def create_key(self, name: str) -> None:
        ...

    def close(self) -> None:
        ...


KeyStoreFactory = Callable[[str, str, str | None], KeyStore]
