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

"""k3d agent nodes as a resizable compute pool."""

from __future__ import annotations

import re
from collections.abc import Callable

import sh
from rich.panel import Panel
from tenacity import RetryError, retry, retry_if_result, stop_after_attempt, wait_fixed

from cluster_bootstrap import console, logger
from cluster_bootstrap.config import PoolConfig, desired_capacity
from cluster_bootstrap.errors import RemoteOperationError, ResourceNotFoundError
from cluster_bootstrap.utils import parse_json, run_parallel


def _agent_index_re(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^k3d-{re.escape(prefix)}-(\d+)-\d+$")


class K3dPoolScaler:
    """Grows and shrinks the agent nodes of a k3d cluster.

    Pool nodes are named ``<prefix>-<n>`` and carry the configured node label
    so the scheduler's node selector only targets them.
    """

    def __init__(self, pool_cfg: PoolConfig) -> None:
        self.pool_cfg = pool_cfg

    def _run(self, tool: str, *args: str, timeout: int | None = None) -> str:
        try:
            return str(getattr(sh, tool)(*args, _timeout=timeout or self.pool_cfg.ready_timeout))
        except sh.CommandNotFound as err:
            raise ResourceNotFoundError(f"{tool} not found on PATH") from err
        except sh.ErrorReturnCode as err:
            stderr = err.stderr.decode(errors="replace").strip()
            raise RemoteOperationError(f"{tool} {args[0]} failed: {stderr[:300]}") from err
        except sh.TimeoutException as err:
            raise RemoteOperationError(f"{tool} {args[0]} timed out") from err

    def agent_nodes(self) -> list[str]:
        """Names of the pool's agent nodes, sorted by index."""
        raw = self._run("k3d", "node", "list", "-o", "json")
        pattern = _agent_index_re(self.pool_cfg.agent_prefix)
        agents = [
            node["name"] for node in parse_json(raw or "[]", "k3d node list")
            if node.get("role") == "agent"
            and node.get("runtimeLabels", {}).get("k3d.cluster") == self.pool_cfg.cluster_name
            and pattern.match(node.get("name", ""))
        ]
        return sorted(agents, key=lambda n: int(pattern.match(n).group(1)))

    def ready_count(self) -> int:
        """Number of labelled pool nodes reporting Ready."""
        raw = self._run("kubectl", "get", "nodes", "-l", self.pool_cfg.node_label, "-o", "json",
                        timeout=60)
        count = 0
        for node in parse_json(raw, "kubectl get nodes").get("items", []):
            conditions = node.get("status", {}).get("conditions", [])
            if any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions):
                count += 1
        return count

    def _add_agent(self, index: int) -> None:
        name = f"{self.pool_cfg.agent_prefix}-{index}"
        self._run(
            "k3d", "node", "create", name,
            "--cluster", self.pool_cfg.cluster_name,
            "--role", "agent",
            "--image", self.pool_cfg.agent_image,
            "--memory", self.pool_cfg.agent_memory,
            "--k3s-node-label", self.pool_cfg.node_label,
        )
        console.print(f"[green]  \u2713 Added {name}[/green]")

    def _remove_agent(self, node_name: str) -> None:
        self._run("k3d", "node", "delete", node_name)
        self._run("kubectl", "delete", "node", node_name, "--ignore-not-found", timeout=60)
        console.print(f"[green]  \u2713 Removed {node_name}[/green]")

    def _wait(self, check: Callable[[], bool], description: str) -> None:
        attempts = max(1, self.pool_cfg.ready_timeout // self.pool_cfg.poll_interval)

        @retry(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(self.pool_cfg.poll_interval),
            retry=retry_if_result(lambda ok: not ok),
        )
        def _poll() -> bool:
            return check()

        try:
            _poll()
        except RetryError as err:
            raise RemoteOperationError(
                f"Timed out after {self.pool_cfg.ready_timeout}s waiting for {description}"
            ) from err

    def resize(
        self,
        target_count: int,
        buffer_percent: float,
        wait_for_scale_up: bool,
        wait_for_scale_down: bool,
    ) -> None:
        """Resize the pool to ``target_count`` plus ``buffer_percent`` headroom.

        Args:
            target_count: Nodes the caller needs.
            buffer_percent: Extra capacity, as a percentage of ``target_count``.
            wait_for_scale_up: Block until ``target_count`` nodes are Ready.
            wait_for_scale_down: Block until the pool shrank to its desired size.

        Raises:
            RemoteOperationError: If k3d fails or the pool does not settle in time.
        """
        desired = desired_capacity(target_count, buffer_percent)
        console.print(Panel.fit(
            f"Resizing pool '{self.pool_cfg.cluster_name}' to {desired} nodes", style="bold blue"))

        current = self.agent_nodes()
        pattern = _agent_index_re(self.pool_cfg.agent_prefix)
        if len(current) < desired:
            used = {int(pattern.match(n).group(1)) for n in current}
            free = (i for i in range(desired * 2) if i not in used)
            new_indices = [next(free) for _ in range(desired - len(current))]
            logger.info("Adding %d pool nodes", len(new_indices))
            run_parallel([lambda i=i: self._add_agent(i) for i in new_indices])
        elif len(current) > desired:
            extra = current[desired:]
            logger.info("Removing %d pool nodes", len(extra))
            run_parallel([lambda n=n: self._remove_agent(n) for n in extra])

        if wait_for_scale_down:
            self._wait(lambda: len(self.agent_nodes()) == desired, f"pool to drain to {desired} nodes")
        if wait_for_scale_up and target_count > 0:
            self._wait(lambda: self.ready_count() >= target_count, f"{target_count} ready pool nodes")
        console.print(f"[green]\u2705 Pool resized to {desired} nodes[/green]")
