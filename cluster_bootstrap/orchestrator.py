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

"""Bootstrap workflow that composes the scheduler, pool, secret tier and genesis."""

from __future__ import annotations

import functools
from collections.abc import Callable, Sequence

from rich.panel import Panel

from cluster_bootstrap import console, logger
from cluster_bootstrap.config import (
    BootstrapSettings,
    ClusterTopologyParams,
    KubeConfig,
    PoolConfig,
)
from cluster_bootstrap.errors import error_context
from cluster_bootstrap.genesis import GenesisPipeline, GenesisTool
from cluster_bootstrap.provisioner import KeyStoreFactory, NodeProvisioner, PoolScaler
from cluster_bootstrap.roles import (
    ClusterDescriptor,
    FullnodeConfig,
    Instance,
    InstanceConfig,
    NodeHandle,
    RoleConfig,
    SecretStoreConfig,
    SigningProxyConfig,
    ValidatorConfig,
    fullnode_node_name,
    secret_store_node_name,
    signing_proxy_node_name,
    validator_node_name,
)
from cluster_bootstrap.secret_tier import SecretTierInitializer
from cluster_bootstrap.utils import run_parallel, run_parallel_groups

# Group keys used while allocating roles concurrently
_VALIDATORS = "validators"
_FULLNODES = "fullnodes"
_SIGNING_PROXIES = "signing-proxies"
_SECRET_STORES = "secret-stores"


class BootstrapOrchestrator:
    """Brings up a test network on a pool of compute nodes.

    Phases run in a fixed order with a barrier between them: cleanup,
    capacity sizing, role allocation, secret-tier startup, genesis, and
    workload spawning. Work inside a phase fans out over a thread pool.
    The first failure aborts the run; instances already spawned are left
    for the next :meth:`cleanup`.
    """

    def __init__(
        self,
        provisioner: NodeProvisioner,
        scaler: PoolScaler,
        key_store_factory: KeyStoreFactory,
        genesis_tool: GenesisTool,
        settings: BootstrapSettings,
    ) -> None:
        self.provisioner = provisioner
        self.scaler = scaler
        self.settings = settings
        self.genesis_tool = genesis_tool
        self.initializer = SecretTierInitializer(settings, key_store_factory)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cleanup(self) -> None:
        """Reset the scheduler to an empty state."""
        console.print(Panel.fit("Cleaning up cluster-test workloads", style="bold blue"))
        with error_context("Failed to clean up scheduler"):
            self.provisioner.cleanup()

    def resize_pool(self, target_count: int, clean: bool = True) -> None:
        """Resize the pool to fit ``target_count`` instances.

        With ``clean`` set, the pool is first drained to zero so every
        instance lands on a fresh machine.
        """
        if clean:
            with error_context("Failed to drain pool"):
                self.scaler.resize(0, 0.0, wait_for_scale_up=False, wait_for_scale_down=True)
        with error_context(f"Failed to scale pool to {target_count} nodes"):
            self.scaler.resize(
                target_count,
                self.settings.scale_up_buffer_percent,
                wait_for_scale_up=True,
                wait_for_scale_down=False,
            )

    def bootstrap(self, topology: ClusterTopologyParams, clean_data: bool = False) -> ClusterDescriptor:
        """Run every bootstrap phase for ``topology``.

        Args:
            topology: Shape of the cluster.
            clean_data: Resize the pool from scratch and wipe node data before spawning.

        Returns:
            Descriptor of every spawned instance, index-aligned per role.

        Raises:
            ProvisionError: If any phase fails. The message names the failing
                role and index.
        """
        self.cleanup()

        required = topology.required_instance_count()
        if clean_data:
            console.print(Panel.fit(f"Sizing pool for {required} instances", style="bold blue"))
            self.resize_pool(required, clean=True)

        nodes = self._allocate(topology)
        validator_nodes = nodes[_VALIDATORS]
        fullnode_nodes = nodes[_FULLNODES]
        proxy_nodes = nodes.get(_SIGNING_PROXIES, [])
        secret_nodes = nodes.get(_SECRET_STORES, [])

        descriptor = ClusterDescriptor()
        if secret_nodes:
            descriptor.secret_stores = self._spawn_all(
                [SecretStoreConfig(index=i) for i in range(len(secret_nodes))],
                secret_nodes,
                clean_data,
            )
            descriptor.signing_proxies = self._spawn_all(
                self._signing_proxy_configs(topology, secret_nodes),
                proxy_nodes,
                clean_data,
            )
            self._initialize_secret_tier(secret_nodes)
            descriptor.genesis = GenesisPipeline(self.settings, self.genesis_tool, self.provisioner).run(
                secret_nodes, validator_nodes
            )
            logger.info("Root mint key written to %s", descriptor.genesis.mint_key_path)

        overrides = tuple(topology.effective_overrides(self.settings.default_config_overrides))
        seed = validator_nodes[0].internal_address
        spawn_groups: dict[str, Callable[[], list[Instance]]] = {
            _VALIDATORS: functools.partial(
                self._spawn_all,
                self._validator_configs(topology, overrides, seed, proxy_nodes),
                validator_nodes,
                clean_data,
            ),
            _FULLNODES: functools.partial(
                self._spawn_all,
                self._fullnode_configs(topology, overrides, validator_nodes),
                fullnode_nodes,
                clean_data,
            ),
        }
        if proxy_nodes and not secret_nodes:
            spawn_groups[_SIGNING_PROXIES] = functools.partial(
                self._spawn_all,
                self._signing_proxy_configs(topology, []),
                proxy_nodes,
                clean_data,
            )
        console.print(Panel.fit("Spawning validators and fullnodes", style="bold blue"))
        spawned = run_parallel_groups(spawn_groups)
        descriptor.validators = spawned[_VALIDATORS]
        descriptor.fullnodes = spawned[_FULLNODES]
        if _SIGNING_PROXIES in spawned:
            descriptor.signing_proxies = spawned[_SIGNING_PROXIES]

        console.print(
            f"[green]\u2705 Deployed {len(descriptor.validators)} validators "
            f"and {len(descriptor.fullnodes)} fullnodes[/green]"
        )
        logger.info(
            "Deployed %d validators and %d fullnodes",
            len(descriptor.validators),
            len(descriptor.fullnodes),
        )
        return descriptor

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def _allocate_role(self, role: str, names: Sequence[str]) -> list[NodeHandle]:
        def _allocate_one(name: str) -> NodeHandle:
            with error_context(f"Failed to allocate {name}"):
                return self.provisioner.allocate_node(name)

        handles = run_parallel([functools.partial(_allocate_one, name) for name in names])
        if names:
            console.print(f"[green]  \u2713 Allocated {len(handles)} {role} nodes[/green]")
        return handles

    def _allocate(self, topology: ClusterTopologyParams) -> dict[str, list[NodeHandle]]:
        """Allocate one node per role instance; every role runs concurrently."""
        console.print(Panel.fit("Allocating nodes", style="bold blue"))
        v = topology.num_validators
        groups: dict[str, list[str]] = {
            _VALIDATORS: [validator_node_name(i) for i in range(v)],
            _FULLNODES: [
                fullnode_node_name(i, j)
                for i in range(v)
                for j in range(topology.fullnodes_per_validator)
            ],
        }
        if topology.enable_secret_tier:
            groups[_SIGNING_PROXIES] = [signing_proxy_node_name(i) for i in range(v)]
        if topology.uses_vault:
            groups[_SECRET_STORES] = [secret_store_node_name(i) for i in range(v)]

        return run_parallel_groups({
            role: functools.partial(self._allocate_role, role, names) for role, names in groups.items()
        })

    # ------------------------------------------------------------------
    # Role configs
    # ------------------------------------------------------------------

    def _validator_configs(
        self,
        topology: ClusterTopologyParams,
        overrides: tuple[str, ...],
        seed: str,
        proxy_nodes: Sequence[NodeHandle],
    ) -> list[ValidatorConfig]:
        return [
            ValidatorConfig(
                index=i,
                num_validators=topology.num_validators,
                fullnodes_per_validator=topology.fullnodes_per_validator,
                image_tag=topology.image_tag,
                config_overrides=overrides,
                seed_peer_address=seed,
                enable_signing_proxy=topology.enable_secret_tier,
                signing_proxy_address=proxy_nodes[i].internal_address if proxy_nodes else None,
            )
            for i in range(topology.num_validators)
        ]

    def _fullnode_configs(
        self,
        topology: ClusterTopologyParams,
        overrides: tuple[str, ...],
        validator_nodes: Sequence[NodeHandle],
    ) -> list[FullnodeConfig]:
        return [
            FullnodeConfig(
                validator_index=i,
                fullnode_index=j,
                num_validators=topology.num_validators,
                fullnodes_per_validator=topology.fullnodes_per_validator,
                image_tag=topology.image_tag,
                config_overrides=overrides,
                seed_peer_address=validator_nodes[i].internal_address,
            )
            for i in range(topology.num_validators)
            for j in range(topology.fullnodes_per_validator)
        ]

    def _signing_proxy_configs(
        self,
        topology: ClusterTopologyParams,
        secret_nodes: Sequence[NodeHandle],
    ) -> list[SigningProxyConfig]:
        return [
            SigningProxyConfig(
                index=i,
                num_validators=topology.num_validators,
                image_tag=topology.image_tag,
                backend=topology.secret_tier_backend.value,
                secret_store_address=secret_nodes[i].internal_address if secret_nodes else None,
            )
            for i in range(topology.num_validators)
        ]

    # ------------------------------------------------------------------
    # Spawning and secret tier
    # ------------------------------------------------------------------

    def _spawn_one(self, node: NodeHandle, role: RoleConfig, clean_data: bool) -> Instance:
        config = InstanceConfig(node=node, role=role)
        with error_context(f"Failed to spawn {config.peer_name} on {node.node_name}"):
            if clean_data:
                self.provisioner.wipe_data(node.node_name)
            return self.provisioner.spawn_instance(config)

    def _spawn_all(
        self,
        roles: Sequence[RoleConfig],
        nodes: Sequence[NodeHandle],
        clean_data: bool,
    ) -> list[Instance]:
        if len(roles) != len(nodes):
            raise ValueError(f"{len(roles)} role configs for {len(nodes)} nodes")
        instances = run_parallel([
            functools.partial(self._spawn_one, node, role, clean_data)
            for node, role in zip(nodes, roles)
        ])
        if instances:
            console.print(f"[green]  \u2713 Spawned {len(instances)} {instances[0].role.value} instances[/green]")
        return instances

    def _initialize_secret_tier(self, secret_nodes: Sequence[NodeHandle]) -> None:
        console.print(Panel.fit("Initializing secret stores", style="bold blue"))
        policy = self.settings.key_init_policy()

        def _init(index: int, node: NodeHandle) -> None:
            with error_context(f"Failed to initialize {node.name}"):
                policy.call(
                    functools.partial(self.initializer.initialize_node, index, node),
                    description=f"key init on {node.name}",
                )

        run_parallel([functools.partial(_init, i, node) for i, node in enumerate(secret_nodes)])
        console.print(f"[green]\u2705 Initialized {len(secret_nodes)} secret stores[/green]")


def build_default_orchestrator(
    settings: BootstrapSettings | None = None,
    kube_cfg: KubeConfig | None = None,
    pool_cfg: PoolConfig | None = None,
) -> BootstrapOrchestrator:
    """Wire the kubectl scheduler, k3d pool, Vault key store and genesis tool."""
    from cluster_bootstrap.kube import KubeProvisioner
    from cluster_bootstrap.pool import K3dPoolScaler
    from cluster_bootstrap.vault import VaultKeyStore

    settings = settings or BootstrapSettings()
    kube_cfg = kube_cfg or KubeConfig()
    pool_cfg = pool_cfg or PoolConfig()
    key_store_factory = functools.partial(
        VaultKeyStore, mount=settings.vault_transit_mount, timeout=settings.vault_timeout
    )
    return BootstrapOrchestrator(
        provisioner=KubeProvisioner(kube_cfg, settings),
        scaler=K3dPoolScaler(pool_cfg),
        key_store_factory=key_store_factory,
        genesis_tool=GenesisTool.from_settings(settings),
        settings=settings,
    )
