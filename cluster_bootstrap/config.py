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

"""Configuration classes, topology parameters, and config display."""

from __future__ import annotations

import math
from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.table import Table

from cluster_bootstrap import console
from cluster_bootstrap.constants import (
    DEFAULT_ALLOCATION_TIMEOUT_SECONDS,
    DEFAULT_CHAIN_ID,
    DEFAULT_CONFIG_OVERRIDES,
    DEFAULT_FULLNODE_NETWORK_PORT,
    DEFAULT_FULLNODES_PER_VALIDATOR,
    DEFAULT_GENESIS_TOOL,
    DEFAULT_GENESIS_TOOL_TIMEOUT_SECONDS,
    DEFAULT_HOST_DATA_PATH,
    DEFAULT_IMAGE_REGISTRY,
    DEFAULT_KEY_INIT_MAX_ATTEMPTS,
    DEFAULT_KEY_INIT_RETRY_DELAY_SECONDS,
    DEFAULT_KUBE_NAMESPACE,
    DEFAULT_KUBECTL_TIMEOUT_SECONDS,
    DEFAULT_NODE_SELECTOR,
    DEFAULT_NUM_VALIDATORS,
    DEFAULT_POD_READY_TIMEOUT_SECONDS,
    DEFAULT_POOL_AGENT_IMAGE,
    DEFAULT_POOL_AGENT_MEMORY,
    DEFAULT_POOL_AGENT_PREFIX,
    DEFAULT_POOL_CLUSTER_NAME,
    DEFAULT_POOL_POLL_INTERVAL_SECONDS,
    DEFAULT_POOL_READY_TIMEOUT_SECONDS,
    DEFAULT_REMOTE_GENESIS_PATH,
    DEFAULT_ROOT_IDENTITY,
    DEFAULT_SAFETY_RULES_PORT,
    DEFAULT_SCALE_UP_BUFFER_PERCENT,
    DEFAULT_SERVICE_ACCOUNT,
    DEFAULT_SHARED_NAMESPACE,
    DEFAULT_UTIL_IMAGE,
    DEFAULT_VALIDATOR_NETWORK_PORT,
    DEFAULT_VAULT_BACKEND,
    DEFAULT_VAULT_IMAGE,
    DEFAULT_VAULT_PORT,
    DEFAULT_VAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_VAULT_TOKEN,
    DEFAULT_VAULT_TRANSIT_MOUNT,
    DEFAULT_WORK_DIR,
    GENESIS_FILE_NAME,
    LAYOUT_FILE_NAME,
    MINT_KEY_FILE_NAME,
    SHARED_STORAGE_FILE_NAME,
    TOKEN_FILE_NAME,
)
from cluster_bootstrap.errors import ConfigurationError
from cluster_bootstrap.retry import RetryPolicy


# ============================================================================
# Topology parameters
# ============================================================================

class SecretTierBackend(str, Enum):
    """Storage backend used by the signing-proxy tier."""

    IN_MEMORY = "in-memory"
    ON_DISK = "on-disk"
    VAULT = "vault"

    @classmethod
    def parse(cls, name: str) -> SecretTierBackend:
        """Resolve a backend from its command-line name.

        Raises:
            ConfigurationError: If the name is not a known backend.
        """
        try:
            return cls(name.strip().lower())
        except ValueError as err:
            valid = ", ".join(b.value for b in cls)
            raise ConfigurationError(
                f"Unknown secret tier backend '{name}' (expected one of: {valid})"
            ) from err


class ClusterTopologyParams(BaseModel):
    """Shape of the cluster to bootstrap.

    Attributes:
        num_validators: Number of validators, at least one.
        fullnodes_per_validator: Fullnodes attached to each validator.
        enable_secret_tier: Whether signing-proxy (and possibly vault) nodes run.
        secret_tier_backend: Storage backend of the signing-proxy tier.
        image_tag: Workload image tag shared by every role.
        config_overrides: ``key=value`` overrides, passed through in order.
    """

    model_config = ConfigDict(frozen=True)

    num_validators: int = Field(default=DEFAULT_NUM_VALIDATORS, ge=1)
    fullnodes_per_validator: int = Field(default=DEFAULT_FULLNODES_PER_VALIDATOR, ge=0)
    enable_secret_tier: bool = True
    secret_tier_backend: SecretTierBackend = SecretTierBackend.VAULT
    image_tag: str = Field(default="latest", min_length=1)
    config_overrides: tuple[str, ...] = ()

    @property
    def uses_vault(self) -> bool:
        """Whether a dedicated secret-store node is allocated per validator."""
        return self.enable_secret_tier and self.secret_tier_backend is SecretTierBackend.VAULT

    @property
    def num_fullnodes(self) -> int:
        return self.num_validators * self.fullnodes_per_validator

    def required_instance_count(self) -> int:
        """Compute instances needed to host every role of the topology."""
        count = self.num_validators + self.num_fullnodes
        if self.enable_secret_tier:
            per_validator = 2 if self.uses_vault else 1
            count += self.num_validators * per_validator
        return count

    def effective_overrides(self, defaults: Sequence[str]) -> list[str]:
        """Return the default overrides followed by the caller's, without dedup."""
        return [*defaults, *self.config_overrides]


# ============================================================================
# Configuration classes
# ============================================================================

class BootstrapSettings(BaseSettings):
    """Ports, transient paths, and credentials used by a bootstrap run.

    Auto-loaded from ``CLUSTER_TEST_*`` environment variables.

    Attributes:
        vault_port: Port the secret store listens on.
        vault_token: Bearer token for the secret store.
        vault_backend: Backend name passed to the genesis tool.
        vault_transit_mount: Mount path of the transit engine holding key slots.
        vault_timeout: Per-request timeout in seconds for the secret store.
        root_identity: Name of the root identity in the genesis layout.
        shared_namespace: Namespace of the shared genesis storage.
        chain_id: Chain identifier bound into every validator config.
        validator_network_port: Validator-to-validator network port.
        fullnode_network_port: Validator-to-fullnode network port.
        safety_rules_port: Port the signing proxy listens on.
        work_dir: Directory holding the transient layout/token/genesis/key files.
        remote_genesis_path: Where the genesis artifact lands on validator nodes.
        key_init_max_attempts: Attempts allowed for secret tier initialization.
        key_init_retry_delay: Fixed delay between those attempts, in seconds.
        genesis_tool: Genesis tool executable.
        genesis_tool_timeout: Timeout of a single genesis tool call, in seconds.
        default_config_overrides: Overrides placed before the caller's.
        scale_up_buffer_percent: Extra capacity requested on scale up.
    """

    model_config = SettingsConfigDict(env_prefix="CLUSTER_TEST_", extra="ignore")

    vault_port: int = Field(default=DEFAULT_VAULT_PORT, ge=1, le=65535)
    vault_token: str = DEFAULT_VAULT_TOKEN
    vault_backend: str = DEFAULT_VAULT_BACKEND
    vault_transit_mount: str = DEFAULT_VAULT_TRANSIT_MOUNT
    vault_timeout: float = Field(default=DEFAULT_VAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    root_identity: str = DEFAULT_ROOT_IDENTITY
    shared_namespace: str = DEFAULT_SHARED_NAMESPACE
    chain_id: int = Field(default=DEFAULT_CHAIN_ID, ge=1, le=255)
    validator_network_port: int = Field(default=DEFAULT_VALIDATOR_NETWORK_PORT, ge=1, le=65535)
    fullnode_network_port: int = Field(default=DEFAULT_FULLNODE_NETWORK_PORT, ge=1, le=65535)
    safety_rules_port: int = Field(default=DEFAULT_SAFETY_RULES_PORT, ge=1, le=65535)
    work_dir: Path = Path(DEFAULT_WORK_DIR)
    remote_genesis_path: str = DEFAULT_REMOTE_GENESIS_PATH
    key_init_max_attempts: int = Field(default=DEFAULT_KEY_INIT_MAX_ATTEMPTS, ge=1)
    key_init_retry_delay: float = Field(default=DEFAULT_KEY_INIT_RETRY_DELAY_SECONDS, ge=0)
    genesis_tool: str = DEFAULT_GENESIS_TOOL
    genesis_tool_timeout: int = Field(default=DEFAULT_GENESIS_TOOL_TIMEOUT_SECONDS, ge=1)
    default_config_overrides: tuple[str, ...] = DEFAULT_CONFIG_OVERRIDES
    scale_up_buffer_percent: float = Field(default=DEFAULT_SCALE_UP_BUFFER_PERCENT, ge=0)

    @property
    def layout_path(self) -> Path:
        return self.work_dir / LAYOUT_FILE_NAME

    @property
    def token_path(self) -> Path:
        return self.work_dir / TOKEN_FILE_NAME

    @property
    def genesis_path(self) -> Path:
        return self.work_dir / GENESIS_FILE_NAME

    @property
    def mint_key_path(self) -> Path:
        return self.work_dir / MINT_KEY_FILE_NAME

    @property
    def shared_storage_path(self) -> Path:
        """On-disk storage the genesis tool shares across identities."""
        return self.work_dir / SHARED_STORAGE_FILE_NAME

    def vault_url(self, address: str) -> str:
        """Build the secret store URL for a node address."""
        return f"http://{address}:{self.vault_port}"

    def key_init_policy(self) -> RetryPolicy:
        """Retry policy wrapping secret tier initialization."""
        return RetryPolicy(
            max_attempts=self.key_init_max_attempts,
            delay_seconds=self.key_init_retry_delay,
        )


class KubeConfig(BaseSettings):
    """Kubernetes scheduler settings, auto-loaded from CLUSTER_TEST_KUBE_* env vars.

    Attributes:
        namespace: Namespace all cluster-test pods live in.
        image_registry: Registry prefix for workload images.
        node_selector: ``key=value`` label selecting pool nodes.
        service_account: Service account of workload pods.
        host_data_path: Host directory mounted as the workload data volume.
        util_image: Image used for allocation, wipe, and file copy helper pods.
        vault_image: Image of the secret-store workload.
        allocation_timeout: Seconds to wait for an allocation pod to be scheduled.
        pod_ready_timeout: Seconds to wait for a spawned pod to become ready.
        kubectl_timeout: Seconds allowed for a single kubectl call.
    """

    model_config = SettingsConfigDict(env_prefix="CLUSTER_TEST_KUBE_", extra="ignore")

    namespace: str = DEFAULT_KUBE_NAMESPACE
    image_registry: str = DEFAULT_IMAGE_REGISTRY
    node_selector: str = Field(default=DEFAULT_NODE_SELECTOR, pattern=r"^[\w./-]+=[\w.-]+$")
    service_account: str = DEFAULT_SERVICE_ACCOUNT
    host_data_path: str = DEFAULT_HOST_DATA_PATH
    util_image: str = DEFAULT_UTIL_IMAGE
    vault_image: str = DEFAULT_VAULT_IMAGE
    allocation_timeout: int = Field(default=DEFAULT_ALLOCATION_TIMEOUT_SECONDS, ge=1)
    pod_ready_timeout: int = Field(default=DEFAULT_POD_READY_TIMEOUT_SECONDS, ge=1)
    kubectl_timeout: int = Field(default=DEFAULT_KUBECTL_TIMEOUT_SECONDS, ge=1)

    @property
    def node_selector_pair(self) -> tuple[str, str]:
        key, _, value = self.node_selector.partition("=")
        return key, value


class PoolConfig(BaseSettings):
    """k3d compute pool settings, auto-loaded from CLUSTER_TEST_POOL_* env vars.

    Attributes:
        cluster_name: k3d cluster whose agent nodes form the pool.
        agent_prefix: Name prefix of pool agent nodes.
        agent_image: K3s image the agent nodes run.
        agent_memory: Memory limit per agent node.
        node_label: ``key=value`` label put on pool nodes.
        ready_timeout: Seconds to wait for a resize to settle.
        poll_interval: Seconds between readiness polls.
    """

    model_config = SettingsConfigDict(env_prefix="CLUSTER_TEST_POOL_", extra="ignore")

    cluster_name: str = DEFAULT_POOL_CLUSTER_NAME
    agent_prefix: str = DEFAULT_POOL_AGENT_PREFIX
    agent_image: str = DEFAULT_POOL_AGENT_IMAGE
    agent_memory: str = Field(default=DEFAULT_POOL_AGENT_MEMORY, pattern=r"^\d+[mMgG]?$")
    node_label: str = Field(default=DEFAULT_NODE_SELECTOR, pattern=r"^[\w./-]+=[\w.-]+$")
    ready_timeout: int = Field(default=DEFAULT_POOL_READY_TIMEOUT_SECONDS, ge=1)
    poll_interval: int = Field(default=DEFAULT_POOL_POLL_INTERVAL_SECONDS, ge=1)


def desired_capacity(target: int, buffer_percent: float) -> int:
    """Pool size to request for ``target`` nodes plus percentage headroom."""
    return target + math.ceil(target * buffer_percent / 100)


# ============================================================================
# Config display
# ============================================================================

def display_config(
    topology: ClusterTopologyParams,
    settings: BootstrapSettings,
    clean_data: bool,
) -> None:
    """Print the resolved run configuration as a table.

    Args:
        topology: Cluster topology to bootstrap.
        settings: Resolved bootstrap settings.
        clean_data: Whether persistent node data will be wiped.
    """
    table = Table(title="Bootstrap configuration", show_header=False, title_style="bold blue")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Validators", str(topology.num_validators))
    table.add_row("Fullnodes per validator", str(topology.fullnodes_per_validator))
    table.add_row("Secret tier", "enabled" if topology.enable_secret_tier else "disabled")
    if topology.enable_secret_tier:
        table.add_row("Secret tier backend", topology.secret_tier_backend.value)
    table.add_row("Image tag", topology.image_tag)
    table.add_row("Config overrides", ", ".join(topology.effective_overrides(settings.default_config_overrides)))
    table.add_row("Required instances", str(topology.required_instance_count()))
    table.add_row("Clean data", "yes" if clean_data else "no")
    table.add_row("Chain id", str(settings.chain_id))
    table.add_row("Work dir", str(settings.work_dir))
    console.print(table)
