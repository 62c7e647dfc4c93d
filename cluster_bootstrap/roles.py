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

"""Node handles, per-role workload configs, and the cluster descriptor."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Union

if TYPE_CHECKING:
    from cluster_bootstrap.genesis import GenesisArtifact


class Role(str, Enum):
    """Workload roles a node can be allocated for."""

    VALIDATOR = "validator"
    FULLNODE = "fullnode"
    SIGNING_PROXY = "safety-rules"
    SECRET_STORE = "vault"


# ============================================================================
# Node naming
# ============================================================================

def validator_node_name(index: int) -> str:
    return f"{Role.VALIDATOR.value}-{index}"


def fullnode_node_name(validator_index: int, fullnode_index: int) -> str:
    return f"{Role.FULLNODE.value}-{validator_index}-{fullnode_index}"


def signing_proxy_node_name(index: int) -> str:
    return f"{Role.SIGNING_PROXY.value}-{index}"


def secret_store_node_name(index: int) -> str:
    return f"{Role.SECRET_STORE.value}-{index}"


@dataclass(frozen=True)
class NodeHandle:
    """An allocated execution slot.

    Attributes:
        name: Unique slot name, derived from role and index.
        node_name: Name of the pool machine backing the slot.
        internal_address: Address reachable from inside the cluster.
    """

    name: str
    node_name: str
    internal_address: str


# ============================================================================
# Role configs
# ============================================================================

@dataclass(frozen=True)
class ValidatorConfig:
    """Validator workload settings.

    Attributes:
        index: Validator index.
        num_validators: Size of the validator set.
        fullnodes_per_validator: Fullnodes attached to each validator.
        image_tag: Workload image tag.
        config_overrides: ``key=value`` overrides in order.
        seed_peer_address: Address of validator 0.
        enable_signing_proxy: Whether consensus signing is delegated.
        signing_proxy_address: Address of this validator's signing proxy.
    """

    kind: ClassVar[Role] = Role.VALIDATOR

    index: int
    num_validators: int
    fullnodes_per_validator: int
    image_tag: str
    config_overrides: tuple[str, ...]
    seed_peer_address: str
    enable_signing_proxy: bool = False
    signing_proxy_address: str | None = None


@dataclass(frozen=True)
class FullnodeConfig:
    """Fullnode workload settings; the seed peer is the owning validator."""

    kind: ClassVar[Role] = Role.FULLNODE

    validator_index: int
    fullnode_index: int
    num_validators: int
    fullnodes_per_validator: int
    image_tag: str
    config_overrides: tuple[str, ...]
    seed_peer_address: str


@dataclass(frozen=True)
class SigningProxyConfig:
    """Signing proxy (safety rules) workload settings.

    ``secret_store_address`` is set only for the vault backend.
    """

    kind: ClassVar[Role] = Role.SIGNING_PROXY

    index: int
    num_validators: int
    image_tag: str
    backend: str
    secret_store_address: str | None = None


@dataclass(frozen=True)
class SecretStoreConfig:
    """Secret store (vault) workload settings."""

    kind: ClassVar[Role] = Role.SECRET_STORE

    index: int


RoleConfig = Union[ValidatorConfig, FullnodeConfig, SigningProxyConfig, SecretStoreConfig]


def peer_name(config: RoleConfig) -> str:
    """Name of the workload described by ``config``; equals its slot name."""
    match config:
        case ValidatorConfig(index=i):
            return validator_node_name(i)
        case FullnodeConfig(validator_index=v, fullnode_index=f):
            return fullnode_node_name(v, f)
        case SigningProxyConfig(index=i):
            return signing_proxy_node_name(i)
        case SecretStoreConfig(index=i):
            return secret_store_node_name(i)
    raise TypeError(f"Unknown role config: {config!r}")


@dataclass(frozen=True)
class InstanceConfig:
    """A role config bound to the node that will run it."""

    node: NodeHandle
    role: RoleConfig

    @property
    def peer_name(self) -> str:
        return peer_name(self.role)


@dataclass(frozen=True)
class Instance:
    """A spawned workload."""

    peer_name: str
    role: Role
    node_name: str
    address: str
    image_tag: str


@dataclass
class ClusterDescriptor:
    """Instances of a bootstrapped cluster, index-aligned per role.

    ``genesis`` is set when the run went through the genesis ceremony.
    """

    validators: list[Instance] = field(default_factory=list)
    fullnodes: list[Instance] = field(default_factory=list)
    signing_proxies: list[Instance] = field(default_factory=list)
    secret_stores: list[Instance] = field(default_factory=list)
    genesis: GenesisArtifact | None = None

    def all_instances(self) -> list[Instance]:
        return [*self.validators, *self.fullnodes, *self.signing_proxies, *self.secret_stores]
