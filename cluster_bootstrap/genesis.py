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

"""Genesis tool wrapper and the sequential genesis ceremony."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

import sh
import toml
from rich.panel import Panel

from cluster_bootstrap import console, logger
from cluster_bootstrap.config import BootstrapSettings
from cluster_bootstrap.constants import ROOT_KEY
from cluster_bootstrap.errors import (
    RemoteOperationError,
    ResourceNotFoundError,
    error_context,
)
from cluster_bootstrap.network import NetworkAddress
from cluster_bootstrap.provisioner import NodeProvisioner
from cluster_bootstrap.roles import NodeHandle, validator_node_name
from cluster_bootstrap.secret_tier import key_slot_name
from cluster_bootstrap.utils import run_parallel


# ============================================================================
# Genesis tool
# ============================================================================

@dataclass(frozen=True)
class StorageBackend:
    """A storage location understood by the genesis tool.

    Rendered as ``backend=vault;server=...;token=...;namespace=...``.
    """

    backend: str
    server: str | None = None
    token_file: Path | None = None
    path: Path | None = None
    namespace: str | None = None

    @classmethod
    def vault(cls, backend: str, server: str, token_file: Path) -> StorageBackend:
        return cls(backend=backend, server=server, token_file=token_file)

    @classmethod
    def disk(cls, path: Path, namespace: str | None = None) -> StorageBackend:
        return cls(backend="disk", path=path, namespace=namespace)

    def with_namespace(self, namespace: str) -> StorageBackend:
        return replace(self, namespace=namespace)

    def __str__(self) -> str:
        parts = [f"backend={self.backend}"]
        if self.server:
            parts.append(f"server={self.server}")
        if self.token_file:
            parts.append(f"token={self.token_file}")
        if self.path:
            parts.append(f"path={self.path}")
        if self.namespace:
            parts.append(f"namespace={self.namespace}")
        return ";".join(parts)


class GenesisTool:
    """Runs genesis tool subcommands against a shared on-disk storage.

    Args:
        binary: Genesis tool executable.
        shared_storage: Shared storage file every identity registers into.
        timeout: Timeout of a single subcommand, in seconds.
    """

    def __init__(self, binary: str, shared_storage: Path, timeout: int) -> None:
        self.binary = binary
        self.shared_storage = shared_storage
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: BootstrapSettings) -> GenesisTool:
        return cls(settings.genesis_tool, settings.shared_storage_path, settings.genesis_tool_timeout)

    def _shared(self, namespace: str | None = None) -> StorageBackend:
        return StorageBackend.disk(self.shared_storage, namespace)

    def _run(self, subcommand: str, *args: str) -> str:
        logger.debug("%s %s %s", self.binary, subcommand, " ".join(args))
        try:
            command = sh.Command(self.binary)
        except sh.CommandNotFound as err:
            raise ResourceNotFoundError(f"Genesis tool '{self.binary}' not found") from err
        try:
            return str(command(subcommand, *args, _timeout=self.timeout))
        except sh.ErrorReturnCode as err:
            stderr = err.stderr.decode(errors="replace").strip()
            raise RemoteOperationError(f"{self.binary} {subcommand} failed: {stderr[:500]}") from err
        except sh.TimeoutException as err:
            raise RemoteOperationError(f"{self.binary} {subcommand} timed out after {self.timeout}s") from err

    def set_layout(self, path: Path, namespace: str) -> None:
        self._run("set-layout", "--path", str(path), "--shared-backend", str(self._shared(namespace)))

    def register_root_key(self, validator_backend: StorageBackend, identity: str) -> None:
        self._run(
            "libra-root-key",
            "--validator-backend", str(validator_backend.with_namespace(identity)),
            "--shared-backend", str(self._shared(identity)),
        )

    def register_owner_key(self, validator_backend: StorageBackend, identity: str) -> None:
        self._run(
            "owner-key",
            "--validator-backend", str(validator_backend.with_namespace(identity)),
            "--shared-backend", str(self._shared(identity)),
        )

    def register_operator_key(self, validator_backend: StorageBackend, identity: str) -> None:
        self._run(
            "operator-key",
            "--validator-backend", str(validator_backend.with_namespace(identity)),
            "--shared-backend", str(self._shared(identity)),
        )

    def register_validator_config(
        self,
        owner: str,
        validator_address: NetworkAddress,
        fullnode_address: NetworkAddress,
        chain_id: int,
        validator_backend: StorageBackend,
        identity: str,
    ) -> None:
        self._run(
            "validator-config",
            "--owner-name", owner,
            "--validator-address", str(validator_address),
            "--fullnode-address", str(fullnode_address),
            "--chain-id", str(chain_id),
            "--validator-backend", str(validator_backend.with_namespace(identity)),
            "--shared-backend", str(self._shared(identity)),
        )

    def set_operator(self, owner: str, operator: str) -> None:
        self._run("set-operator", "--operator-name", operator, "--shared-backend", str(self._shared(owner)))

    def finalize(self, chain_id: int, output_path: Path) -> None:
        self._run("genesis", "--chain-id", str(chain_id), "--path", str(output_path),
                  "--shared-backend", str(self._shared()))

    def create_waypoint(self, chain_id: int, validator_backend: StorageBackend, identity: str) -> None:
        self._run(
            "create-and-insert-waypoint",
            "--chain-id", str(chain_id),
            "--validator-backend", str(validator_backend.with_namespace(identity)),
            "--shared-backend", str(self._shared()),
        )

    def extract_private_key(self, key_name: str, output_path: Path, validator_backend: StorageBackend) -> None:
        self._run("extract-private-key", "--key-name", key_name, "--key-file", str(output_path),
                  "--validator-backend", str(validator_backend))


# ============================================================================
# Genesis pipeline
# ============================================================================

class GenesisStage(str, Enum):
    """Progress of a genesis ceremony, in execution order."""

    PENDING = "pending"
    LAYOUT_REGISTERED = "layout-registered"
    ROOT_KEY_REGISTERED = "root-key-registered"
    IDENTITIES_REGISTERED = "identities-registered"
    GENESIS_FINALIZED = "genesis-finalized"
    WAYPOINTS_CREATED = "waypoints-created"
    ROOT_KEY_EXTRACTED = "root-key-extracted"
    ARTIFACT_DISTRIBUTED = "artifact-distributed"


@dataclass(frozen=True)
class GenesisLayout:
    """Identities taking part in genesis."""

    root: str
    owners: tuple[str, ...]
    operators: tuple[str, ...]

    def to_toml(self) -> str:
        return toml.dumps({
            "owners": list(self.owners),
            "operators": list(self.operators),
            "libra_root": [self.root],
        })


@dataclass(frozen=True)
class GenesisArtifact:
    """Finalized genesis and the files produced alongside it."""

    data: bytes
    layout: GenesisLayout
    genesis_path: Path
    token_path: Path
    mint_key_path: Path


class GenesisPipeline:
    """Runs the genesis ceremony against an initialized secret tier.

    Identity registration runs validator by validator, in index order, since
    the registrations all write into the same shared layout storage. Only
    waypoint creation and artifact distribution fan out.
    """

    def __init__(
        self,
        settings: BootstrapSettings,
        tool: GenesisTool,
        provisioner: NodeProvisioner,
    ) -> None:
        self._settings = settings
        self._tool = tool
        self._provisioner = provisioner
        self.stage = GenesisStage.PENDING

    def _advance(self, stage: GenesisStage) -> None:
        self.stage = stage
        logger.info("Genesis: %s", stage.value)

    def _backend(self, node: NodeHandle) -> StorageBackend:
        return StorageBackend.vault(
            self._settings.vault_backend,
            self._settings.vault_url(node.internal_address),
            self._settings.token_path,
        )

    def run(
        self,
        secret_nodes: Sequence[NodeHandle],
        validator_nodes: Sequence[NodeHandle],
    ) -> GenesisArtifact:
        """Generate genesis and copy it to every validator node.

        Args:
            secret_nodes: Initialized secret-store nodes, one per validator.
            validator_nodes: Allocated validator nodes, index-aligned.

        Returns:
            The distributed genesis artifact.

        Raises:
            ProvisionError: If any step fails; no step is retried.
        """
        if len(secret_nodes) != len(validator_nodes):
            raise ValueError("secret_nodes and validator_nodes must be index-aligned")
        if not secret_nodes:
            raise ValueError("genesis needs at least one validator")

        console.print(Panel.fit("Generating genesis", style="bold blue"))
        settings = self._settings
        identities = tuple(validator_node_name(i) for i in range(len(secret_nodes)))
        layout = GenesisLayout(root=settings.root_identity, owners=identities, operators=identities)

        self._write_inputs(layout)
        with error_context("Failed to set_layout"):
            self._tool.set_layout(settings.layout_path, settings.shared_namespace)
        self._advance(GenesisStage.LAYOUT_REGISTERED)

        with error_context("Failed to register root key"):
            self._tool.register_root_key(self._backend(secret_nodes[0]), settings.root_identity)
        self._advance(GenesisStage.ROOT_KEY_REGISTERED)

        for i, node in enumerate(secret_nodes):
            self._register_validator(i, node, validator_nodes[i])
        self._advance(GenesisStage.IDENTITIES_REGISTERED)

        with error_context(f"Failed to finalize genesis at {settings.genesis_path}"):
            self._tool.finalize(settings.chain_id, settings.genesis_path)
        self._advance(GenesisStage.GENESIS_FINALIZED)

        run_parallel([
            lambda i=i, node=node: self._create_waypoint(i, node)
            for i, node in enumerate(secret_nodes)
        ])
        self._advance(GenesisStage.WAYPOINTS_CREATED)

        with error_context("Failed to extract root private key"):
            self._tool.extract_private_key(
                key_slot_name(settings.root_identity, ROOT_KEY),
                settings.mint_key_path,
                self._backend(secret_nodes[0]),
            )
        self._advance(GenesisStage.ROOT_KEY_EXTRACTED)

        with error_context(f"Failed to read {settings.genesis_path}"):
            data = settings.genesis_path.read_bytes()
        self.distribute(data, validator_nodes)
        self._advance(GenesisStage.ARTIFACT_DISTRIBUTED)

        console.print(f"[green]\u2705 Genesis distributed to {len(validator_nodes)} validators[/green]")
        return GenesisArtifact(
            data=data,
            layout=layout,
            genesis_path=settings.genesis_path,
            token_path=settings.token_path,
            mint_key_path=settings.mint_key_path,
        )

    def _write_inputs(self, layout: GenesisLayout) -> None:
        settings = self._settings
        with error_context(f"Failed to write genesis inputs in {settings.work_dir}"):
            settings.work_dir.mkdir(parents=True, exist_ok=True)
            settings.shared_storage_path.unlink(missing_ok=True)
            settings.layout_path.write_text(layout.to_toml())
            settings.token_path.write_text(settings.vault_token)

    def _register_validator(self, index: int, secret_node: NodeHandle, validator_node: NodeHandle) -> None:
        settings = self._settings
        name = validator_node_name(index)
        backend = self._backend(secret_node)

        with error_context(f"Failed to owner_key for {name}"):
            self._tool.register_owner_key(backend, name)
        with error_context(f"Failed to operator_key for {name}"):
            self._tool.register_operator_key(backend, name)
        with error_context(f"Failed to validator_config for {name}"):
            validator_address = NetworkAddress.for_tcp(
                validator_node.internal_address, settings.validator_network_port)
            fullnode_address = NetworkAddress.for_tcp(
                validator_node.internal_address, settings.fullnode_network_port)
            self._tool.register_validator_config(
                name, validator_address, fullnode_address, settings.chain_id, backend, name)
        with error_context(f"Failed to set_operator for {name}"):
            self._tool.set_operator(name, name)

    def _create_waypoint(self, index: int, secret_node: NodeHandle) -> None:
        name = validator_node_name(index)
        with error_context(f"Failed to create_and_insert_waypoint for {name}"):
            self._tool.create_waypoint(self._settings.chain_id, self._backend(secret_node), name)

    def distribute(self, data: bytes, validator_nodes: Sequence[NodeHandle]) -> None:
        """Copy the same genesis bytes to every validator node concurrently."""
        dest = self._settings.remote_genesis_path

        def _copy(index: int, node: NodeHandle) -> None:
            with error_context(f"Failed to copy genesis to {node.name} ({node.node_name})"):
                self._provisioner.copy_file(node.node_name, validator_node_name(index), dest, data)

        run_parallel([lambda i=i, node=node: _copy(i, node) for i, node in enumerate(validator_nodes)])
