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

"""Cluster subcommands (bootstrap, cleanup, show-config)."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from cluster_bootstrap import console
from cluster_bootstrap.config import (
    BootstrapSettings,
    ClusterTopologyParams,
    SecretTierBackend,
    display_config,
)
from cluster_bootstrap.constants import DEFAULT_FULLNODES_PER_VALIDATOR, DEFAULT_NUM_VALIDATORS
from cluster_bootstrap.orchestrator import build_default_orchestrator
from cluster_bootstrap.utils import require_command

app = typer.Typer(help="Bootstrap and tear down test clusters.")


def parse_overrides(cfg: str | None) -> tuple[str, ...]:
    """Split a comma-delimited ``key=value`` list, dropping empty entries."""
    if not cfg:
        return ()
    return tuple(item.strip() for item in cfg.split(",") if item.strip())


def build_topology(
    num_validators: int,
    fullnodes_per_validator: int,
    enable_secret_tier: bool,
    secret_tier_backend: str,
    cfg: str | None,
    image_tag: str,
) -> ClusterTopologyParams:
    """Build topology params from raw CLI values.

    Raises:
        ConfigurationError: If the backend name is unknown.
    """
    return ClusterTopologyParams(
        num_validators=num_validators,
        fullnodes_per_validator=fullnodes_per_validator,
        enable_secret_tier=enable_secret_tier,
        secret_tier_backend=SecretTierBackend.parse(secret_tier_backend),
        image_tag=image_tag,
        config_overrides=parse_overrides(cfg),
    )


def _settings(work_dir: Path | None) -> BootstrapSettings:
    settings = BootstrapSettings()
    if work_dir is not None:
        settings = settings.model_copy(update={"work_dir": work_dir})
    return settings


@app.command()
def bootstrap(
    num_validators: int = typer.Option(
        DEFAULT_NUM_VALIDATORS, "--num-validators", "-n", min=1, help="Number of validators"),
    fullnodes_per_validator: int = typer.Option(
        DEFAULT_FULLNODES_PER_VALIDATOR, "--fullnodes-per-validator", min=0,
        help="Fullnodes attached to each validator"),
    enable_secret_tier: bool = typer.Option(
        True, "--enable-secret-tier/--disable-secret-tier", help="Run signing proxies for consensus keys"),
    secret_tier_backend: str = typer.Option(
        SecretTierBackend.VAULT.value, "--secret-tier-backend",
        help="Signing proxy storage backend (in-memory, on-disk, vault)"),
    cfg: str | None = typer.Option(
        None, "--cfg", help="Comma-delimited key=value config overrides"),
    image_tag: str = typer.Option("latest", "--image-tag", help="Workload image tag"),
    clean_data: bool = typer.Option(
        False, "--clean-data", help="Resize the pool from scratch and wipe node data"),
    work_dir: Path | None = typer.Option(
        None, "--work-dir", help="Directory for transient genesis files"),
) -> None:
    """Provision every node, run the genesis ceremony and start the network."""
    topology = build_topology(
        num_validators, fullnodes_per_validator, enable_secret_tier, secret_tier_backend, cfg, image_tag,
    )
    settings = _settings(work_dir)
    display_config(topology, settings, clean_data)

    for cmd in ("kubectl", "k3d"):
        require_command(cmd)
    if topology.uses_vault:
        require_command(settings.genesis_tool)

    descriptor = build_default_orchestrator(settings).bootstrap(topology, clean_data=clean_data)

    table = Table(title="Cluster instances", title_style="bold blue")
    table.add_column("Peer", style="cyan")
    table.add_column("Role")
    table.add_column("Node")
    table.add_column("Address")
    table.add_column("Image tag")
    for instance in descriptor.all_instances():
        table.add_row(
            instance.peer_name, instance.role.value, instance.node_name, instance.address, instance.image_tag,
        )
    console.print(table)
    if descriptor.genesis is not None:
        console.print(f"[green]\u2139\ufe0f  Mint key: {descriptor.genesis.mint_key_path}[/green]")


@app.command()
def cleanup() -> None:
    """Delete every cluster-test workload from the scheduler."""
    require_command("kubectl")
    build_default_orchestrator().cleanup()


@app.command("show-config")
def show_config(
    num_validators: int = typer.Option(DEFAULT_NUM_VALIDATORS, "--num-validators", "-n", min=1),
    fullnodes_per_validator: int = typer.Option(
        DEFAULT_FULLNODES_PER_VALIDATOR, "--fullnodes-per-validator", min=0),
    enable_secret_tier: bool = typer.Option(True, "--enable-secret-tier/--disable-secret-tier"),
    secret_tier_backend: str = typer.Option(SecretTierBackend.VAULT.value, "--secret-tier-backend"),
    cfg: str | None = typer.Option(None, "--cfg"),
    image_tag: str = typer.Option("latest", "--image-tag"),
    clean_data: bool = typer.Option(False, "--clean-data"),
) -> None:
    """Print the resolved configuration without touching the cluster."""
    topology = build_topology(
        num_validators, fullnodes_per_validator, enable_secret_tier, secret_tier_backend, cfg, image_tag,
    )
    display_config(topology, BootstrapSettings(), clean_data)
