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

"""
cli.py - CLI for bootstrapping ledger test clusters.

Subcommands:
    cluster    Bootstrap, clean up, or inspect a test cluster
    pool       Resize the compute node pool

Examples:
    # Four validators, one fullnode each, Vault-backed signing proxies
    cluster-bootstrap cluster bootstrap -n 4

    # Start from an empty pool and wiped node data
    cluster-bootstrap cluster bootstrap -n 4 --clean-data --cfg "mempool.capacity=100"

    # No signing proxies
    cluster-bootstrap cluster bootstrap -n 2 --disable-secret-tier

    # Print the resolved configuration
    cluster-bootstrap cluster show-config -n 10

    # Remove every cluster-test pod
    cluster-bootstrap cluster cleanup

For detailed usage information, run: cluster-bootstrap --help
"""

from __future__ import annotations

import logging
import sys

import typer

from cluster_bootstrap import console
from cluster_bootstrap.commands import cluster_cmd, pool_cmd

app = typer.Typer(
    help="Bootstrap ledger test clusters on a k3d node pool.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.add_typer(cluster_cmd.app, name="cluster")
app.add_typer(pool_cmd.app, name="pool")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
