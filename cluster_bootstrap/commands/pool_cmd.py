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

"""Pool subcommands (resize)."""

from __future__ import annotations

import typer

from cluster_bootstrap.config import PoolConfig
from cluster_bootstrap.pool import K3dPoolScaler
from cluster_bootstrap.utils import require_command

app = typer.Typer(help="Manage the compute node pool.")


@app.command()
def resize(
    target: int = typer.Argument(..., min=0, help="Nodes needed"),
    buffer_percent: float = typer.Option(0.0, "--buffer-percent", min=0.0, help="Extra headroom in percent"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Block until the pool settles"),
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="k3d cluster name"),
) -> None:
    """Resize the k3d agent pool to TARGET nodes plus headroom."""
    pool_cfg = PoolConfig()
    if cluster_name is not None:
        pool_cfg = pool_cfg.model_copy(update={"cluster_name": cluster_name})
    for cmd in ("k3d", "kubectl"):
        require_command(cmd)
    K3dPoolScaler(pool_cfg).resize(target, buffer_percent, wait_for_scale_up=wait, wait_for_scale_down=wait)
