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

"""Fan-out helpers and command checks."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TypeVar

import sh

from cluster_bootstrap import console
from cluster_bootstrap.errors import RemoteOperationError, ResourceNotFoundError

T = TypeVar("T")

DEFAULT_MAX_WORKERS = 32


def run_parallel(tasks: Sequence[Callable[[], T]], max_workers: int = DEFAULT_MAX_WORKERS) -> list[T]:
    """Run tasks concurrently and return their results in task order.

    Each task writes only its own result slot. On the first failure, tasks
    that have not started are cancelled, tasks already running are awaited,
    and the failure is re-raised.

    Args:
        tasks: Zero-argument callables.
        max_workers: Upper bound on concurrently running tasks.

    Returns:
        Results, index-aligned with ``tasks``.
    """
    if not tasks:
        return []

    results: list = [None] * len(tasks)
    with ThreadPoolExecutor(max_workers=min(len(tasks), max_workers)) as executor:
        futures = {executor.submit(fn): idx for idx, fn in enumerate(tasks)}
        try:
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        except BaseException:
            for future in futures:
                future.cancel()
            raise
    return results


def run_parallel_groups(tasks: dict[str, Callable[[], T]]) -> dict[str, T]:
    """Run named task groups in parallel, printing each group's output as a block.

    Args:
        tasks: Mapping of group name to callable.

    Returns:
        Mapping of group name to result.

    Raises:
        Exception: Re-raises the first exception from any failed group.
    """
    if not tasks:
        return {}

    outputs: dict[str, str] = {}
    results: dict[str, T] = {}
    lock = threading.Lock()

    def _run_group(name: str, fn: Callable[[], T]) -> None:
        with console.buffered() as buf:
            try:
                result = fn()
            finally:
                with lock:
                    outputs[name] = buf.getvalue()
        with lock:
            results[name] = result

    try:
        run_parallel([lambda n=name, f=fn: _run_group(n, f) for name, fn in tasks.items()])
    finally:
        for name in tasks:
            if outputs.get(name):
                console.print(outputs[name], end="")
    return results


def parse_json(raw: str, source: str):
    """Decode JSON printed by ``source``.

    Raises:
        RemoteOperationError: If the output is not valid JSON.
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError as err:
        raise RemoteOperationError(f"{source} returned malformed JSON: {err}") from err


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        ResourceNotFoundError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise ResourceNotFoundError(f"Required command '{cmd}' not found. Please install it first.") from err
