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

"""cluster_bootstrap - ledger test cluster provisioning and genesis ceremony."""

from __future__ import annotations

import io
import logging
import threading
from contextlib import contextmanager

from rich.console import Console

__version__ = "0.1.0"


class _ConsoleState(threading.local):
    sink: Console | None = None


class ThreadAwareConsole:
    """Console proxy that writes to a per-thread buffer while one is active.

    Concurrent role tasks print through the same module-level ``console``;
    wrapping a task in :meth:`buffered` keeps its lines together so the
    orchestrator can flush them as one block after the phase joins.
    """

    def __init__(self, real_console: Console) -> None:
        self._real = real_console
        self._state = _ConsoleState()

    @property
    def current(self) -> Console:
        return self._state.sink or self._real

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self.current, name)

    @contextmanager
    def buffered(self):
        """Redirect this thread's output into a fresh ``StringIO`` until exit.

        Buffers nest; leaving one restores whatever the thread wrote to before.
        """
        previous = self._state.sink
        buf = io.StringIO()
        self._state.sink = Console(file=buf, width=self._real.width)
        try:
            yield buf
        finally:
            self._state.sink = previous


console = ThreadAwareConsole(Console(stderr=True))
logger = logging.getLogger("cluster_bootstrap")
