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

"""Bounded fixed-delay retry policy."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from cluster_bootstrap import logger
from cluster_bootstrap.errors import TransientInfrastructureError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry a call on transient failures with a fixed delay.

    Only :class:`TransientInfrastructureError` is retried. Any other error, or
    a transient one that outlives ``max_attempts``, is re-raised unchanged.

    Attributes:
        max_attempts: Total number of attempts, including the first.
        delay_seconds: Fixed wait between attempts.
    """

    max_attempts: int
    delay_seconds: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")

    def call(self, fn: Callable[[], T], description: str = "operation") -> T:
        """Invoke ``fn`` under this policy and return its result.

        Args:
            fn: Zero-argument callable to invoke.
            description: Label used in retry log lines.

        Raises:
            TransientInfrastructureError: If every attempt failed transiently.
        """

        def _log_retry(state: RetryCallState) -> None:
            err = state.outcome.exception() if state.outcome else None
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description, state.attempt_number, self.max_attempts, err, self.delay_seconds,
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_exception_type(TransientInfrastructureError),
            before_sleep=_log_retry,
            reraise=True,
        )
        return retrying(fn)
