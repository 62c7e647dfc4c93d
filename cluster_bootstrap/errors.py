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

"""Error taxonomy for a bootstrap run."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager


class ProvisionError(RuntimeError):
    """A bootstrap run could not complete."""


class TransientInfrastructureError(ProvisionError):
    """A remote service was temporarily unavailable; the call may be retried."""


class ConfigurationError(ProvisionError):
    """Invalid input such as a malformed network address or unknown backend."""


class RemoteOperationError(ProvisionError):
    """A scheduler, scaler, secret-store or genesis-tool call failed."""


class ResourceNotFoundError(ProvisionError):
    """A referenced node, pod or file does not exist."""


@contextmanager
def error_context(context: str) -> Iterator[None]:
    """Prefix any provisioning error raised in the block with ``context``.

    The error keeps its class, so retryable errors stay retryable. Local
    filesystem errors become :class:`ResourceNotFoundError` or
    :class:`ProvisionError`.

    Example:
        with error_context("allocate validator-3"):
            provisioner.allocate_node("validator-3")
    """
    try:
        yield
    except ProvisionError as err:
        raise type(err)(f"{context}: {err}") from err
    except FileNotFoundError as err:
        raise ResourceNotFoundError(f"{context}: {err}") from err
    except OSError as err:
        raise ProvisionError(f"{context}: {err}") from err
