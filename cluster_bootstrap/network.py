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

"""Multiaddr-style network addresses (``/ip4/<ip>/tcp/<port>``)."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass

from cluster_bootstrap.errors import ConfigurationError

_ADDRESS_RE = re.compile(r"^/(?P<proto>ip4|ip6|dns4|dns6)/(?P<host>[^/]+)/tcp/(?P<port>\d+)$")


@dataclass(frozen=True)
class NetworkAddress:
    """A transport endpoint advertised in a validator config."""

    protocol: str
    host: str
    port: int

    @classmethod
    def parse(cls, text: str) -> NetworkAddress:
        """Parse ``/ip4/10.0.0.1/tcp/6180`` style addresses.

        Raises:
            ConfigurationError: If the address is malformed.
        """
        m = _ADDRESS_RE.match(text.strip())
        if not m:
            raise ConfigurationError(f"Malformed network address '{text}'")
        proto, host, port = m.group("proto"), m.group("host"), int(m.group("port"))
        if not 0 < port < 65536:
            raise ConfigurationError(f"Port out of range in network address '{text}'")
        if proto in ("ip4", "ip6"):
            try:
                ip = ipaddress.ip_address(host)
            except ValueError as err:
                raise ConfigurationError(f"Invalid IP in network address '{text}'") from err
            if (proto == "ip4") != (ip.version == 4):
                raise ConfigurationError(f"IP version mismatch in network address '{text}'")
        return cls(protocol=proto, host=host, port=port)

    @classmethod
    def for_tcp(cls, host: str, port: int) -> NetworkAddress:
        """Build and validate the address of an IPv4 node endpoint."""
        return cls.parse(f"/ip4/{host}/tcp/{port}")

    def __str__(self) -> str:
        return f"/{self.protocol}/{self.host}/tcp/{self.port}"
