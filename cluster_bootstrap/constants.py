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

"""Default values, key slot names, and Kubernetes label keys."""

from __future__ import annotations

# -- Secret store --
DEFAULT_VAULT_PORT = 8200
DEFAULT_VAULT_TOKEN = "root"
DEFAULT_VAULT_BACKEND = "vault"
DEFAULT_VAULT_TRANSIT_MOUNT = "transit"
DEFAULT_VAULT_REQUEST_TIMEOUT_SECONDS = 10.0

# -- Genesis --
DEFAULT_ROOT_IDENTITY = "libra"
DEFAULT_SHARED_NAMESPACE = "common"
DEFAULT_CHAIN_ID = 1
DEFAULT_GENESIS_TOOL = "libra-genesis-tool"
DEFAULT_GENESIS_TOOL_TIMEOUT_SECONDS = 120
DEFAULT_WORK_DIR = "/tmp"
DEFAULT_REMOTE_GENESIS_PATH = "/opt/libra/etc/genesis.blob"

LAYOUT_FILE_NAME = "layout.toml"
TOKEN_FILE_NAME = "token"
GENESIS_FILE_NAME = "genesis.blob"
MINT_KEY_FILE_NAME = "mint.key"
SHARED_STORAGE_FILE_NAME = "genesis.json"

# -- Network --
DEFAULT_VALIDATOR_NETWORK_PORT = 6180
DEFAULT_FULLNODE_NETWORK_PORT = 6181
DEFAULT_ADMISSION_CONTROL_PORT = 8000
DEFAULT_METRICS_PORT = 9101
DEFAULT_SAFETY_RULES_PORT = 6185

# -- Key slots created on every secret-store node --
OWNER_KEY = "owner"
OPERATOR_KEY = "operator"
CONSENSUS_KEY = "consensus"
EXECUTION_KEY = "execution"
VALIDATOR_NETWORK_KEY = "validator_network"
FULLNODE_NETWORK_KEY = "fullnode_network"
ROOT_KEY = "libra_root"

VALIDATOR_KEY_SLOTS = (
    OWNER_KEY,
    OPERATOR_KEY,
    CONSENSUS_KEY,
    EXECUTION_KEY,
    VALIDATOR_NETWORK_KEY,
    FULLNODE_NETWORK_KEY,
)

# -- Retry policy for secret tier initialization --
DEFAULT_KEY_INIT_MAX_ATTEMPTS = 15
DEFAULT_KEY_INIT_RETRY_DELAY_SECONDS = 5.0

# -- Topology --
DEFAULT_NUM_VALIDATORS = 30
DEFAULT_FULLNODES_PER_VALIDATOR = 1
DEFAULT_CONFIG_OVERRIDES = ("prune_window=50000",)
DEFAULT_SCALE_UP_BUFFER_PERCENT = 5.0

# -- Kubernetes --
DEFAULT_KUBE_NAMESPACE = "default"
DEFAULT_IMAGE_REGISTRY = "docker.io/libra"
DEFAULT_NODE_SELECTOR = "nodeType=validators"
DEFAULT_SERVICE_ACCOUNT = "clustertest"
DEFAULT_HOST_DATA_PATH = "/data"
DEFAULT_UTIL_IMAGE = "busybox:1.36"
DEFAULT_VAULT_IMAGE = "hashicorp/vault:1.15"
DEFAULT_ALLOCATION_TIMEOUT_SECONDS = 300
DEFAULT_POD_READY_TIMEOUT_SECONDS = 600
DEFAULT_KUBECTL_TIMEOUT_SECONDS = 60

LABEL_CLUSTER_NODE = "libra-node"
LABEL_APP = "app"
LABEL_PEER_ID = "peer_id"
LABEL_ALLOCATION = "cluster-test/allocation"
LABEL_HELPER = "cluster-test/helper"
ANNOTATION_SCRAPE = "prometheus.io/should_be_scraped"
CONTAINER_MAIN = "main"
DATA_MOUNT_PATH = "/opt/libra/data"

# -- Compute pool (k3d agents) --
DEFAULT_POOL_CLUSTER_NAME = "libra-cluster-test"
DEFAULT_POOL_AGENT_PREFIX = "pool"
DEFAULT_POOL_AGENT_IMAGE = "rancher/k3s:v1.33.5-k3s1"
DEFAULT_POOL_AGENT_MEMORY = "2g"
DEFAULT_POOL_READY_TIMEOUT_SECONDS = 900
DEFAULT_POOL_POLL_INTERVAL_SECONDS = 10
