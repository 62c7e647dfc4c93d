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

"""Kubernetes node provisioner: allocation, workload pods, data wipes, and file copies."""

from __future__ import annotations

import posixpath
import tempfile
from pathlib import Path

import sh
import yaml

from cluster_bootstrap import console, logger
from cluster_bootstrap.config import BootstrapSettings, KubeConfig
from cluster_bootstrap.constants import (
    ANNOTATION_SCRAPE,
    CONTAINER_MAIN,
    DATA_MOUNT_PATH,
    DEFAULT_ADMISSION_CONTROL_PORT,
    DEFAULT_METRICS_PORT,
    LABEL_ALLOCATION,
    LABEL_APP,
    LABEL_CLUSTER_NODE,
    LABEL_HELPER,
    LABEL_PEER_ID,
)
from cluster_bootstrap.errors import RemoteOperationError, ResourceNotFoundError
from cluster_bootstrap.roles import (
    FullnodeConfig,
    Instance,
    InstanceConfig,
    NodeHandle,
    SecretStoreConfig,
    SigningProxyConfig,
    ValidatorConfig,
)
from cluster_bootstrap.utils import parse_json


# ============================================================================
# Manifests
# ============================================================================

def allocation_pod_name(name: str) -> str:
    return f"alloc-{name}"


def image_tag(image: str) -> str:
    """Tag of an image reference, ``latest`` when it carries none."""
    repository, _, tag = image.rpartition(":")
    if not repository or "/" in tag:
        return "latest"
    return tag


def _anti_affinity() -> dict:
    return {
        "podAntiAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": [{
                "labelSelector": {
                    "matchExpressions": [{"key": LABEL_CLUSTER_NODE, "operator": "Exists"}],
                },
                "topologyKey": "kubernetes.io/hostname",
            }],
        },
    }


def _tolerations() -> list[dict]:
    return [
        {"key": "validators", "operator": "Exists", "effect": "NoSchedule"},
        {"key": "node.kubernetes.io/not-ready", "operator": "Exists", "effect": "NoSchedule"},
    ]


def allocation_manifest(name: str, kube_cfg: KubeConfig) -> dict:
    """Placeholder pod reserving one pool node for slot ``name``.

    The anti-affinity on :data:`LABEL_CLUSTER_NODE` keeps every slot on its
    own machine; the placeholder is replaced by the workload at spawn time.
    """
    key, value = kube_cfg.node_selector_pair
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": allocation_pod_name(name),
            "namespace": kube_cfg.namespace,
            "labels": {LABEL_CLUSTER_NODE: "true", LABEL_ALLOCATION: name},
        },
        "spec": {
            "nodeSelector": {key: value},
            "affinity": _anti_affinity(),
            "tolerations": _tolerations(),
            "terminationGracePeriodSeconds": 0,
            "containers": [{
                "name": "reserve",
                "image": kube_cfg.util_image,
                "command": ["sh", "-c", "sleep infinity"],
            }],
        },
    }


def _env(values: dict[str, object]) -> list[dict]:
    return [{"name": k, "value": str(v)} for k, v in values.items()]


def _workload_container(
    config: InstanceConfig,
    kube_cfg: KubeConfig,
    settings: BootstrapSettings,
) -> tuple[str, dict, list[dict]]:
    """Resolve the app label, main container, and extra volumes for a role."""
    image_base = kube_cfg.image_registry.rstrip("/")
    mounts: list[dict] = []
    volumes: list[dict] = []

    match config.role:
        case ValidatorConfig() as role:
            genesis_dir = posixpath.dirname(settings.remote_genesis_path)
            env = {
                "CFG_NODE_INDEX": role.index,
                "CFG_NUM_VALIDATORS": role.num_validators,
                "CFG_NUM_FULLNODES": role.fullnodes_per_validator,
                "CFG_SEED_PEER_IP": role.seed_peer_address,
                "CFG_OVERRIDES": ",".join(role.config_overrides),
                "CFG_GENESIS_PATH": settings.remote_genesis_path,
                "CFG_ENABLE_SAFETY_RULES": str(role.enable_signing_proxy).lower(),
            }
            if role.signing_proxy_address:
                env["CFG_SAFETY_RULES_ADDR"] = f"{role.signing_proxy_address}:{settings.safety_rules_port}"
            image = f"{image_base}/validator:{role.image_tag}"
            ports = [settings.validator_network_port, settings.fullnode_network_port,
                     DEFAULT_ADMISSION_CONTROL_PORT, DEFAULT_METRICS_PORT]
            mounts.append({"mountPath": genesis_dir, "name": "genesis"})
            volumes.append({"name": "genesis", "hostPath": {"path": genesis_dir, "type": "DirectoryOrCreate"}})
            app = "libra-validator"
        case FullnodeConfig() as role:
            env = {
                "CFG_NUM_VALIDATORS": role.num_validators,
                "CFG_NUM_FULLNODES": role.fullnodes_per_validator,
                "CFG_FULLNODE_INDEX": role.fullnode_index,
                "CFG_SEED_PEER_IP": role.seed_peer_address,
                "CFG_OVERRIDES": ",".join(role.config_overrides),
            }
            image = f"{image_base}/validator:{role.image_tag}"
            ports = [settings.validator_network_port, settings.fullnode_network_port,
                     DEFAULT_ADMISSION_CONTROL_PORT, DEFAULT_METRICS_PORT]
            app = "libra-fullnode"
        case SigningProxyConfig() as role:
            env = {
                "CFG_NODE_INDEX": role.index,
                "CFG_NUM_VALIDATORS": role.num_validators,
                "CFG_SAFETY_RULES_BACKEND": role.backend,
                "CFG_SAFETY_RULES_PORT": settings.safety_rules_port,
            }
            if role.secret_store_address:
                env["CFG_VAULT_ADDR"] = settings.vault_url(role.secret_store_address)
                env["CFG_VAULT_TOKEN"] = settings.vault_token
            image = f"{image_base}/safety_rules:{role.image_tag}"
            ports = [settings.safety_rules_port, DEFAULT_METRICS_PORT]
            app = "libra-safety-rules"
        case SecretStoreConfig():
            env = {
                "VAULT_DEV_ROOT_TOKEN_ID": settings.vault_token,
                "VAULT_DEV_LISTEN_ADDRESS": f"0.0.0.0:{settings.vault_port}",
                "VAULT_ADDR": f"http://127.0.0.1:{settings.vault_port}",
            }
            container = {
                "name": CONTAINER_MAIN,
                "image": kube_cfg.vault_image,
                "imagePullPolicy": "IfNotPresent",
                "ports": [{"containerPort": settings.vault_port}],
                "env": _env(env),
                "command": ["sh", "-c",
                            "vault server -dev & sleep 3; "
                            f"vault secrets enable -path={settings.vault_transit_mount} transit || true; wait"],
            }
            return "libra-vault", container, volumes
        case _:
            raise TypeError(f"Unknown role config: {config.role!r}")

    container = {
        "name": CONTAINER_MAIN,
        "image": image,
        "imagePullPolicy": "Always",
        "ports": [{"containerPort": p} for p in ports],
        "env": _env(env),
        "volumeMounts": [{"mountPath": DATA_MOUNT_PATH, "name": "data"}, *mounts],
    }
    return app, container, volumes


def pod_manifest(config: InstanceConfig, kube_cfg: KubeConfig, settings: BootstrapSettings) -> dict:
    """Build the workload pod for ``config``, pinned to its allocated node.

    Args:
        config: Role config bound to its node.
        kube_cfg: Kubernetes scheduler settings.
        settings: Bootstrap settings with ports and paths.

    Returns:
        Kubernetes Pod resource as a dictionary ready for YAML serialization.
    """
    app, container, volumes = _workload_container(config, kube_cfg, settings)
    name = config.peer_name
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": kube_cfg.namespace,
            "labels": {LABEL_APP: app, LABEL_CLUSTER_NODE: "true", LABEL_PEER_ID: name},
            "annotations": {ANNOTATION_SCRAPE: "true"},
        },
        "spec": {
            "hostNetwork": True,
            "dnsPolicy": "ClusterFirstWithHostNet",
            "serviceAccountName": kube_cfg.service_account,
            "nodeName": config.node.node_name,
            "containers": [container],
            "volumes": [
                {"name": "data", "hostPath": {"path": kube_cfg.host_data_path, "type": "DirectoryOrCreate"}},
                *volumes,
            ],
            "affinity": _anti_affinity(),
            "terminationGracePeriodSeconds": 5,
            "tolerations": _tolerations(),
        },
    }


def helper_pod_manifest(name: str, node_name: str, host_path: str, command: str, kube_cfg: KubeConfig) -> dict:
    """One-off pod on ``node_name`` with ``host_path`` mounted at the same path."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": kube_cfg.namespace,
            "labels": {LABEL_HELPER: "true"},
        },
        "spec": {
            "nodeName": node_name,
            "restartPolicy": "Never",
            "tolerations": _tolerations(),
            "terminationGracePeriodSeconds": 0,
            "containers": [{
                "name": CONTAINER_MAIN,
                "image": kube_cfg.util_image,
                "command": ["sh", "-c", command],
                "volumeMounts": [{"mountPath": host_path, "name": "host"}],
            }],
            "volumes": [{"name": "host", "hostPath": {"path": host_path, "type": "DirectoryOrCreate"}}],
        },
    }


# ============================================================================
# Provisioner
# ============================================================================

class KubeProvisioner:
    """Runs cluster-test workloads as host-network pods on pool nodes via kubectl."""

    def __init__(self, kube_cfg: KubeConfig, settings: BootstrapSettings) -> None:
        self.kube_cfg = kube_cfg
        self.settings = settings

    def _kubectl(self, *args: str, timeout: int | None = None, stdin: str | None = None) -> str:
        """Run kubectl in the configured namespace and return stdout.

        Raises:
            ResourceNotFoundError: If kubectl reports a missing resource or is not installed.
            RemoteOperationError: For any other kubectl failure or timeout.
        """
        timeout = timeout or self.kube_cfg.kubectl_timeout
        kwargs: dict = {"_timeout": timeout}
        if stdin is not None:
            kwargs["_in"] = stdin
        try:
            return str(sh.kubectl("-n", self.kube_cfg.namespace, *args, **kwargs))
        except sh.CommandNotFound as err:
            raise ResourceNotFoundError("kubectl not found on PATH") from err
        except sh.ErrorReturnCode as err:
            stderr = err.stderr.decode(errors="replace").strip()
            if "NotFound" in stderr or "not found" in stderr:
                raise ResourceNotFoundError(f"kubectl {args[0]}: {stderr[:300]}") from err
            raise RemoteOperationError(f"kubectl {args[0]} failed: {stderr[:300]}") from err
        except sh.TimeoutException as err:
            raise RemoteOperationError(f"kubectl {args[0]} timed out after {timeout}s") from err

    def _apply(self, manifest: dict) -> None:
        self._kubectl("apply", "-f", "-", stdin=yaml.safe_dump(manifest, default_flow_style=False))

    def _delete_pod(self, name: str) -> None:
        self._kubectl("delete", "pod", name, "--ignore-not-found", "--wait=true")

    def _wait_phase(self, pod: str, phase: str, timeout: int) -> None:
        self._kubectl(
            "wait", f"--for=jsonpath={{.status.phase}}={phase}", f"pod/{pod}",
            f"--timeout={timeout}s", timeout=timeout + 10,
        )

    def cleanup(self) -> None:
        console.print("[yellow]\u2139\ufe0f  Deleting cluster-test pods...[/yellow]")
        for selector in (LABEL_CLUSTER_NODE, LABEL_HELPER):
            self._kubectl("delete", "pods", "-l", selector, "--ignore-not-found", "--wait=true",
                          timeout=self.kube_cfg.pod_ready_timeout)
        console.print("[green]\u2705 Cluster-test pods deleted[/green]")

    def allocate_node(self, name: str) -> NodeHandle:
        pod = allocation_pod_name(name)
        timeout = self.kube_cfg.allocation_timeout
        self._apply(allocation_manifest(name, self.kube_cfg))
        self._kubectl("wait", "--for=condition=PodScheduled", f"pod/{pod}",
                      f"--timeout={timeout}s", timeout=timeout + 10)
        node_name = self._kubectl("get", "pod", pod, "-o", "jsonpath={.spec.nodeName}").strip()
        if not node_name:
            raise ResourceNotFoundError(f"Allocation pod {pod} was not bound to a node")
        address = self._node_internal_ip(node_name)
        logger.info("Allocated %s on %s (%s)", name, node_name, address)
        return NodeHandle(name=name, node_name=node_name, internal_address=address)

    def _node_internal_ip(self, node_name: str) -> str:
        raw = self._kubectl("get", "node", node_name, "-o", "json")
        addresses = parse_json(raw, f"kubectl get node {node_name}").get("status", {}).get("addresses", [])
        for addr in addresses:
            if addr.get("type") == "InternalIP":
                return addr["address"]
        raise ResourceNotFoundError(f"Node {node_name} has no InternalIP address")

    def wipe_data(self, node_name: str) -> None:
        pod = f"wipe-{node_name}"
        path = self.kube_cfg.host_data_path.rstrip("/")
        manifest = helper_pod_manifest(pod, node_name, path, f"rm -rf {path}/*", self.kube_cfg)
        self._delete_pod(pod)
        self._apply(manifest)
        try:
            self._wait_phase(pod, "Succeeded", self.kube_cfg.pod_ready_timeout)
        finally:
            self._delete_pod(pod)
        logger.info("Wiped %s on %s", path, node_name)

    def spawn_instance(self, config: InstanceConfig) -> Instance:
        name = config.peer_name
        self._delete_pod(allocation_pod_name(config.node.name))
        manifest = pod_manifest(config, self.kube_cfg, self.settings)
        self._apply(manifest)
        self._wait_phase(name, "Running", self.kube_cfg.pod_ready_timeout)
        logger.info("Spawned %s on %s", name, config.node.node_name)
        return Instance(
            peer_name=name,
            role=config.role.kind,
            node_name=config.node.node_name,
            address=config.node.internal_address,
            image_tag=image_tag(manifest["spec"]["containers"][0]["image"]),
        )

    def copy_file(self, node_name: str, container_name: str, dest_path: str, data: bytes) -> None:
        pod = f"put-{container_name}"
        dest_dir = posixpath.dirname(dest_path)
        manifest = helper_pod_manifest(pod, node_name, dest_dir, "sleep 3600", self.kube_cfg)
        self._delete_pod(pod)
        self._apply(manifest)
        try:
            self._wait_phase(pod, "Running", self.kube_cfg.pod_ready_timeout)
            with tempfile.NamedTemporaryFile(delete=False) as tmp:
                tmp.write(data)
            try:
                self._kubectl("cp", tmp.name, f"{pod}:{dest_path}", "-c", CONTAINER_MAIN,
                              timeout=self.kube_cfg.pod_ready_timeout)
            finally:
                Path(tmp.name).unlink(missing_ok=True)
        finally:
            self._delete_pod(pod)
        logger.info("Copied %d bytes to %s:%s", len(data), node_name, dest_path)
