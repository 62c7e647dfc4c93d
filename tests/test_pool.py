from __future__ import annotations

import json

import pytest
import sh

from cluster_bootstrap.config import PoolConfig
from cluster_bootstrap.errors import RemoteOperationError, ResourceNotFoundError
from cluster_bootstrap.pool import K3dPoolScaler


def _k3d_nodes(*names: str, cluster: str = "libra-cluster-test") -> str:
    nodes = [{"name": "k3d-libra-cluster-test-server-0", "role": "server",
              "runtimeLabels": {"k3d.cluster": cluster}}]
    nodes += [{"name": n, "role": "agent", "runtimeLabels": {"k3d.cluster": cluster}} for n in names]
    return json.dumps(nodes)


def _ready_nodes(count: int) -> str:
    items = [{"status": {"conditions": [{"type": "Ready", "status": "True"}]}} for _ in range(count)]
    items.append({"status": {"conditions": [{"type": "Ready", "status": "False"}]}})
    return json.dumps({"items": items})


@pytest.fixture
def pool_cfg() -> PoolConfig:
    return PoolConfig(ready_timeout=3, poll_interval=1)


class TestAgentNodes:
    def test_filters_and_sorts_pool_agents(self, pool_cfg, fake_sh):
        nodes = json.loads(_k3d_nodes("k3d-pool-10-0", "k3d-pool-2-0", "k3d-other-0"))
        nodes.append({"name": "k3d-pool-1-0", "role": "agent", "runtimeLabels": {"k3d.cluster": "elsewhere"}})
        fake_sh("cluster_bootstrap.pool").k3d.return_value = json.dumps(nodes)
        assert K3dPoolScaler(pool_cfg).agent_nodes() == ["k3d-pool-2-0", "k3d-pool-10-0"]

    def test_ready_count(self, pool_cfg, fake_sh):
        fake_sh("cluster_bootstrap.pool").kubectl.return_value = _ready_nodes(3)
        assert K3dPoolScaler(pool_cfg).ready_count() == 3


class TestResize:
    def test_scale_up_adds_missing_agents(self, pool_cfg, fake_sh):
        mock_sh = fake_sh("cluster_bootstrap.pool")
        mock_sh.k3d.side_effect = lambda *a, **kw: _k3d_nodes("k3d-pool-0-0") if a[:2] == ("node", "list") else ""
        mock_sh.kubectl.return_value = _ready_nodes(20)

        K3dPoolScaler(pool_cfg).resize(20, 5.0, wait_for_scale_up=True, wait_for_scale_down=False)

        created = sorted(c.args[2] for c in mock_sh.k3d.call_args_list if c.args[:2] == ("node", "create"))
        assert len(created) == 20
        assert "pool-0" not in created
        create_call = next(c for c in mock_sh.k3d.call_args_list if c.args[:2] == ("node", "create"))
        assert "--k3s-node-label" in create_call.args
        assert "nodeType=validators" in create_call.args
        assert create_call.args[create_call.args.index("--image") + 1] == pool_cfg.agent_image

    def test_scale_down_removes_extra_agents(self, pool_cfg, fake_sh):
        mock_sh = fake_sh("cluster_bootstrap.pool")
        listings = iter([_k3d_nodes("k3d-pool-0-0", "k3d-pool-1-0", "k3d-pool-2-0"), _k3d_nodes()])
        mock_sh.k3d.side_effect = lambda *a, **kw: next(listings) if a[:2] == ("node", "list") else ""

        K3dPoolScaler(pool_cfg).resize(0, 0.0, wait_for_scale_up=False, wait_for_scale_down=True)

        deleted = sorted(c.args[2] for c in mock_sh.k3d.call_args_list if c.args[:2] == ("node", "delete"))
        assert deleted == ["k3d-pool-0-0", "k3d-pool-1-0", "k3d-pool-2-0"]
        assert mock_sh.kubectl.call_count == 3

    def test_scale_up_timeout(self, pool_cfg, fake_sh, monkeypatch):
        monkeypatch.setattr("cluster_bootstrap.pool.wait_fixed", lambda s: lambda state: 0)
        mock_sh = fake_sh("cluster_bootstrap.pool")
        mock_sh.k3d.side_effect = lambda *a, **kw: _k3d_nodes("k3d-pool-0-0", "k3d-pool-1-0") \
            if a[:2] == ("node", "list") else ""
        mock_sh.kubectl.return_value = _ready_nodes(1)
        with pytest.raises(RemoteOperationError, match="2 ready pool nodes"):
            K3dPoolScaler(pool_cfg).resize(2, 0.0, wait_for_scale_up=True, wait_for_scale_down=False)
        assert mock_sh.kubectl.call_count == 3

    def test_k3d_failure(self, pool_cfg, fake_sh):
        err = sh.ErrorReturnCode_1("k3d node list", b"", b"cluster not found")
        fake_sh("cluster_bootstrap.pool").k3d.side_effect = err
        with pytest.raises(RemoteOperationError, match="k3d node failed: cluster not found"):
            K3dPoolScaler(pool_cfg).resize(1, 0.0, wait_for_scale_up=False, wait_for_scale_down=False)

    def test_missing_k3d(self, pool_cfg, fake_sh):
        fake_sh("cluster_bootstrap.pool").k3d.side_effect = sh.CommandNotFound("k3d")
        with pytest.raises(ResourceNotFoundError, match="k3d not found"):
            K3dPoolScaler(pool_cfg).agent_nodes()

    def test_malformed_node_list(self, pool_cfg, fake_sh):
        fake_sh("cluster_bootstrap.pool").k3d.return_value = "FATA[0000] no cluster"
        with pytest.raises(RemoteOperationError, match="k3d node list returned malformed JSON"):
            K3dPoolScaler(pool_cfg).agent_nodes()
