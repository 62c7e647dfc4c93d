from __future__ import annotations

from collections import Counter

import pytest

from cluster_bootstrap.config import ClusterTopologyParams, SecretTierBackend
from cluster_bootstrap.errors import RemoteOperationError, TransientInfrastructureError
from cluster_bootstrap.orchestrator import BootstrapOrchestrator
from cluster_bootstrap.roles import Role, SigningProxyConfig, ValidatorConfig


@pytest.fixture
def make_orchestrator(settings, scaler, genesis_tool, key_stores):
    def _make(provisioner, stores=None) -> BootstrapOrchestrator:
        return BootstrapOrchestrator(
            provisioner=provisioner,
            scaler=scaler,
            key_store_factory=(stores or key_stores).factory,
            genesis_tool=genesis_tool,
            settings=settings,
        )

    return _make


def _role_counts(names: list[str]) -> Counter:
    return Counter(name.split("-")[0] for name in names)


class TestBootstrapWithVault:
    def test_three_validators_one_fullnode_each(
        self, make_orchestrator, provisioner, genesis_tool, key_stores, settings
    ):
        topology = ClusterTopologyParams(num_validators=3, fullnodes_per_validator=1)
        descriptor = make_orchestrator(provisioner).bootstrap(topology)

        assert _role_counts(provisioner.allocated) == {"vault": 3, "safety": 3, "validator": 3, "fullnode": 3}
        assert genesis_tool.names().count("finalize") == 1
        assert len(provisioner.copies) == 3
        assert len(descriptor.validators) == 3
        assert len(descriptor.fullnodes) == 3
        assert len(descriptor.signing_proxies) == 3
        assert len(descriptor.secret_stores) == 3
        assert len(key_stores.keys) == 3
        assert descriptor.genesis.data == genesis_tool.ARTIFACT
        assert descriptor.genesis.mint_key_path == settings.mint_key_path
        assert descriptor.genesis.layout.owners == ("validator-0", "validator-1", "validator-2")

    def test_descriptor_is_index_aligned(self, make_orchestrator, provisioner):
        topology = ClusterTopologyParams(num_validators=4, fullnodes_per_validator=2)
        descriptor = make_orchestrator(provisioner).bootstrap(topology)
        assert [i.peer_name for i in descriptor.validators] == [f"validator-{i}" for i in range(4)]
        assert [i.peer_name for i in descriptor.fullnodes] == [
            f"fullnode-{i}-{j}" for i in range(4) for j in range(2)
        ]
        assert {i.role for i in descriptor.secret_stores} == {Role.SECRET_STORE}
        assert {i.image_tag for i in descriptor.validators + descriptor.fullnodes} == {topology.image_tag}

    def test_phase_order(self, make_orchestrator, provisioner, genesis_tool):
        make_orchestrator(provisioner).bootstrap(ClusterTopologyParams(num_validators=2, fullnodes_per_validator=1))
        events = provisioner.events
        kinds = [e[0] for e in events]
        assert kinds[0] == "cleanup"
        last_alloc = max(i for i, e in enumerate(events) if e[0] == "allocate")
        first_spawn = min(i for i, e in enumerate(events) if e[0] == "spawn")
        assert last_alloc < first_spawn

        validator_spawns = [i for i, e in enumerate(events) if e[0] == "spawn" and e[1].startswith("validator")]
        copies = [i for i, e in enumerate(events) if e[0] == "copy"]
        assert max(copies) < min(validator_spawns)

        vault_spawns = [i for i, e in enumerate(events) if e[0] == "spawn" and e[1].startswith("vault")]
        assert max(vault_spawns) < min(copies)

    def test_validator_configs(self, make_orchestrator, provisioner):
        topology = ClusterTopologyParams(num_validators=2, fullnodes_per_validator=1, config_overrides=("a=1",))
        make_orchestrator(provisioner).bootstrap(topology)
        configs = {c.peer_name: c for c in provisioner.spawned}
        seed = configs["validator-0"].node.internal_address
        for i in range(2):
            role = configs[f"validator-{i}"].role
            assert isinstance(role, ValidatorConfig)
            assert role.seed_peer_address == seed
            assert role.enable_signing_proxy
            assert role.signing_proxy_address == configs[f"safety-rules-{i}"].node.internal_address
            assert role.config_overrides == ("prune_window=50000", "a=1")
        proxy = configs["safety-rules-1"].role
        assert isinstance(proxy, SigningProxyConfig)
        assert proxy.secret_store_address == configs["vault-1"].node.internal_address
        assert configs["fullnode-1-0"].role.seed_peer_address == configs["validator-1"].node.internal_address

    def test_transient_key_store_errors_are_retried(self, make_orchestrator, provisioner, make_key_stores):
        stores = make_key_stores(transient_failures=2)
        make_orchestrator(provisioner, stores).bootstrap(ClusterTopologyParams(num_validators=2))
        assert all(count == 2 for count in stores.failures.values())
        assert all(count == 1 for count in stores.creates.values())

    def test_key_store_retry_budget_exhausted(self, make_orchestrator, provisioner, make_key_stores, settings):
        stores = make_key_stores(transient_failures=settings.key_init_max_attempts)
        with pytest.raises(TransientInfrastructureError, match="Failed to initialize vault-"):
            make_orchestrator(provisioner, stores).bootstrap(ClusterTopologyParams(num_validators=1))
        assert not any(name.startswith("validator") for _, name, *_ in
                       [e for e in provisioner.events if e[0] == "spawn"])


class TestBootstrapWithoutVault:
    def test_secret_tier_disabled(self, make_orchestrator, provisioner, genesis_tool, key_stores):
        topology = ClusterTopologyParams(num_validators=3, fullnodes_per_validator=1, enable_secret_tier=False)
        descriptor = make_orchestrator(provisioner).bootstrap(topology)

        assert genesis_tool.calls == []
        assert key_stores.stores == []
        assert provisioner.copies == []
        assert _role_counts(provisioner.allocated) == {"validator": 3, "fullnode": 3}
        validators = [c.role for c in provisioner.spawned if isinstance(c.role, ValidatorConfig)]
        assert len(validators) == 3
        assert all(v.signing_proxy_address is None and not v.enable_signing_proxy for v in validators)
        assert descriptor.signing_proxies == []
        assert descriptor.genesis is None

    def test_local_backend_spawns_proxies_without_vault(self, make_orchestrator, provisioner, genesis_tool):
        topology = ClusterTopologyParams(num_validators=2, secret_tier_backend=SecretTierBackend.ON_DISK)
        descriptor = make_orchestrator(provisioner).bootstrap(topology)
        assert genesis_tool.calls == []
        assert len(descriptor.signing_proxies) == 2
        assert all(c.role.secret_store_address is None
                   for c in provisioner.spawned if isinstance(c.role, SigningProxyConfig))


class TestFailures:
    def test_allocation_failure_names_node_and_spawns_nothing(self, make_orchestrator, make_provisioner):
        provisioner = make_provisioner(fail_allocation="fullnode-1-2")
        topology = ClusterTopologyParams(num_validators=3, fullnodes_per_validator=3)
        with pytest.raises(RemoteOperationError, match="Failed to allocate fullnode-1-2"):
            make_orchestrator(provisioner).bootstrap(topology)
        assert provisioner.spawned == []
        assert provisioner.copies == []

    def test_copy_failure_aborts_before_validators(self, make_orchestrator, make_provisioner):
        provisioner = make_provisioner(fail_copy="validator-0")
        with pytest.raises(RemoteOperationError, match="validator-0"):
            make_orchestrator(provisioner).bootstrap(ClusterTopologyParams(num_validators=2))
        assert not any(isinstance(c.role, ValidatorConfig) for c in provisioner.spawned)

    def test_cleanup_failure_is_fatal(self, make_orchestrator, make_provisioner, scaler, genesis_tool):
        provisioner = make_provisioner(fail_cleanup=True)
        with pytest.raises(RemoteOperationError, match="^Failed to clean up scheduler: kubectl delete"):
            make_orchestrator(provisioner).bootstrap(ClusterTopologyParams(num_validators=2), clean_data=True)
        assert scaler.calls == []
        assert provisioner.allocated == []
        assert provisioner.spawned == []
        assert genesis_tool.calls == []

    def test_scale_up_failure_is_fatal(self, make_orchestrator, provisioner, scaler):
        scaler.fail_target = 4
        topology = ClusterTopologyParams(num_validators=2, fullnodes_per_validator=1, enable_secret_tier=False)
        with pytest.raises(RemoteOperationError, match="^Failed to scale pool to 4 nodes: k3d node create"):
            make_orchestrator(provisioner).bootstrap(topology, clean_data=True)
        assert [c[0] for c in scaler.calls] == [0, 4]
        assert provisioner.allocated == []
        assert provisioner.wiped == []
        assert provisioner.spawned == []

    def test_drain_failure_is_fatal(self, make_orchestrator, provisioner, scaler):
        scaler.fail_target = 0
        with pytest.raises(RemoteOperationError, match="^Failed to drain pool"):
            make_orchestrator(provisioner).bootstrap(ClusterTopologyParams(num_validators=1), clean_data=True)
        assert scaler.calls == [(0, 0.0, False, True)]
        assert provisioner.allocated == []


class TestCleanRun:
    def test_clean_data_resizes_and_wipes(self, make_orchestrator, provisioner, scaler, settings):
        topology = ClusterTopologyParams(num_validators=2, fullnodes_per_validator=1)
        make_orchestrator(provisioner).bootstrap(topology, clean_data=True)

        assert scaler.calls == [
            (0, 0.0, False, True),
            (8, settings.scale_up_buffer_percent, True, False),
        ]
        assert len(provisioner.wiped) == len(provisioner.spawned) == 8

    def test_no_resize_or_wipe_by_default(self, make_orchestrator, provisioner, scaler):
        make_orchestrator(provisioner).bootstrap(ClusterTopologyParams(num_validators=1))
        assert scaler.calls == []
        assert provisioner.wiped == []

    def test_cleanup_only(self, make_orchestrator, provisioner):
        make_orchestrator(provisioner).cleanup()
        assert provisioner.cleanups == 1
        assert provisioner.allocated == []
