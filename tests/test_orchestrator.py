"""
End-to-end teardown scenarios against the in-memory control plane.
"""

from unittest.mock import Mock

from rg_teardown.catalog import LOCK_TYPE, NIC_TYPE, NSG_TYPE, VNET_TYPE
from rg_teardown.model import (
    CallResult,
    ContainerState,
    ContainerStatus,
    Outcome,
    Phase,
    TeardownOutcome,
)
from rg_teardown.orchestrator import teardown

from fakes import RG, FakeClock, FakeControlPlane, arm_id, make_ctx, sal_entry

DELETING = ContainerStatus(ContainerState.DELETING, "Deleting")
SUCCEEDED = ContainerStatus(ContainerState.EXISTS, "Succeeded")
GONE = ContainerStatus(ContainerState.DELETED)


def simple_group(fake):
    """A VM behind an NSG on one subnet."""
    nsg = fake.add(arm_id(NSG_TYPE, "nsg-a"))
    vnet = fake.add(arm_id(VNET_TYPE, "vnet-a"))
    subnet = fake.add(f"{vnet}/subnets/snet-a", {"networkSecurityGroup": {"id": nsg}})
    vm = fake.add(arm_id("Microsoft.Compute/virtualMachines", "vm-a"))
    nic = fake.add(
        arm_id(NIC_TYPE, "nic-a"),
        {"networkSecurityGroup": {"id": nsg}, "ipConfigurations": [{"properties": {"subnet": {"id": subnet}}}]},
    )
    return {"nsg": nsg, "vnet": vnet, "subnet": subnet, "vm": vm, "nic": nic}


class TestScenarios:
    """Test the outcomes of complete runs."""

    def test_clean_group_deleted_without_retries(self):
        """Test a group with no cross-group blockers."""
        fake = FakeControlPlane()
        ids = simple_group(fake)
        fake.after_delete = [DELETING, GONE]
        clock = FakeClock()

        result = teardown(make_ctx(poll_interval=15), fake, clock=clock)

        assert result.outcome is TeardownOutcome.DELETED
        assert result.outcome.exit_code == 0
        assert result.summary.retried_actions() == []
        assert result.summary.failed_actions() == []
        assert not result.summary.partial
        assert clock.sleeps == [15]
        assert result.summary.deleted_subnets == [ids["subnet"]]
        assert fake.violations == []
        assert result.summary.phases == [
            Phase.VERIFYING,
            Phase.CLEARING_LOCKS,
            Phase.PROCESSING_SECURITY_GROUPS,
            Phase.BREAKING_NETWORK_BLOCKERS,
            Phase.FINAL_LOCK_SWEEP,
            Phase.DELETING,
            Phase.POLLING,
        ]

    def test_order_of_operations(self):
        """Test locks, NSG, compute, subnet, VNet, then the group."""
        fake = FakeControlPlane()
        ids = simple_group(fake)
        lock = fake.add(arm_id(LOCK_TYPE, "no-delete"))

        teardown(make_ctx(), fake, clock=FakeClock())

        order = [c[1] for c in fake.calls if c[0] in ("delete", "delete_container")]
        assert order[0] == lock
        assert order.index(ids["nsg"]) < order.index(ids["vm"])
        assert order.index(ids["vm"]) < order.index(ids["subnet"]) < order.index(ids["vnet"])
        assert order[-1] == RG

    def test_subnet_link_with_delegation(self):
        """Test a subnet held by a service association link and its delegation."""
        fake = FakeControlPlane()
        vnet = fake.add(arm_id(VNET_TYPE, "vnet-a"))
        subnet = f"{vnet}/subnets/snet-app"
        link = sal_entry(subnet, "legionservicelink", "Microsoft.Web/serverFarms")
        fake.add(subnet, {"serviceAssociationLinks": [link]})
        fake.after_delete = [GONE]

        result = teardown(make_ctx(), fake, clock=FakeClock())

        assert result.outcome is TeardownOutcome.DELETED
        assert fake.violations == []
        order = [c[1] for c in fake.calls if c[0] in ("delete", "update")]
        # delegation added, link removed, delegation removed, subnet deleted
        assert order[:4] == [subnet, link["id"], subnet, subnet]

    def test_lock_and_nsg_on_two_subnets(self):
        """Test a lock plus one NSG bound to two subnets."""
        fake = FakeControlPlane()
        lock = fake.add(arm_id(LOCK_TYPE, "no-delete"))
        nsg = fake.add(arm_id(NSG_TYPE, "nsg-a"))
        vnet = fake.add(arm_id(VNET_TYPE, "vnet-a"))
        ref = {"networkSecurityGroup": {"id": nsg}}
        subnets = [fake.add(f"{vnet}/subnets/snet-a", ref), fake.add(f"{vnet}/subnets/snet-b", ref)]

        result = teardown(make_ctx(), fake, clock=FakeClock())

        assert result.outcome is TeardownOutcome.DELETED
        updates = fake.calls_of("update")
        assert sorted(c[1] for c in updates) == sorted(subnets)
        assert all(c[2].remove == ("properties.networkSecurityGroup",) for c in updates)
        order = [c[1] for c in fake.calls if c[0] in ("delete", "update")]
        assert order[0] == lock
        assert max(order.index(s) for s in subnets) < order.index(nsg)
        assert fake.deleted_ids().count(nsg) == 1
        assert sorted(result.summary.deleted_subnets) == sorted(subnets)
        assert result.summary.blocked_security_groups == []

    def test_owner_chain_link_without_delegation(self):
        """Test delegation added, owners deleted innermost first, link polled away, subnet deleted."""
        fake = FakeControlPlane()
        fake.sal_lag = 2
        env = fake.add(arm_id("Microsoft.App/managedEnvironments", "env-a", rg="rg-apps"))
        app = fake.add(arm_id("Microsoft.App/containerApps", "app-a", rg="rg-apps"), {"managedEnvironmentId": env})
        vnet = fake.add(arm_id(VNET_TYPE, "vnet-a"))
        subnet = f"{vnet}/subnets/snet-app"
        link = sal_entry(subnet, "legionservicelink", "Microsoft.App/environments", env)
        fake.add(subnet, {"serviceAssociationLinks": [link]})
        clock = FakeClock()

        result = teardown(make_ctx(sal_poll_interval=10), fake, clock=clock)

        assert result.outcome is TeardownOutcome.DELETED
        assert fake.violations == []
        order = [c[:2] for c in fake.calls if c[0] in ("delete", "update", "delete_container")]
        assert order == [
            ("update", subnet),
            ("delete", app),
            ("delete", env),
            ("delete", link["id"]),
            ("update", subnet),
            ("delete", subnet),
            ("delete", vnet),
            ("delete_container", RG),
        ]
        added, removed = fake.calls_of("update")
        assert added[2].append[0][0] == "properties.delegations"
        assert removed[2].remove == ("properties.delegations",)
        assert clock.sleeps == [10]
        assert result.summary.deleted_subnets == [subnet]

    def test_managed_cluster_removed_before_subnets(self):
        """Test a Kubernetes cluster goes with the other heavy compute."""
        fake = FakeControlPlane()
        vnet = fake.add(arm_id(VNET_TYPE, "vnet-a"))
        subnet = fake.add(f"{vnet}/subnets/snet-aks")
        aks = fake.add(
            arm_id("Microsoft.ContainerService/managedClusters", "aks-a"),
            {"agentPoolProfiles": [{"name": "system", "vnetSubnetID": subnet}]},
        )

        result = teardown(make_ctx(), fake, clock=FakeClock())

        assert result.outcome is TeardownOutcome.DELETED
        order = fake.deleted_ids()
        assert order.index(aks) < order.index(subnet) < order.index(vnet)

    def test_delete_rejected_is_not_polled(self):
        """Test that a rejected group delete stops at once."""
        fake = FakeControlPlane()
        fake.container_delete_result = CallResult(Outcome.BLOCKED, "ScopeLocked")

        result = teardown(make_ctx(), fake, clock=FakeClock())

        assert result.outcome is TeardownOutcome.DELETE_REJECTED
        assert result.outcome.exit_code == 3
        after = fake.calls[fake.calls.index(("delete_container", RG)) + 1 :]
        assert ("state", RG) not in after
        assert Phase.POLLING not in result.summary.phases

    def test_timeout_lists_remaining(self):
        """Test a delete that never finishes."""
        fake = FakeControlPlane()
        storage = fake.add(arm_id("Microsoft.Storage/storageAccounts", "sta"))
        fake.after_delete = [DELETING]
        clock = FakeClock()

        result = teardown(make_ctx(timeout=60, poll_interval=15), fake, clock=clock)

        assert result.outcome is TeardownOutcome.TIMED_OUT
        assert result.outcome.exit_code == 4
        assert clock.sleeps == [15, 15, 15, 15]
        assert result.summary.final_existing == [storage]

    def test_rollback_detected(self):
        """Test Deleting, Deleting, Succeeded reads as a rollback."""
        fake = FakeControlPlane()
        fake.after_delete = [DELETING, DELETING, SUCCEEDED]

        result = teardown(make_ctx(poll_interval=5), fake, clock=FakeClock())

        assert result.outcome is TeardownOutcome.ROLLED_BACK
        assert result.outcome.exit_code == 5
        assert result.final_status.state is ContainerState.ROLLED_BACK

    def test_no_wait(self):
        """Test returning right after the delete is accepted."""
        fake = FakeControlPlane()

        result = teardown(make_ctx(synchronous_wait=False), fake, clock=FakeClock())

        assert result.outcome is TeardownOutcome.DELETE_ISSUED
        assert fake.calls[-1] == ("delete_container", RG)

    def test_cancel_while_polling(self):
        """Test that an interrupt during polling reports Cancelled."""
        fake = FakeControlPlane()
        fake.after_delete = [DELETING]

        result = teardown(make_ctx(), fake, clock=FakeClock(cancel_at=1))

        assert result.outcome is TeardownOutcome.CANCELLED
        assert result.outcome.exit_code == 130
        assert result.summary.phases[-1] is Phase.POLLING


class TestSecurityGroups:
    """Test scoped and broad NSG disassociation."""

    def test_broad_scan_only_after_failure(self):
        """Test that an NSG used from another group is found by the broad scan."""
        fake = FakeControlPlane()
        nsg = fake.add(arm_id(NSG_TYPE, "nsg-a"))
        far = fake.add(arm_id(NIC_TYPE, "nic-far", rg="rg-other"), {"networkSecurityGroup": {"id": nsg}})

        result = teardown(make_ctx(), fake, clock=FakeClock())

        nsg_deletes = [i for i, c in enumerate(fake.calls) if c[:2] == ("delete", nsg)]
        broad = [i for i, c in enumerate(fake.calls) if c == ("list", NIC_TYPE, None)]
        assert len(nsg_deletes) == 2
        assert broad and nsg_deletes[0] < broad[0] < nsg_deletes[1]
        assert ("update", far) in [c[:2] for c in fake.calls]
        assert not fake.exists(nsg)
        assert result.summary.blocked_security_groups == []

    def test_no_broad_scan_when_scoped_delete_works(self):
        """Test that a clean NSG never triggers a subscription-wide scan."""
        fake = FakeControlPlane()
        fake.add(arm_id(NSG_TYPE, "nsg-a"))

        teardown(make_ctx(), fake, clock=FakeClock())

        assert ("list", NIC_TYPE, None) not in fake.calls

    def test_still_blocked_is_recorded(self):
        """Test that an NSG that cannot be deleted does not stop the run."""
        fake = FakeControlPlane()
        nsg = fake.add(arm_id(NSG_TYPE, "nsg-a"))
        fake.rejects[nsg.lower()] = CallResult(Outcome.BLOCKED, "InUse")

        result = teardown(make_ctx(), fake, clock=FakeClock())

        assert result.summary.blocked_security_groups == [nsg]
        assert result.summary.partial
        assert result.outcome is TeardownOutcome.DELETED


class TestGates:
    """Test the checks before anything is touched."""

    def test_missing_group(self):
        """Test a group that does not exist."""
        fake = FakeControlPlane()
        fake.container_states[RG] = [GONE]

        result = teardown(make_ctx(), fake, clock=FakeClock())

        assert result.outcome is TeardownOutcome.VALIDATION_FAILED
        assert result.outcome.exit_code == 2
        assert fake.calls == [("state", RG)]

    def test_unknown_state_fails_validation(self):
        """Test that an unreadable group is not touched."""
        fake = FakeControlPlane()
        fake.container_states[RG] = [ContainerStatus(ContainerState.UNKNOWN)]

        result = teardown(make_ctx(), fake, clock=FakeClock())

        assert result.outcome is TeardownOutcome.VALIDATION_FAILED

    def test_declined_confirmation(self):
        """Test that declining the prompt aborts before any mutation."""
        fake = FakeControlPlane()
        simple_group(fake)
        confirm = Mock(return_value=False)

        result = teardown(make_ctx(force_no_confirm=False), fake, clock=FakeClock(), confirm=confirm)

        assert result.outcome is TeardownOutcome.ABORTED
        assert result.outcome.exit_code == 1
        confirm.assert_called_once_with(RG)
        assert [c for c in fake.calls if c[0] != "state"] == []

    def test_plan_mode(self):
        """Test plan mode walks every phase and mutates nothing."""
        fake = FakeControlPlane()
        ids = simple_group(fake)
        confirm = Mock(return_value=False)

        result = teardown(make_ctx(mode="plan", force_no_confirm=False), fake, clock=FakeClock(), confirm=confirm)

        assert result.outcome is TeardownOutcome.PLANNED
        confirm.assert_not_called()
        assert [c for c in fake.calls if c[0] in ("delete", "delete_raw", "update", "delete_container")] == []
        assert Phase.DELETING in result.summary.phases
        assert any("group delete" in a.desc for a in result.summary.actions)
        assert result.summary.deleted_subnets == []
        assert result.summary.planned_subnets == [ids["subnet"]]

    def test_transient_failures_retried(self):
        """Test a throttled delete succeeds on retry."""
        fake = FakeControlPlane()
        ids = simple_group(fake)
        fake.script(ids["vm"], CallResult(Outcome.TRANSIENT, "TooManyRequests"))
        clock = FakeClock()

        result = teardown(make_ctx(), fake, clock=clock)

        retried = result.summary.retried_actions()
        assert [a.attempts for a in retried] == [2]
        assert clock.sleeps[0] == 5
        assert not fake.exists(ids["vm"])
