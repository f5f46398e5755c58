from __future__ import annotations

from typing import Callable, List, Optional

from .catalog import HEAVY_COMPUTE_TYPES, NIC_TYPE, NSG_TYPE, SUBNET_TYPE, VNET_TYPE
from .control_plane import ControlPlaneClient
from .doer import Doer
from .ids import name_of, same_type
from .model import (
    BlockerRecord,
    ContainerState,
    ContainerStatus,
    Outcome,
    Patch,
    Phase,
    PollState,
    RunContext,
    Summary,
    TeardownOutcome,
    TeardownResult,
)
from .retry import Clock, RetryExecutor, RetryPolicy, TeardownCancelled
from .sal import ServiceAssociationLinkResolver
from .scanner import ResourceGraphScanner
from .subnets import SubnetTeardownPlanner
from .verify import list_remaining, verify_resource_ids

NSG_PATCH = Patch(remove=("properties.networkSecurityGroup",))


class ContainerTeardownOrchestrator:
    """
    Verifying -> ClearingLocks -> ProcessingSecurityGroups ->
    BreakingNetworkBlockers -> FinalLockSweep -> Deleting -> Polling.

    Only two things abort the run: the resource group not existing, and the
    delete call itself being rejected. Anything else is recorded in the summary
    and the run moves on.
    """

    def __init__(
        self,
        doer: Doer,
        scanner: ResourceGraphScanner,
        planner: SubnetTeardownPlanner,
        confirm: Optional[Callable[[str], bool]] = None,
    ):
        self.doer = doer
        self.scanner = scanner
        self.planner = planner
        self.confirm = confirm
        self.phase: Optional[Phase] = None

    @property
    def ctx(self) -> RunContext:
        return self.doer.ctx

    @property
    def client(self) -> ControlPlaneClient:
        return self.doer.client

    @property
    def summary(self) -> Summary:
        return self.doer.summary

    def _enter(self, phase: Phase) -> None:
        self.phase = phase
        self.summary.phases.append(phase)
        print(f"--- phase={phase.value}")

    def _result(self, outcome: TeardownOutcome, status: Optional[ContainerStatus] = None) -> TeardownResult:
        return TeardownResult(outcome=outcome, summary=self.summary, final_status=status)

    def run(self) -> TeardownResult:
        try:
            return self._run()
        except TeardownCancelled as e:
            where = self.phase.value if self.phase else "startup"
            print(f"!! {e} during {where}")
            return self._result(TeardownOutcome.CANCELLED)

    def _run(self) -> TeardownResult:
        ctx = self.ctx
        rg = ctx.resource_group

        self._enter(Phase.VERIFYING)
        status = self.client.get_container_state(rg)
        if status.state not in (ContainerState.EXISTS, ContainerState.DELETING):
            print(f"!! resource group '{rg}' not found (state={status.state.value})")
            return self._result(TeardownOutcome.VALIDATION_FAILED, status)
        print(f"--- resource group {rg}: provisioningState={status.lifecycle}")

        if ctx.applying and not ctx.options.force_no_confirm:
            if self.confirm is None or not self.confirm(rg):
                print("Aborted before touching the resource group.")
                return self._result(TeardownOutcome.ABORTED, status)

        self._enter(Phase.CLEARING_LOCKS)
        self.clear_locks()

        self._enter(Phase.PROCESSING_SECURITY_GROUPS)
        self.process_security_groups()

        self._enter(Phase.BREAKING_NETWORK_BLOCKERS)
        self.break_network_blockers()

        # Some platform operations re-apply inherited locks.
        self._enter(Phase.FINAL_LOCK_SWEEP)
        self.clear_locks()

        self._enter(Phase.DELETING)
        attempt = self.doer.delete_container()
        if not ctx.applying:
            return self._result(TeardownOutcome.PLANNED, status)
        if attempt.outcome is Outcome.NOT_FOUND:
            return self._result(TeardownOutcome.DELETED, ContainerStatus(ContainerState.DELETED))
        if not attempt.ok:
            print(f"!! resource group delete rejected: {attempt.reason}")
            return self._result(TeardownOutcome.DELETE_REJECTED, status)
        if not ctx.options.synchronous_wait:
            print(f"--- delete of {rg} issued; not waiting for completion")
            return self._result(TeardownOutcome.DELETE_ISSUED, ContainerStatus(ContainerState.DELETING))

        self._enter(Phase.POLLING)
        return self.poll()

    def clear_locks(self) -> None:
        for rec in self.scanner.locks():
            # non-fatal: a lock we cannot remove shows up again in the final sweep
            self.doer.delete(f"lock delete {name_of(rec.owner_id)}", rec.owner_id)

    def _disassociate(self, records: List[BlockerRecord]) -> None:
        for rec in records:
            self.doer.update(
                f"{name_of(rec.owner_id)} remove networkSecurityGroup {name_of(rec.target_id)}",
                rec.owner_id,
                NSG_PATCH,
            )

    def process_security_groups(self) -> None:
        for nsg_id in self.scanner.in_container(NSG_TYPE):
            name = name_of(nsg_id)
            print(f"--- NSG {name}")
            self._disassociate(self.scanner.scan_security_group(nsg_id))
            if self.doer.delete(f"nsg delete {name}", nsg_id).ok:
                continue

            print(f"!! NSG {name} delete failed; broad disassociation across the subscription and retry")
            self._disassociate(self.scanner.broad_scan_security_group(nsg_id))
            if not self.doer.delete(f"nsg delete {name} (after broad disassociation)", nsg_id).ok:
                print(f"--- NSG {name}: still blocked; moving on")
                self.summary.blocked_security_groups.append(nsg_id)

    def _is_managed_nic(self, nic_id: str) -> bool:
        props = (self.scanner.read(nic_id) or {}).get("properties") or {}
        return bool(props.get("privateEndpoint") or props.get("virtualMachine"))

    def break_network_blockers(self) -> None:
        # Heavy compute first: it silently re-creates subnet associations.
        for rtype in HEAVY_COMPUTE_TYPES:
            for rid in self.scanner.in_container(rtype):
                if same_type(rtype, NIC_TYPE) and self._is_managed_nic(rid):
                    continue
                self.doer.delete(f"resource delete {rid}", rid)

        for vnet_id in self.scanner.in_container(VNET_TYPE):
            self.teardown_vnet(vnet_id)

    def teardown_vnet(self, vnet_id: str) -> None:
        name = name_of(vnet_id)
        print(f"--- VNet {name}")
        report = self.planner.run(self.scanner.children(vnet_id, SUBNET_TYPE))
        self.summary.deleted_subnets.extend(report.deleted)
        self.summary.planned_subnets.extend(report.planned)
        self.summary.deferred_subnets.extend(report.deferred)

        for rec in self.scanner.peerings(vnet_id):
            self.doer.delete(f"peering delete {name_of(rec.owner_id)}", rec.owner_id)
        for rec in self.scanner.dns_links(vnet_id):
            self.doer.delete(f"private dns link delete {name_of(rec.owner_id)}", rec.owner_id)

        if not self.doer.delete(f"vnet delete {name}", vnet_id).ok:
            print(f"--- VNet {name} not deleted; the resource group delete will retry it")

    def poll(self) -> TeardownResult:
        opts = self.ctx.options
        clock = self.doer.clock
        rg = self.ctx.resource_group
        state = PollState(started_at=clock.now())

        while True:
            status = self.client.get_container_state(rg)
            state.last = status
            state.elapsed = clock.now() - state.started_at

            if status.state is ContainerState.DELETED:
                print(f"--- resource group {rg} deleted ({state.elapsed:.0f}s)")
                return self._result(TeardownOutcome.DELETED, status)
            if status.state is ContainerState.DELETING:
                state.saw_deleting = True
            elif status.state is ContainerState.EXISTS and state.saw_deleting:
                # Deleting -> Succeeded: the platform gave up on the delete.
                print(f"!! resource group {rg} went back to {status.lifecycle} after Deleting: rollback")
                self.report_remaining()
                return self._result(
                    TeardownOutcome.ROLLED_BACK,
                    ContainerStatus(ContainerState.ROLLED_BACK, status.lifecycle),
                )

            if state.elapsed >= opts.timeout:
                print(f"!! timed out after {state.elapsed:.0f}s (last state={status.lifecycle or status.state.value})")
                self.report_remaining()
                return self._result(TeardownOutcome.TIMED_OUT, status)

            print(
                f"--- waiting for resource group delete "
                f"(state={status.lifecycle or status.state.value}, elapsed={state.elapsed:.0f}s)"
            )
            clock.sleep(opts.poll_interval)

    def report_remaining(self) -> None:
        vr = verify_resource_ids(self.client, list_remaining(self.ctx, self.client))
        self.summary.final_existing = vr.existing
        self.summary.final_eventual = vr.eventual
        self.summary.final_unknown = vr.unknown
        self.summary.final_stale = vr.stale


def teardown(
    ctx: RunContext,
    client: ControlPlaneClient,
    *,
    clock: Optional[Clock] = None,
    confirm: Optional[Callable[[str], bool]] = None,
) -> TeardownResult:
    opts = ctx.options
    summary = Summary()
    retry = RetryExecutor(
        RetryPolicy(
            attempts=opts.retry_attempts,
            base_delay=opts.retry_base_delay,
            max_delay=opts.retry_max_delay,
        ),
        clock or Clock(),
    )
    doer = Doer(ctx=ctx, client=client, summary=summary, retry=retry)
    scanner = ResourceGraphScanner(ctx, client)
    planner = SubnetTeardownPlanner(doer, scanner, ServiceAssociationLinkResolver(doer, scanner))
    return ContainerTeardownOrchestrator(doer, scanner, planner, confirm=confirm).run()
