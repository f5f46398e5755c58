from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .catalog import SUBNET_ASSOCIATIONS, SUBNET_DELETE_BLOCKERS
from .doer import Doer
from .ids import name_of
from .model import BlockerKind, Patch
from .sal import ServiceAssociationLinkResolver
from .scanner import ResourceGraphScanner


@dataclass
class SubnetReport:
    deleted: List[str] = field(default_factory=list)
    # plan mode: would be deleted
    planned: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    passes: int = 0


class SubnetTeardownPlanner:
    """
    Drives subnets from "has blockers" to "deleted or deferred".

    Each pass handles every pending subnet once; subnets that could not be
    cleared are retried on the next pass after a linearly growing wait. A
    deleted subnet is never revisited.
    """

    def __init__(
        self,
        doer: Doer,
        scanner: ResourceGraphScanner,
        sal: ServiceAssociationLinkResolver,
    ):
        self.doer = doer
        self.scanner = scanner
        self.sal = sal

    def run(self, subnet_ids: List[str]) -> SubnetReport:
        opts = self.doer.ctx.options
        report = SubnetReport()
        pending = list(subnet_ids)
        n = 0
        while pending and n < opts.subnet_passes:
            n += 1
            print(f"--- subnets: pass {n}/{opts.subnet_passes} (pending={len(pending)})")
            deferred: List[str] = []
            for subnet_id in pending:
                if self.teardown_subnet(subnet_id):
                    (report.deleted if self.doer.ctx.applying else report.planned).append(subnet_id)
                else:
                    print(f"--- subnet {name_of(subnet_id)}: deferred")
                    deferred.append(subnet_id)
            pending = deferred
            if pending and n < opts.subnet_passes:
                wait = opts.pass_wait_unit * n
                print(f"--- subnets: {len(pending)} deferred; waiting {wait:.0f}s before next pass")
                self.doer.clock.sleep(wait)
        report.deferred = pending
        report.passes = n
        if pending:
            print(f"--- subnets still deferred after {n} passes: {[name_of(s) for s in pending]}")
        return report

    def teardown_subnet(self, subnet_id: str) -> bool:
        doer = self.doer
        name = name_of(subnet_id)
        print(f"--- subnet {name}")

        # 1) consumers bound to the subnet from anywhere in the subscription
        for rec in self.scanner.subnet_consumers(subnet_id):
            doer.delete(f"resource delete {rec.owner_id} (consumer of {name})", rec.owner_id)

        # 2) private endpoints
        for rec in self.scanner.scan_subnet(subnet_id):
            if rec.kind is BlockerKind.PRIVATE_ENDPOINT:
                doer.delete(f"private endpoint delete {name_of(rec.owner_id)}", rec.owner_id)

        # 3) service association links
        if not self.sal.resolve(subnet_id):
            return False

        # 4) associations, each independently of the others
        present = {rec.kind for rec in self.scanner.scan_subnet(subnet_id)}
        for kind, path in SUBNET_ASSOCIATIONS:
            if kind in present:
                doer.update(
                    f"subnet {name} remove {path.split('.', 1)[1]}",
                    subnet_id,
                    Patch(remove=(path,)),
                )

        # 5) the subnet itself; never while a link or delegation remains
        if doer.ctx.applying:
            left = {rec.kind for rec in self.scanner.scan_subnet(subnet_id)} & SUBNET_DELETE_BLOCKERS
            if left:
                print(f"--- subnet {name}: still has {sorted(k.value for k in left)}")
                return False
        return doer.delete(f"subnet delete {name}", subnet_id).ok
