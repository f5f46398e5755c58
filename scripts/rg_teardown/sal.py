from __future__ import annotations

import json
from typing import List

from .catalog import (
    SAL_API_VERSIONS,
    SAL_RAW_API_VERSION,
    delegation_for,
    owner_chain_for,
)
from .doer import Doer
from .ids import name_of, same_id
from .model import Patch, ServiceAssociationLink
from .scanner import ResourceGraphScanner


class ServiceAssociationLinkResolver:
    """
    Removes service association links from one subnet.

    Links can need the owning service's resources deleted first, or a specific
    delegation on the subnet while they are removed. Removal is asynchronous,
    so a successful delete is followed by polling the subnet until the deleted
    links are gone. A link whose delete failed and that is still there fails
    the subnet straight away.
    """

    def __init__(self, doer: Doer, scanner: ResourceGraphScanner):
        self.doer = doer
        self.scanner = scanner

    def resolve(self, subnet_id: str) -> bool:
        links = self.scanner.service_association_links(subnet_id)
        if not links:
            return True

        deleted: List[str] = []
        failed: List[str] = []
        for sal in links:
            (deleted if self._remove(subnet_id, sal) else failed).append(sal.owner_id)

        if not self.doer.ctx.applying:
            return True
        if failed:
            # Deleting the owner chain can be enough even when the link delete failed.
            left = [r.owner_id for r in self.scanner.service_association_links(subnet_id)]
            stuck = [f for f in failed if any(same_id(f, r) for r in left)]
            if stuck:
                print(f"--- SAL: delete failed and still present: {[name_of(s) for s in stuck]}")
                return False
        if deleted:
            return self._wait_until_clear(subnet_id, deleted)
        return True

    def _remove(self, subnet_id: str, sal: ServiceAssociationLink) -> bool:
        doer = self.doer
        name = name_of(sal.owner_id)
        print(f"--- SAL {name} on {name_of(subnet_id)} (service={sal.service_name or '?'})")

        delegation = delegation_for(sal.service_name)
        if delegation:
            self._ensure_delegation(subnet_id, delegation)

        chain = owner_chain_for(sal.service_name)
        if chain and sal.link:
            for rid in self.scanner.owner_chain(chain, sal.link):
                # best-effort; the link delete below tells us if it was enough
                doer.delete(f"resource delete {rid} (owner of SAL {name})", rid)

        for version in SAL_API_VERSIONS:
            attempt = doer.delete(
                f"resource delete SAL {name} (api-version {version})",
                sal.owner_id,
                api_version=version,
            )
            if attempt.ok:
                return True

        if not doer.ctx.options.allow_protocol_level_fallback:
            print(f"--- SAL {name}: raw delete fallback disabled (pass --allow-raw-delete)")
            return False
        attempt = doer.delete_raw(
            f"rest DELETE SAL {name} (api-version {SAL_RAW_API_VERSION})",
            sal.owner_id,
            SAL_RAW_API_VERSION,
        )
        return attempt.ok

    def _ensure_delegation(self, subnet_id: str, service_name: str) -> None:
        present = [s.lower() for s in self.scanner.delegations(subnet_id)]
        if service_name.lower() in present:
            return
        body = {
            "name": service_name.replace("/", "."),
            "properties": {"serviceName": service_name},
        }
        self.doer.update(
            f"subnet {name_of(subnet_id)} add delegation {service_name}",
            subnet_id,
            Patch(append=(("properties.delegations", json.dumps(body)),)),
        )

    def _wait_until_clear(self, subnet_id: str, link_ids: List[str]) -> bool:
        """Poll until every link in `link_ids` is gone from the subnet."""
        opts = self.doer.ctx.options
        clock = self.doer.clock
        start = clock.now()
        while True:
            remaining = [
                r.owner_id
                for r in self.scanner.service_association_links(subnet_id)
                if any(same_id(r.owner_id, i) for i in link_ids)
            ]
            if not remaining:
                return True
            if clock.now() - start >= opts.sal_wait_timeout:
                print(f"--- SAL: still present after {opts.sal_wait_timeout:.0f}s: {[name_of(r) for r in remaining]}")
                return False
            print(f"--- SAL: waiting for link removal to propagate (remaining={len(remaining)})")
            clock.sleep(opts.sal_poll_interval)
