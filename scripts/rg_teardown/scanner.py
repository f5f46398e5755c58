from __future__ import annotations

from typing import Iterable, List, Optional

from .catalog import (
    LOCK_TYPE,
    NIC_TYPE,
    PRIVATE_DNS_LINK_TYPE,
    PRIVATE_DNS_ZONE_TYPE,
    SUBNET_ASSOCIATIONS,
    SUBNET_CONSUMER_TYPES,
    SUBNET_TYPE,
    VNET_TYPE,
    ChainStep,
    OwnerChain,
)
from .control_plane import ControlPlaneClient, ControlPlaneError, RefFilter
from .ids import name_of, same_id
from .model import BlockerKind, BlockerRecord, RunContext, ServiceAssociationLink

NSG_REF_PATH = "properties.networkSecurityGroup.id"
PEERING_REMOTE_PATH = "properties.virtualNetworkPeerings.properties.remoteVirtualNetwork.id"
DNS_LINK_VNET_PATH = "properties.virtualNetwork.id"


def _dedupe(records: Iterable[BlockerRecord]) -> List[BlockerRecord]:
    seen = set()
    out: List[BlockerRecord] = []
    for r in records:
        key = (r.kind, r.owner_id.lower(), r.target_id.lower())
        if key in seen:
            continue
        seen.add(key)
        out.append(r)
    return out


def _dedupe_ids(ids: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for i in ids:
        if i.lower() in seen:
            continue
        seen.add(i.lower())
        out.append(i)
    return out


class ResourceGraphScanner:
    """
    Read-only discovery of blockers.

    Scoped scans stay inside the resource group; broad scans search the whole
    subscription for anything whose properties mention the target id. A query
    that errors is reported and treated as "nothing found".
    """

    def __init__(self, ctx: RunContext, client: ControlPlaneClient):
        self.ctx = ctx
        self.client = client

    def _query(
        self,
        resource_type: str,
        filter_expression: Optional[RefFilter] = None,
        scope: Optional[str] = None,
    ) -> List[str]:
        try:
            return self.client.list_by_query(resource_type, filter_expression, scope)
        except ControlPlaneError as e:
            print(f"--- scan {resource_type} (scope={scope or 'subscription'}) failed; treating as none: {e}")
            return []

    def read(self, resource_id: str) -> Optional[dict]:
        try:
            return self.client.get_resource(resource_id)
        except ControlPlaneError as e:
            print(f"--- read {resource_id} failed; treating as none: {e}")
            return None

    def in_container(
        self, resource_type: str, filter_expression: Optional[RefFilter] = None
    ) -> List[str]:
        return _dedupe_ids(self._query(resource_type, filter_expression, self.ctx.resource_group))

    def children(self, parent_id: str, child_type: str) -> List[str]:
        return _dedupe_ids(self._query(child_type, None, parent_id))

    def locks(self) -> List[BlockerRecord]:
        return _dedupe(
            BlockerRecord(BlockerKind.LOCK, lock_id, self.ctx.container_id)
            for lock_id in self._query(LOCK_TYPE, None, self.ctx.resource_group)
        )

    def scan_subnet(self, subnet_id: str) -> List[BlockerRecord]:
        subnet = self.read(subnet_id)
        if not subnet:
            return []
        props = subnet.get("properties") or {}
        records: List[BlockerRecord] = []

        for kind, path in SUBNET_ASSOCIATIONS:
            value = props.get(path.split(".", 1)[1])
            if not value:
                continue
            if isinstance(value, dict):
                records.append(BlockerRecord(kind, value.get("id") or subnet_id, subnet_id))
            else:
                for item in value:
                    owner = (item.get("id") if isinstance(item, dict) else None) or subnet_id
                    records.append(BlockerRecord(kind, owner, subnet_id))

        for pe in props.get("privateEndpoints", []) or []:
            if pe.get("id"):
                records.append(BlockerRecord(BlockerKind.PRIVATE_ENDPOINT, pe["id"], subnet_id))

        records.extend(self._links_from(subnet_id, props))
        return _dedupe(records)

    def _links_from(self, subnet_id: str, props: dict) -> List[ServiceAssociationLink]:
        links: List[ServiceAssociationLink] = []
        for sal in props.get("serviceAssociationLinks", []) or []:
            sal_props = sal.get("properties") or {}
            sal_id = sal.get("id") or f"{subnet_id}/serviceAssociationLinks/{sal.get('name', '')}"
            links.append(
                ServiceAssociationLink(
                    kind=BlockerKind.SERVICE_ASSOCIATION_LINK,
                    owner_id=sal_id,
                    target_id=subnet_id,
                    service_name=sal_props.get("linkedResourceType", ""),
                    link=sal_props.get("link", ""),
                )
            )
        return links

    def service_association_links(self, subnet_id: str) -> List[ServiceAssociationLink]:
        subnet = self.read(subnet_id)
        if not subnet:
            return []
        return self._links_from(subnet_id, subnet.get("properties") or {})

    def delegations(self, subnet_id: str) -> List[str]:
        """Service names of the delegations currently on the subnet."""
        subnet = self.read(subnet_id)
        if not subnet:
            return []
        out = []
        for d in (subnet.get("properties") or {}).get("delegations", []) or []:
            name = (d.get("properties") or {}).get("serviceName") or d.get("serviceName")
            if name:
                out.append(name)
        return out

    def _subnets_referencing(self, vnet_ids: List[str], flt: RefFilter) -> List[str]:
        ids: List[str] = []
        for vnet_id in vnet_ids:
            ids.extend(self._query(SUBNET_TYPE, flt, vnet_id))
        return ids

    def scan_security_group(self, nsg_id: str) -> List[BlockerRecord]:
        rg = self.ctx.resource_group
        flt = RefFilter.at(NSG_REF_PATH, nsg_id)
        holders = self._query(NIC_TYPE, flt, rg)
        holders += self._subnets_referencing(self._query(VNET_TYPE, None, rg), flt)
        return _dedupe(
            BlockerRecord(BlockerKind.SECURITY_GROUP_ASSOCIATION, h, nsg_id) for h in holders
        )

    def broad_scan_security_group(self, nsg_id: str) -> List[BlockerRecord]:
        flt = RefFilter.mentions(nsg_id)
        holders = self._query(NIC_TYPE, flt, None)
        holders += self._subnets_referencing(self._query(VNET_TYPE, None, None), flt)
        return _dedupe(
            BlockerRecord(BlockerKind.SECURITY_GROUP_ASSOCIATION, h, nsg_id) for h in holders
        )

    def subnet_consumers(self, subnet_id: str) -> List[BlockerRecord]:
        flt = RefFilter.mentions(subnet_id)
        records: List[BlockerRecord] = []
        for rtype in SUBNET_CONSUMER_TYPES:
            for rid in self._query(rtype, flt, None):
                records.append(BlockerRecord(BlockerKind.HEAVY_COMPUTE, rid, subnet_id))
        return _dedupe(records)

    def peerings(self, vnet_id: str) -> List[BlockerRecord]:
        records: List[BlockerRecord] = []
        vnet = self.read(vnet_id) or {}
        for p in (vnet.get("properties") or {}).get("virtualNetworkPeerings", []) or []:
            if p.get("id"):
                records.append(BlockerRecord(BlockerKind.VNET_PEERING, p["id"], vnet_id))

        remote_flt = RefFilter.at(PEERING_REMOTE_PATH, vnet_id)
        for other_id in self._query(VNET_TYPE, remote_flt, None):
            if same_id(other_id, vnet_id):
                continue
            other = self.read(other_id) or {}
            for p in (other.get("properties") or {}).get("virtualNetworkPeerings", []) or []:
                remote = ((p.get("properties") or {}).get("remoteVirtualNetwork") or {}).get("id")
                if p.get("id") and same_id(remote, vnet_id):
                    records.append(BlockerRecord(BlockerKind.VNET_PEERING, p["id"], vnet_id))
        return _dedupe(records)

    def dns_links(self, vnet_id: str) -> List[BlockerRecord]:
        flt = RefFilter.at(DNS_LINK_VNET_PATH, vnet_id)
        records: List[BlockerRecord] = []
        for zone_id in self._query(PRIVATE_DNS_ZONE_TYPE, None, None):
            for link_id in self._query(PRIVATE_DNS_LINK_TYPE, flt, zone_id):
                records.append(BlockerRecord(BlockerKind.PRIVATE_DNS_LINK, link_id, vnet_id))
        return _dedupe(records)

    def owner_chain(self, chain: OwnerChain, link_id: str) -> List[str]:
        """
        Resources that have to go before `link_id`, innermost first, ending
        with `link_id` itself.
        """
        known = [link_id]
        layers: List[List[str]] = []
        for step in reversed(chain.steps[:-1]):
            found = [
                rid
                for rid in self._chain_layer(step, known)
                if not any(same_id(rid, k) for k in known)
            ]
            layers.append(found)
            known.extend(found)
        ordered = [rid for layer in reversed(layers) for rid in layer]
        return _dedupe_ids([*ordered, link_id])

    def _chain_layer(self, step: ChainStep, known: List[str]) -> List[str]:
        targets = [name_of(k) for k in known] if step.by_name else known
        if step.ref_path:
            flt = RefFilter.at(step.ref_path, *targets)
        else:
            flt = RefFilter.mentions(*targets)
        if step.parent_type is None:
            return self._query(step.resource_type, flt, None)
        found: List[str] = []
        for parent_id in self._query(step.parent_type, None, None):
            found.extend(self._query(step.resource_type, flt, parent_id))
        return found
