"""
Static knowledge of what blocks a resource group delete and the order in which
blockers have to be removed.

Container-level order:
  1. resource locks
  2. heavy compute anchored to subnets (it re-creates subnet associations)
  3. per-VNet, per-subnet blockers (see subnets.py)
  4. VNet peerings (local and remote)
  5. private DNS zone links that reference the VNet
  6. the VNet itself
  7. a final lock sweep (platform operations can re-apply inherited locks)
  8. the resource group delete
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .model import BlockerKind

LOCK_TYPE = "Microsoft.Authorization/locks"
GENERIC_RESOURCE_TYPE = "Microsoft.Resources/resources"
NSG_TYPE = "Microsoft.Network/networkSecurityGroups"
NIC_TYPE = "Microsoft.Network/networkInterfaces"
VNET_TYPE = "Microsoft.Network/virtualNetworks"
SUBNET_TYPE = "Microsoft.Network/virtualNetworks/subnets"
PRIVATE_DNS_ZONE_TYPE = "Microsoft.Network/privateDnsZones"
PRIVATE_DNS_LINK_TYPE = "Microsoft.Network/privateDnsZones/virtualNetworkLinks"
MANAGED_ENVIRONMENT_TYPE = "Microsoft.App/managedEnvironments"
NETWORK_CONNECTION_TYPE = "Microsoft.DevCenter/networkConnections"
MANAGED_CLUSTER_TYPE = "Microsoft.ContainerService/managedClusters"

# Deleted in this order, scoped to the resource group being torn down.
HEAVY_COMPUTE_TYPES: Tuple[str, ...] = (
    "Microsoft.App/containerApps",
    "Microsoft.App/jobs",
    MANAGED_ENVIRONMENT_TYPE,
    MANAGED_CLUSTER_TYPE,
    "Microsoft.Network/applicationGateways",
    "Microsoft.Network/azureFirewalls",
    "Microsoft.Network/bastionHosts",
    "Microsoft.Compute/virtualMachineScaleSets",
    "Microsoft.Compute/virtualMachines",
    NIC_TYPE,
)

# Platform objects that bind to a subnet from anywhere in the subscription.
SUBNET_CONSUMER_TYPES: Tuple[str, ...] = (
    MANAGED_ENVIRONMENT_TYPE,
    NETWORK_CONNECTION_TYPE,
)

# Subnet association properties, removed independently of each other.
SUBNET_ASSOCIATIONS: Tuple[Tuple[BlockerKind, str], ...] = (
    (BlockerKind.SECURITY_GROUP_ASSOCIATION, "properties.networkSecurityGroup"),
    (BlockerKind.ROUTE_TABLE_ASSOCIATION, "properties.routeTable"),
    (BlockerKind.NAT_GATEWAY_ASSOCIATION, "properties.natGateway"),
    (BlockerKind.SUBNET_DELEGATION, "properties.delegations"),
    (BlockerKind.SERVICE_ENDPOINT_BINDING, "properties.serviceEndpoints"),
)

# A subnet delete is rejected while any of these still reference it.
SUBNET_DELETE_BLOCKERS = frozenset(
    {BlockerKind.SERVICE_ASSOCIATION_LINK, BlockerKind.SUBNET_DELEGATION}
)

# The link resource type has had breaking revisions.
SAL_API_VERSIONS: Tuple[str, ...] = ("2023-09-01", "2020-11-01")
SAL_RAW_API_VERSION = "2023-09-01"


@dataclass(frozen=True)
class ChainStep:
    """One layer of an owner chain.

    Without `ref_path` a resource belongs to the layer when its properties
    mention a resource already in the chain; with it, the value at that path
    has to equal one (or, with `by_name`, the name of one). Child types are
    listed under every `parent_type` resource in the subscription.
    """

    resource_type: str
    ref_path: Optional[str] = None
    parent_type: Optional[str] = None
    by_name: bool = False


@dataclass(frozen=True)
class OwnerChain:
    """Resources to delete before a link can go, innermost first.

    The last step is the type the link points at; earlier steps are discovered
    walking outward from it.
    """

    service_prefix: str
    steps: Tuple[ChainStep, ...]

    @property
    def types(self) -> Tuple[str, ...]:
        return tuple(s.resource_type for s in self.steps)


OWNER_CHAINS: Tuple[OwnerChain, ...] = (
    OwnerChain(
        "Microsoft.App/environments",
        (
            ChainStep("Microsoft.App/containerApps"),
            ChainStep("Microsoft.App/jobs"),
            ChainStep(MANAGED_ENVIRONMENT_TYPE),
        ),
    ),
    # dev box pool -> dev center attachment -> network connection; the dev
    # center itself stays, it holds no subnet reference once detached
    OwnerChain(
        "Microsoft.DevCenter",
        (
            ChainStep(
                "Microsoft.DevCenter/projects/pools",
                "properties.networkConnectionName",
                parent_type="Microsoft.DevCenter/projects",
                by_name=True,
            ),
            ChainStep(
                "Microsoft.DevCenter/devcenters/attachednetworks",
                "properties.networkConnectionId",
                parent_type="Microsoft.DevCenter/devcenters",
            ),
            ChainStep(NETWORK_CONNECTION_TYPE),
        ),
    ),
)

# Some links can only be removed while the subnet still carries the delegation.
DELEGATION_PRECONDITIONS: Dict[str, str] = {
    "microsoft.app/environments": "Microsoft.App/environments",
    "microsoft.web/serverfarms": "Microsoft.Web/serverFarms",
}

# ARM api-versions for reads; the longest matching type prefix wins.
API_VERSIONS: Dict[str, str] = {
    "microsoft.resources": "2021-04-01",
    "microsoft.authorization/locks": "2016-09-01",
    "microsoft.network": "2023-09-01",
    "microsoft.network/privatednszones": "2020-06-01",
    "microsoft.app": "2024-03-01",
    "microsoft.compute": "2024-03-01",
    "microsoft.containerservice": "2024-02-01",
    "microsoft.web": "2023-01-01",
    "microsoft.devcenter": "2024-02-01",
}
DEFAULT_API_VERSION = "2021-04-01"


def api_version_for(resource_type: str) -> str:
    t = resource_type.lower()
    best = None
    for prefix in API_VERSIONS:
        if t == prefix or t.startswith(prefix + "/"):
            if best is None or len(prefix) > len(best):
                best = prefix
    return API_VERSIONS[best] if best else DEFAULT_API_VERSION


def owner_chain_for(service_name: str) -> Optional[OwnerChain]:
    s = (service_name or "").lower()
    for chain in OWNER_CHAINS:
        if s.startswith(chain.service_prefix.lower()):
            return chain
    return None


def delegation_for(service_name: str) -> Optional[str]:
    return DELEGATION_PRECONDITIONS.get((service_name or "").lower())
