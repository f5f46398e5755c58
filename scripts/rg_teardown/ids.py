from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

RG_FROM_ID_RE = re.compile(r"/resourceGroups/([^/]+)", re.IGNORECASE)
SUB_FROM_ID_RE = re.compile(r"^/subscriptions/([^/]+)", re.IGNORECASE)

RESOURCE_GROUP_TYPE = "Microsoft.Resources/resourceGroups"


@dataclass(frozen=True)
class ResourceRef:
    id: str
    subscription_id: Optional[str]
    resource_group: Optional[str]
    resource_type: str
    name: str


def _segments(resource_id: str) -> List[str]:
    return [s for s in resource_id.strip().split("/") if s]


def parse_resource_id(resource_id: str) -> ResourceRef:
    """
    Split an ARM id into its parts. Extension resources (locks on a VNet, for
    instance) are typed by the last `providers` segment.
    """
    segs = _segments(resource_id)
    sub = SUB_FROM_ID_RE.search(resource_id)
    rg = RG_FROM_ID_RE.search(resource_id)

    lowered = [s.lower() for s in segs]
    if "providers" not in lowered:
        return ResourceRef(
            id=resource_id,
            subscription_id=sub.group(1) if sub else None,
            resource_group=rg.group(1) if rg else None,
            resource_type=RESOURCE_GROUP_TYPE,
            name=segs[-1] if segs else "",
        )

    idx = len(lowered) - 1 - lowered[::-1].index("providers")
    tail = segs[idx + 1 :]
    namespace = tail[0] if tail else ""
    pairs = tail[1:]
    types = [pairs[i] for i in range(0, len(pairs), 2)]
    name = pairs[-1] if len(pairs) % 2 == 0 and pairs else ""
    return ResourceRef(
        id=resource_id,
        subscription_id=sub.group(1) if sub else None,
        resource_group=rg.group(1) if rg else None,
        resource_type="/".join([namespace, *types]),
        name=name,
    )


def resource_type_of(resource_id: str) -> str:
    return parse_resource_id(resource_id).resource_type


def name_of(resource_id: str) -> str:
    return _segments(resource_id)[-1] if resource_id else ""


def parent_of(resource_id: str) -> str:
    """`/a/b/subnets/x` -> `/a/b`; child types only."""
    segs = _segments(resource_id)
    return "/" + "/".join(segs[:-2]) if len(segs) > 2 else ""


def same_id(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.rstrip("/").lower() == b.rstrip("/").lower()


def same_type(a: str, b: str) -> bool:
    return a.lower() == b.lower()
