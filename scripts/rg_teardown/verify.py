from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .catalog import GENERIC_RESOURCE_TYPE
from .control_plane import ControlPlaneClient, ControlPlaneError
from .model import RunContext


@dataclass(frozen=True)
class VerificationResult:
    existing: List[str]
    stale: List[str]
    unknown: List[str]
    eventual: List[str]


def list_remaining(ctx: RunContext, client: ControlPlaneClient) -> List[str]:
    try:
        return client.list_by_query(GENERIC_RESOURCE_TYPE, None, ctx.resource_group)
    except ControlPlaneError as e:
        print(f"--- could not list remaining resources: {e}")
        return []


def verify_resource_ids(client: ControlPlaneClient, resource_ids: List[str]) -> VerificationResult:
    existing: List[str] = []
    stale: List[str] = []
    unknown: List[str] = []
    eventual: List[str] = []

    for rid in resource_ids:
        try:
            body = client.get_resource(rid)
        except ControlPlaneError:
            unknown.append(rid)
            continue
        if body is None:
            stale.append(rid)
            continue
        state = (body.get("properties") or {}).get("provisioningState") or ""
        # A resource that is already deleting will disappear with time.
        if state.lower() == "deleting":
            eventual.append(rid)
        else:
            existing.append(rid)

    return VerificationResult(existing=existing, stale=stale, unknown=unknown, eventual=eventual)
