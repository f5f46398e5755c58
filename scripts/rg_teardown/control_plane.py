from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple

from .azcli import AzCli, AzCliError
from .catalog import GENERIC_RESOURCE_TYPE, api_version_for
from .ids import resource_type_of, same_type
from .model import CallResult, ContainerState, ContainerStatus, Outcome, Patch

ARM_ENDPOINT = "https://management.azure.com"

NOT_FOUND_MARKERS = (
    "notfound",
    "could not be found",
    "was not found",
    "does not exist",
)
PERMISSION_MARKERS = (
    "authorizationfailed",
    "requestdisallowedbypolicy",
    "does not have authorization",
    "insufficient privileges",
    "forbidden",
)
BLOCKED_MARKERS = (
    "inuse",
    "in use by",
    "cannotbedeleted",
    "cannot be deleted",
    "scopelocked",
    "dependencyviolation",
    "is referenced by",
    "serviceassociationlink",
)
TRANSIENT_MARKERS = (
    "toomanyrequests",
    "too many requests",
    "retryable",
    "anotheroperationinprogress",
    "operation is in progress",
    "internalservererror",
    "serviceunavailable",
    "gatewaytimeout",
    "timed out",
    "temporarily",
    "connection reset",
    "conflict",
)


def classify_failure(stderr: str) -> Outcome:
    """Map az stderr text onto the failure taxonomy; unknown text is permanent."""
    err = (stderr or "").lower()
    for markers, outcome in (
        (PERMISSION_MARKERS, Outcome.PERMISSION),
        (NOT_FOUND_MARKERS, Outcome.NOT_FOUND),
        (BLOCKED_MARKERS, Outcome.BLOCKED),
        (TRANSIENT_MARKERS, Outcome.TRANSIENT),
    ):
        if any(m in err for m in markers):
            return outcome
    return Outcome.PERMANENT


class ControlPlaneError(RuntimeError):
    def __init__(self, message: str, outcome: Outcome = Outcome.PERMANENT):
        super().__init__(message)
        self.outcome = outcome


def _walk(node: Any, parts: Sequence[str]) -> Iterator[Any]:
    if isinstance(node, list):
        for item in node:
            yield from _walk(item, parts)
        return
    if not parts:
        yield node
        return
    if isinstance(node, Mapping) and parts[0] in node:
        yield from _walk(node[parts[0]], parts[1:])


@dataclass(frozen=True)
class RefFilter:
    """
    Match resources that reference any of `targets`.

    With a `path` (dotted, lists are traversed), the value at that path must
    equal a target. Without one, the resource's properties must mention a
    target verbatim.
    """

    targets: Tuple[str, ...]
    path: Optional[str] = None

    @classmethod
    def at(cls, path: str, *targets: str) -> "RefFilter":
        return cls(targets=tuple(targets), path=path)

    @classmethod
    def mentions(cls, *targets: str) -> "RefFilter":
        return cls(targets=tuple(targets))

    def matches(self, resource: Mapping[str, Any]) -> bool:
        wanted = {t.rstrip("/").lower() for t in self.targets if t}
        if not wanted:
            return False
        if self.path is None:
            blob = json.dumps(resource.get("properties") or {}).lower()
            return any(f'"{t}"' in blob or f'"{t}/' in blob for t in wanted)
        for value in _walk(resource, self.path.split(".")):
            if isinstance(value, str) and value.rstrip("/").lower() in wanted:
                return True
        return False


class ControlPlaneClient(ABC):
    @abstractmethod
    def list_by_query(
        self,
        resource_type: str,
        filter_expression: Optional[RefFilter] = None,
        scope: Optional[str] = None,
    ) -> List[str]:
        """Ids of `resource_type` in `scope` (None: subscription, name: resource
        group, id: parent resource) that pass `filter_expression`."""

    @abstractmethod
    def get_resource(self, resource_id: str) -> Optional[dict]:
        """The resource body, or None when it does not exist."""

    @abstractmethod
    def delete_resource(self, resource_id: str, api_version: Optional[str] = None) -> CallResult:
        ...

    @abstractmethod
    def delete_resource_raw(self, resource_id: str, api_version: str) -> CallResult:
        """Protocol-level delete that skips the CLI's own checks."""

    @abstractmethod
    def update_resource(self, resource_id: str, patch: Patch) -> CallResult:
        ...

    @abstractmethod
    def get_container_state(self, name: str) -> ContainerStatus:
        ...

    @abstractmethod
    def delete_container(self, name: str) -> CallResult:
        """Start an asynchronous resource group delete."""


class AzControlPlane(ControlPlaneClient):
    def __init__(self, az: AzCli, subscription_id: str):
        self.az = az
        self.subscription_id = subscription_id

    def _url(self, path: str, api_version: str) -> str:
        sep = "&" if "?" in path else "?"
        return f"{ARM_ENDPOINT}{path}{sep}api-version={api_version}"

    def _collection_path(self, resource_type: str, scope: Optional[str]) -> str:
        sub = f"/subscriptions/{self.subscription_id}"
        if same_type(resource_type, GENERIC_RESOURCE_TYPE):
            if scope is None:
                return f"{sub}/resources"
            return f"{sub}/resourceGroups/{scope}/resources"
        if scope is None:
            return f"{sub}/providers/{resource_type}"
        if scope.startswith("/"):
            # child collection under a parent resource id
            return f"{scope.rstrip('/')}/{resource_type.split('/')[-1]}"
        return f"{sub}/resourceGroups/{scope}/providers/{resource_type}"

    def _rest_get(self, url: str) -> Any:
        try:
            return self.az.json(["rest", "--method", "get", "--url", url])
        except AzCliError as e:
            raise ControlPlaneError(str(e), classify_failure(e.stderr)) from e

    def _paged(self, url: str) -> List[dict]:
        items: List[dict] = []
        next_url: Optional[str] = url
        while next_url:
            page = self._rest_get(next_url) or {}
            items.extend(page.get("value", []) or [])
            next_url = page.get("nextLink")
        return items

    def list_by_query(
        self,
        resource_type: str,
        filter_expression: Optional[RefFilter] = None,
        scope: Optional[str] = None,
    ) -> List[str]:
        url = self._url(
            self._collection_path(resource_type, scope), api_version_for(resource_type)
        )
        ids: List[str] = []
        for item in self._paged(url):
            rid = item.get("id")
            if not rid:
                continue
            if filter_expression is not None and not filter_expression.matches(item):
                continue
            ids.append(rid)
        return ids

    def get_resource(self, resource_id: str) -> Optional[dict]:
        url = self._url(resource_id, api_version_for(resource_type_of(resource_id)))
        try:
            return self.az.json(["rest", "--method", "get", "--url", url]) or {}
        except AzCliError as e:
            outcome = classify_failure(e.stderr)
            if outcome is Outcome.NOT_FOUND:
                return None
            raise ControlPlaneError(str(e), outcome) from e

    def _call(self, args: List[str]) -> CallResult:
        res = self.az.run(args)
        if res.rc == 0:
            return CallResult(Outcome.SUCCESS)
        reason = res.stderr.splitlines()[-1] if res.stderr else f"rc={res.rc}"
        return CallResult(classify_failure(res.stderr), reason)

    def delete_resource(self, resource_id: str, api_version: Optional[str] = None) -> CallResult:
        args = ["resource", "delete", "--ids", resource_id]
        if api_version:
            args += ["--api-version", api_version]
        return self._call(args)

    def delete_resource_raw(self, resource_id: str, api_version: str) -> CallResult:
        return self._call(
            ["rest", "--method", "delete", "--url", self._url(resource_id, api_version)]
        )

    def update_resource(self, resource_id: str, patch: Patch) -> CallResult:
        args = ["resource", "update", "--ids", resource_id]
        for path in patch.remove:
            args += ["--remove", path]
        for path, value in patch.assign:
            args += ["--set", f"{path}={value}"]
        for path, value in patch.append:
            args += ["--add", path, value]
        return self._call(args)

    def get_container_state(self, name: str) -> ContainerStatus:
        res = self.az.run(
            [
                "group",
                "show",
                "--name",
                name,
                "--subscription",
                self.subscription_id,
                "--output",
                "json",
            ]
        )
        if res.rc != 0:
            if classify_failure(res.stderr) is Outcome.NOT_FOUND:
                return ContainerStatus(ContainerState.DELETED)
            return ContainerStatus(ContainerState.UNKNOWN)
        try:
            payload = json.loads(res.stdout) if res.stdout else {}
        except ValueError:
            return ContainerStatus(ContainerState.UNKNOWN)
        lifecycle = (payload.get("properties") or {}).get("provisioningState")
        if lifecycle == "Deleting":
            return ContainerStatus(ContainerState.DELETING, lifecycle)
        return ContainerStatus(ContainerState.EXISTS, lifecycle)

    def delete_container(self, name: str) -> CallResult:
        return self._call(
            [
                "group",
                "delete",
                "--name",
                name,
                "--subscription",
                self.subscription_id,
                "--yes",
                "--no-wait",
            ]
        )
