from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ContainerState(Enum):
    UNKNOWN = "Unknown"
    EXISTS = "Exists"
    DELETING = "Deleting"
    DELETED = "Deleted"
    ROLLED_BACK = "RolledBack"


@dataclass(frozen=True)
class ContainerStatus:
    state: ContainerState
    lifecycle: Optional[str] = None  # raw provisioningState, e.g. Succeeded


class BlockerKind(Enum):
    LOCK = "Lock"
    SECURITY_GROUP_ASSOCIATION = "SecurityGroupAssociation"
    PRIVATE_ENDPOINT = "PrivateEndpoint"
    SERVICE_ASSOCIATION_LINK = "ServiceAssociationLink"
    SUBNET_DELEGATION = "SubnetDelegation"
    SERVICE_ENDPOINT_BINDING = "ServiceEndpointBinding"
    ROUTE_TABLE_ASSOCIATION = "RouteTableAssociation"
    NAT_GATEWAY_ASSOCIATION = "NatGatewayAssociation"
    VNET_PEERING = "VNetPeering"
    PRIVATE_DNS_LINK = "PrivateDnsLink"
    HEAVY_COMPUTE = "HeavyCompute"


@dataclass(frozen=True)
class BlockerRecord:
    kind: BlockerKind
    owner_id: str
    target_id: str


@dataclass(frozen=True)
class ServiceAssociationLink(BlockerRecord):
    service_name: str = ""
    link: str = ""


class Outcome(Enum):
    SUCCESS = "success"
    NOT_FOUND = "not-found"
    TRANSIENT = "transient"
    BLOCKED = "blocked"
    PERMISSION = "permission"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class CallResult:
    outcome: Outcome
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.NOT_FOUND)


@dataclass(frozen=True)
class Patch:
    """Property edits for a generic resource update (dotted ARM paths)."""

    remove: tuple = ()
    assign: tuple = ()  # ((path, value), ...)
    append: tuple = ()  # ((path, json_value), ...)


@dataclass(frozen=True)
class DeletionAttempt:
    target_id: str
    attempts: int
    backoff_elapsed: float
    outcome: Outcome
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.NOT_FOUND)


@dataclass
class PollState:
    started_at: float
    elapsed: float = 0.0
    last: Optional[ContainerStatus] = None
    saw_deleting: bool = False


class Phase(Enum):
    VERIFYING = "Verifying"
    CLEARING_LOCKS = "ClearingLocks"
    PROCESSING_SECURITY_GROUPS = "ProcessingSecurityGroups"
    BREAKING_NETWORK_BLOCKERS = "BreakingNetworkBlockers"
    FINAL_LOCK_SWEEP = "FinalLockSweep"
    DELETING = "Deleting"
    POLLING = "Polling"


class TeardownOutcome(Enum):
    DELETED = ("Deleted", 0)
    DELETE_ISSUED = ("DeleteIssued", 0)
    PLANNED = ("Planned", 0)
    ABORTED = ("Aborted", 1)
    VALIDATION_FAILED = ("ValidationFailed", 2)
    DELETE_REJECTED = ("DeleteRejected", 3)
    TIMED_OUT = ("TimedOut", 4)
    ROLLED_BACK = ("RolledBackDetected", 5)
    CANCELLED = ("Cancelled", 130)

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def exit_code(self) -> int:
        return self.value[1]


@dataclass(frozen=True)
class TeardownOptions:
    force_no_confirm: bool = False
    synchronous_wait: bool = True
    timeout: float = 30 * 60
    poll_interval: float = 15
    allow_protocol_level_fallback: bool = False
    retry_attempts: int = 5
    retry_base_delay: float = 5
    retry_max_delay: float = 60
    subnet_passes: int = 4
    pass_wait_unit: float = 10
    sal_wait_timeout: float = 180
    sal_poll_interval: float = 10


@dataclass(frozen=True)
class RunContext:
    mode: str  # plan|apply|verify
    subscription_id: str
    resource_group: str
    options: TeardownOptions = field(default_factory=TeardownOptions)

    @property
    def container_id(self) -> str:
        return f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"

    @property
    def applying(self) -> bool:
        return self.mode == "apply"


@dataclass(frozen=True)
class ActionRecord:
    desc: str
    mode: str  # plan|apply
    ok: bool
    outcome: Optional[Outcome] = None
    attempts: int = 0
    reason: str = ""


@dataclass
class Summary:
    phases: List[Phase] = field(default_factory=list)
    deleted_subnets: List[str] = field(default_factory=list)
    planned_subnets: List[str] = field(default_factory=list)
    deferred_subnets: List[str] = field(default_factory=list)
    blocked_security_groups: List[str] = field(default_factory=list)
    final_existing: List[str] = field(default_factory=list)
    # Still listed but already in a Deleting provisioning state.
    final_eventual: List[str] = field(default_factory=list)
    final_unknown: List[str] = field(default_factory=list)
    final_stale: List[str] = field(default_factory=list)
    actions: List[ActionRecord] = field(default_factory=list)

    def add_action(self, rec: ActionRecord) -> None:
        self.actions.append(rec)

    def failed_actions(self) -> List[ActionRecord]:
        return [a for a in self.actions if not a.ok and a.mode == "apply"]

    def retried_actions(self) -> List[ActionRecord]:
        return [a for a in self.actions if a.attempts > 1]

    @property
    def partial(self) -> bool:
        return bool(
            self.failed_actions() or self.deferred_subnets or self.blocked_security_groups
        )


@dataclass
class TeardownResult:
    outcome: TeardownOutcome
    summary: Summary
    final_status: Optional[ContainerStatus] = None
