from __future__ import annotations

from typing import Callable, Optional

from .control_plane import ControlPlaneClient
from .model import (
    ActionRecord,
    CallResult,
    DeletionAttempt,
    Outcome,
    Patch,
    RunContext,
    Summary,
)
from .retry import Clock, RetryExecutor


class Doer:
    """Every mutating call goes through here: plan/apply gate, retry, ledger."""

    def __init__(
        self,
        ctx: RunContext,
        client: ControlPlaneClient,
        summary: Summary,
        retry: RetryExecutor,
    ):
        self.ctx = ctx
        self.client = client
        self.summary = summary
        self.retry = retry

    @property
    def clock(self) -> Clock:
        return self.retry.clock

    def plan(self, desc: str) -> None:
        print(f"+ (plan) {desc}")
        self.summary.add_action(ActionRecord(desc=desc, mode="plan", ok=True))

    def _execute(
        self, desc: str, target_id: str, call: Callable[[], CallResult]
    ) -> DeletionAttempt:
        if not self.ctx.applying:
            self.plan(desc)
            return DeletionAttempt(target_id, 0, 0.0, Outcome.SUCCESS, "planned")

        print(f"+ {desc}")
        attempt = self.retry.execute(target_id, call)
        if not attempt.ok:
            print(f"!! {desc}: {attempt.outcome.value} {attempt.reason}")
        self.summary.add_action(
            ActionRecord(
                desc=desc,
                mode="apply",
                ok=attempt.ok,
                outcome=attempt.outcome,
                attempts=attempt.attempts,
                reason=attempt.reason,
            )
        )
        return attempt

    def delete(
        self, desc: str, resource_id: str, *, api_version: Optional[str] = None
    ) -> DeletionAttempt:
        return self._execute(
            desc,
            resource_id,
            lambda: self.client.delete_resource(resource_id, api_version),
        )

    def delete_raw(self, desc: str, resource_id: str, api_version: str) -> DeletionAttempt:
        return self._execute(
            desc,
            resource_id,
            lambda: self.client.delete_resource_raw(resource_id, api_version),
        )

    def update(self, desc: str, resource_id: str, patch: Patch) -> DeletionAttempt:
        return self._execute(
            desc, resource_id, lambda: self.client.update_resource(resource_id, patch)
        )

    def delete_container(self) -> DeletionAttempt:
        rg = self.ctx.resource_group
        return self._execute(
            f"group delete {rg} (no-wait)",
            self.ctx.container_id,
            lambda: self.client.delete_container(rg),
        )
