from __future__ import annotations

import argparse
import os
import signal
import sys
from typing import List, Optional

from .azcli import AZ_ENV_DEFAULTS, AzCli
from .control_plane import AzControlPlane, ControlPlaneClient
from .guards import confirm_delete, subscription_guard
from .ids import name_of
from .model import (
    ContainerState,
    ContainerStatus,
    RunContext,
    Summary,
    TeardownOptions,
    TeardownOutcome,
)
from .orchestrator import teardown
from .retry import Clock
from .verify import list_remaining, verify_resource_ids

DEFAULTS = TeardownOptions()


def _print_summary(
    ctx: RunContext,
    summary: Summary,
    outcome: Optional[TeardownOutcome] = None,
    status: Optional[ContainerStatus] = None,
) -> None:
    print("### Summary")
    print(f"- **mode**: {ctx.mode}")
    print(f"- **resource_group**: {ctx.resource_group}")
    print(f"- **subscription**: {ctx.subscription_id}")
    if outcome is not None:
        print(f"- **outcome**: {outcome.label} (exit {outcome.exit_code})")
    if status is not None:
        print(f"- **final_state**: {status.state.value}")
    print(f"- **phases**: {', '.join(p.value for p in summary.phases) or '(none)'}")
    print(f"- **deleted_subnets_count**: {len(summary.deleted_subnets)}")
    if summary.planned_subnets:
        print(f"- **planned_subnet_deletes**: {len(summary.planned_subnets)}")
    print(f"- **deferred_subnets_count**: {len(summary.deferred_subnets)}")
    print(f"- **blocked_nsgs_count**: {len(summary.blocked_security_groups)}")
    print(f"- **remaining_exists_count**: {len(summary.final_existing)}")
    print(f"- **remaining_eventual_count**: {len(summary.final_eventual)}")
    print(f"- **remaining_unknown_count**: {len(summary.final_unknown)}")
    print(f"- **remaining_stale_count**: {len(summary.final_stale)}")

    planned = [a for a in summary.actions if a.mode == "plan"]
    applied = [a for a in summary.actions if a.mode == "apply"]
    failed = summary.failed_actions()
    print(f"- **actions_planned**: {len(planned)}")
    print(f"- **actions_executed**: {len(applied)}")
    print(f"- **actions_retried**: {len(summary.retried_actions())}")
    print(f"- **actions_failed**: {len(failed)}")
    print(f"- **partial**: {'yes' if summary.partial else 'no'}")

    if failed:
        print("")
        print("### Failed actions (apply)")
        for a in failed[:12]:
            kind = a.outcome.value if a.outcome else "?"
            print(f"- **{a.desc}**: {kind} after {a.attempts} attempt(s) {a.reason}")

    if summary.deferred_subnets or summary.blocked_security_groups:
        print("")
        print("### Left in place")
        for sid in summary.deferred_subnets:
            print(f"- subnet **{name_of(sid)}**: {sid}")
        for nsg in summary.blocked_security_groups:
            print(f"- NSG **{name_of(nsg)}**: {nsg}")

    print("")
    print("### Remaining resources (verification-aware)")
    if summary.final_existing:
        print("- **still exists**:")
        for rid in summary.final_existing:
            print(f"  - {rid}")
    if summary.final_eventual:
        print("- **eventual (deleting / will disappear with time)**:")
        for rid in summary.final_eventual:
            print(f"  - {rid}")
    if summary.final_unknown:
        print("- **unknown (could not verify)**:")
        for rid in summary.final_unknown:
            print(f"  - {rid}")
    if summary.final_stale:
        print("- **stale (verified not found)**:")
        for rid in summary.final_stale:
            print(f"  - {rid}")
    if not (
        summary.final_existing
        or summary.final_eventual
        or summary.final_unknown
        or summary.final_stale
    ):
        print("- (none)")


def verify_container(ctx: RunContext, client: ControlPlaneClient) -> int:
    """Read-only check: 0 when the resource group is gone, 1 otherwise."""
    summary = Summary()
    status = client.get_container_state(ctx.resource_group)
    if status.state is ContainerState.DELETED:
        _print_summary(ctx, summary, TeardownOutcome.DELETED, status)
        return 0

    vr = verify_resource_ids(client, list_remaining(ctx, client))
    summary.final_existing = vr.existing
    summary.final_stale = vr.stale
    summary.final_unknown = vr.unknown
    summary.final_eventual = vr.eventual
    print(f"--- resource group {ctx.resource_group}: state={status.lifecycle or status.state.value}")
    _print_summary(ctx, summary, status=status)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rg-teardown",
        add_help=True,
        description=(
            "Forced Azure resource group teardown: clears locks, NSG associations, "
            "subnet blockers and peerings, then deletes the group and waits for it."
        ),
    )
    parser.add_argument("mode", choices=["plan", "apply", "verify"])
    parser.add_argument("resource_group", help="name of the resource group to delete")
    parser.add_argument(
        "--subscription",
        default=os.environ.get("AZURE_SUBSCRIPTION_ID"),
        help="subscription id or name (default: $AZURE_SUBSCRIPTION_ID, else the az default)",
    )
    parser.add_argument("--yes", action="store_true", help="do not ask for confirmation")
    parser.add_argument(
        "--no-wait", action="store_true", help="return right after the delete is issued"
    )
    parser.add_argument("--timeout", type=float, default=DEFAULTS.timeout)
    parser.add_argument("--poll-interval", type=float, default=DEFAULTS.poll_interval)
    parser.add_argument(
        "--allow-raw-delete",
        action="store_true",
        help="fall back to a raw REST DELETE for service association links",
    )
    return parser


def main(argv: List[str], *, client: Optional[ControlPlaneClient] = None) -> int:
    args = build_parser().parse_args(argv[1:])

    for k, v in AZ_ENV_DEFAULTS.items():
        os.environ.setdefault(k, v)

    az = AzCli()
    sub_id = subscription_guard(az, args.subscription)

    ctx = RunContext(
        mode=args.mode,
        subscription_id=sub_id,
        resource_group=args.resource_group,
        options=TeardownOptions(
            force_no_confirm=args.yes,
            synchronous_wait=not args.no_wait,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            allow_protocol_level_fallback=args.allow_raw_delete,
        ),
    )
    if client is None:
        client = AzControlPlane(az, sub_id)

    if ctx.mode == "verify":
        return verify_container(ctx, client)

    clock = Clock()

    def _on_sigint(signum, frame):
        print("\n!! interrupt received; stopping at the next wait", file=sys.stderr)
        clock.cancel.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        result = teardown(ctx, client, clock=clock, confirm=confirm_delete)
    finally:
        signal.signal(signal.SIGINT, previous)

    _print_summary(ctx, result.summary, result.outcome, result.final_status)
    return result.outcome.exit_code


def run() -> int:
    return main(sys.argv)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
