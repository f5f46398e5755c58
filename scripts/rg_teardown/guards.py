from __future__ import annotations

import sys
from typing import Optional

from .azcli import AzCli, AzCliError
from .model import TeardownOutcome


def _fail(message: str) -> None:
    print(f"ERROR: {message}", file=sys.stderr)
    raise SystemExit(TeardownOutcome.VALIDATION_FAILED.exit_code)


def subscription_guard(az: AzCli, subscription: Optional[str]) -> str:
    """Bind the az session to `subscription` and return its id."""
    try:
        if subscription:
            az.text(["account", "set", "--subscription", subscription])
        sub_id = az.text(["account", "show", "--query", "id"])
        user = az.text(["account", "show", "--query", "user.name"])
    except AzCliError as e:
        _fail(str(e))
    if not sub_id:
        _fail("no active subscription; run `az login` first")
    print(f"--- identity={user} subscription={sub_id}")
    return sub_id


def confirm_delete(resource_group: str) -> bool:
    try:
        answer = input(f"About to DELETE resource group '{resource_group}'. Are you sure? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")
