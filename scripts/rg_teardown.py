#!/usr/bin/env python3
"""
Resource group teardown (Azure)

Deletes an Azure resource group that a plain `az group delete` cannot remove:
management locks, NSG associations reaching in from other groups, service
association links and delegations on subnets, peerings and private DNS links
are cleared in dependency order before the group delete is issued and watched
until it finishes, times out or is rolled back.

Usage:
  ./scripts/rg_teardown.py plan   my-rg --subscription 00000000-0000-0000-0000-000000000000
  ./scripts/rg_teardown.py apply  my-rg --yes
  ./scripts/rg_teardown.py verify my-rg
"""

from __future__ import annotations

import sys
from pathlib import Path


def _bootstrap_import_path() -> None:
    script_dir = Path(__file__).resolve().parent
    if str(script_dir) not in sys.path:
        sys.path.insert(0, str(script_dir))


def main() -> int:
    _bootstrap_import_path()
    from rg_teardown.main import main as impl_main  # type: ignore

    return impl_main(sys.argv)


if __name__ == "__main__":
    raise SystemExit(main())
