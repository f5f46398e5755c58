from __future__ import annotations

import json
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

# Keep child az processes quiet and machine-readable.
AZ_ENV_DEFAULTS = {
    "AZURE_CORE_ONLY_SHOW_ERRORS": "true",
    "AZURE_CORE_NO_COLOR": "true",
    "AZURE_CORE_COLLECT_TELEMETRY": "false",
}


class AzCliError(RuntimeError):
    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


@dataclass(frozen=True)
class AzResult:
    rc: int
    stdout: str
    stderr: str


def _fmt(args: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in args)


class AzCli:
    def __init__(self, *, env: Mapping[str, str] | None = None):
        self._env = dict(env) if env else {}

    def _merged_env(self) -> Mapping[str, str]:
        merged = os.environ.copy()
        for k, v in AZ_ENV_DEFAULTS.items():
            merged.setdefault(k, v)
        merged.update(self._env)
        return merged

    def _exec(self, cmd: Sequence[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=self._merged_env(),
        )

    def json(self, args: Sequence[str]) -> Any:
        p = self._exec(["az", *args, "--output", "json"])
        if p.returncode != 0:
            raise AzCliError(f"az {_fmt(args)} failed: {p.stderr.strip()}", p.stderr.strip())
        out = p.stdout.strip()
        return None if not out else json.loads(out)

    def text(self, args: Sequence[str]) -> str:
        p = self._exec(["az", *args, "--output", "tsv"])
        if p.returncode != 0:
            raise AzCliError(f"az {_fmt(args)} failed: {p.stderr.strip()}", p.stderr.strip())
        return p.stdout.strip()

    def run(self, args: Sequence[str]) -> AzResult:
        p = self._exec(["az", *args])
        return AzResult(rc=p.returncode, stdout=p.stdout.strip(), stderr=p.stderr.strip())
