from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from typing import Any

from .errors import OpError, UsageError

__all__ = [
    "GlobalOpts",
    "OpError",
    "UsageError",
    "_env_or_none",
    "_eprint",
    "_print_json",
    "_require_str",
]

SCW_ACCESS_KEY = "SCW_ACCESS_KEY"
SCW_SECRET_KEY = "SCW_SECRET_KEY"
SCW_DEFAULT_ORGANIZATION_ID = "SCW_DEFAULT_ORGANIZATION_ID"
SCW_DEFAULT_PROJECT_ID = "SCW_DEFAULT_PROJECT_ID"
SCW_DEFAULT_REGION = "SCW_DEFAULT_REGION"
EXOSCALE_API_KEY = "EXOSCALE_API_KEY"
EXOSCALE_API_SECRET = "EXOSCALE_API_SECRET"
EXOSCALE_ZONE = "EXOSCALE_ZONE"


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


@dataclass(frozen=True)
class GlobalOpts:
    config_path: str = ""
    pretty: bool = True
    quiet: bool = False


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _require_str(val: str | None, name: str, *, hint: str) -> str:
    v = (val or "").strip()
    if not v:
        raise UsageError(f"missing {name} ({hint})")
    return v


def _print_json(obj: Any, *, pretty: bool) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")
