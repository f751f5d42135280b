from __future__ import annotations

import json
import sys
from typing import TextIO

from satellite_checks.models import Status, Verdict


def exit_code_for(status: object) -> int:
    return Status.parse(status).exit_code


def render_verdict(verdict: Verdict) -> str:
    return json.dumps(verdict.normalized().to_dict(), ensure_ascii=False, sort_keys=True, default=str)


def emit(verdict: Verdict, stream: TextIO | None = None) -> int:
    """Write the verdict as one JSON document and return the plugin exit code."""
    out = stream if stream is not None else sys.stdout
    out.write(render_verdict(verdict) + "\n")
    out.flush()
    return exit_code_for(verdict.status)
