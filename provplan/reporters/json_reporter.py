"""
JSON plan / apply report generator.
"""
import json
from datetime import datetime, timezone
from typing import Any, Optional

from provplan import __version__
from provplan.models.resource import Reference, Template
from provplan.planner.driver import ApplyResult
from provplan.planner.resolver import Plan
from provplan.reporters.markdown import plan_rows


def _encode(val: Any) -> Any:
    """Make declared attributes JSON friendly; references render as ${kind.name.attr}."""
    if isinstance(val, Reference):
        return "${" + str(val) + "}"
    if isinstance(val, Template):
        return str(val)
    if isinstance(val, dict):
        return {k: _encode(v) for k, v in val.items()}
    if isinstance(val, (list, tuple)):
        return [_encode(v) for v in val]
    return val


def build_report(plan: Plan, source_path: str, result: Optional[ApplyResult] = None) -> str:
    rows = plan_rows(plan, result)
    for row, r in zip(rows, plan):
        row["attributes"] = _encode(r.attributes)

    report = {
        "meta": {
            "generated": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "source": source_path,
            "tool": "provplan",
            "version": __version__,
        },
        "summary": {
            "resources": len(plan),
            "ok": result.ok if result else None,
        },
        "plan": rows,
    }
    if result is not None:
        report["result"] = {
            "state_version": result.state.version,
            "realized": [rr.to_dict() for rr in result.realized],
            "failed": result.failed.address if result.failed else None,
            "error": str(result.error) if result.error else None,
            "canceled": result.canceled,
            "pending": [k.address for k in result.pending],
        }
    return json.dumps(report, indent=2, default=str)
