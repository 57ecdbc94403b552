"""
Markdown + Mermaid plan / apply report generator.
"""
import json
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from jinja2 import Environment

from provplan import __version__
from provplan.models.resource import Resource, ResourceKey
from provplan.planner.driver import ApplyResult
from provplan.planner.resolver import Plan

_STATUS_ICON = {
    "planned": "📝",
    "created": "✅",
    "failed": "❌",
    "pending": "⏳",
    "canceled": "⏹️",
}

_STATUS_ASCII = {
    "planned": "[PLANNED]",
    "created": "[OK]",
    "failed": "[FAILED]",
    "pending": "[PENDING]",
    "canceled": "[CANCELED]",
}

_CATEGORY_MAP = {
    # kind keyword → subgraph label
    "public_access_block": "Storage",
    "bucket": "Storage",
    "s3": "Storage",
    "cloudfront": "Delivery",
    "distribution": "Delivery",
    "cdn": "Delivery",
    "ecr": "Registry",
    "repository": "Registry",
    "registry": "Registry",
    "iam": "Identity",
    "role": "Identity",
    "policy": "Identity",
    "security_group": "Networking",
    "securitygroup": "Networking",
    "vpc": "Networking",
    "subnet": "Networking",
    "instance": "Compute",
    "virtual_machine": "Compute",
    "lambda": "Compute",
}

_SUBGRAPH_ORDER = ["Storage", "Delivery", "Registry", "Compute", "Networking", "Identity", "Other"]

_STATUS_STYLE = {
    "created": "fill:#88cc00,color:#000",
    "failed": "fill:#ff4444,color:#fff",
    "pending": "fill:#dddddd,color:#666",
    "canceled": "fill:#dddddd,color:#666",
}


def _sanitize_node_id(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "_", name)


def resource_category(r: Resource) -> str:
    kind = r.kind.lower().replace("::", "_")
    for keyword, label in _CATEGORY_MAP.items():
        if keyword in kind:
            return label
    return "Other"


def _node_shape(r: Resource) -> str:
    """Return a Mermaid node definition string (without ID)."""
    label = r.address
    sg = resource_category(r)
    if sg == "Storage":
        return f'[("{label}")]'
    if sg == "Networking":
        return f'{{"{label}"}}'
    if sg == "Identity":
        return f'[/"{label}"/]'
    return f'["{label}"]'


def _edge_label(r: Resource, dep: ResourceKey) -> str:
    attrs = sorted({
        ".".join(str(p) for p in ref.path)
        for ref in r.references()
        if ref.target == dep
    })
    return ", ".join(attrs) if attrs else "after"


def md_cell(val) -> str:
    """Render a value for one Markdown table cell: pipes escaped, newlines folded."""
    text = val if isinstance(val, str) else json.dumps(val, sort_keys=True)
    return " ".join(text.replace("|", "\\|").splitlines())


def step_status(key: ResourceKey, result: Optional[ApplyResult]) -> str:
    return result.status(key) if result else "planned"


def build_mermaid(plan: Plan, result: Optional[ApplyResult] = None) -> str:
    subgraphs: Dict[str, List[Resource]] = defaultdict(list)
    for r in plan:
        subgraphs[resource_category(r)].append(r)

    lines = ["flowchart LR"]

    for sg_name in _SUBGRAPH_ORDER:
        sg_resources = subgraphs.get(sg_name, [])
        if not sg_resources:
            continue
        lines.append(f"    subgraph {sg_name}")
        for r in sg_resources:
            lines.append(f"        {_sanitize_node_id(r.address)}{_node_shape(r)}")
        lines.append("    end")

    # Edges point in creation order: dependency → dependent
    for r in plan:
        dst_id = _sanitize_node_id(r.address)
        for dep in plan.dependencies(r.key):
            src_id = _sanitize_node_id(dep.address)
            lines.append(f"    {src_id} -->|{_edge_label(r, dep)}| {dst_id}")

    if result is not None:
        for r in plan:
            style = _STATUS_STYLE.get(result.status(r.key))
            if style:
                lines.append(f"    style {_sanitize_node_id(r.address)} {style}")

    return "\n".join(lines)


def plan_rows(plan: Plan, result: Optional[ApplyResult] = None) -> List[dict]:
    rows = []
    for i, r in enumerate(plan, 1):
        rows.append({
            "step": i,
            "address": r.address,
            "kind": r.kind,
            "name": r.name,
            "source": f"{r.source_file}" if r.source_file else "",
            "depends_on": [d.address for d in plan.dependencies(r.key)],
            "status": step_status(r.key, result),
        })
    return rows


_TEMPLATE = """\
# Provisioning {{ "Apply" if result else "Plan" }} Report

**Generated:** {{ generated }}
**Source:** {{ source }}
**Tool:** provplan v{{ version }}

---

## Summary

{{ rows|length }} resources in creation order{% if formats %} from {{ formats }}{% endif %}.
{% if result %}
- **Created**: {{ counts.created }}
- **Failed**: {{ counts.failed }}
- **Not attempted**: {{ counts.pending + counts.canceled }}

{% if result.ok %}
All resources were realized. State is now at version {{ result.state.version }}.
{% elif result.canceled %}
The run was canceled before `{{ result.error.next_key.address }}`. Realized resources were kept.
{% else %}
The run stopped at `{{ result.failed.address }}`. Resources created before it were left in place for inspection.
{% endif %}
{% endif %}
---

## Plan

| Step | Status | Resource | Depends on | Source |
|------|--------|----------|------------|--------|
{% for row in rows %}| {{ row.step }} | {{ icons[row.status] }} {{ row.status }} | `{{ row.address }}` | {{ row.depends_on|join(", ") or "-" }} | {{ row.source or "-" }} |
{% endfor %}
{% if result and result.failed %}
---

## Point of Failure

**Resource:** `{{ result.failed.address }}`
**Step:** {{ failed_step }} of {{ rows|length }}
**Error:** {{ result.error }}
{% endif %}
{% if result and result.realized %}
---

## Realized Outputs

{% for rr in result.realized %}
### `{{ rr.key.address }}`

| Output | Value |
|--------|-------|
{% for k in rr.outputs|sort %}| `{{ k }}` | {{ rr.outputs[k]|md_cell }} |
{% endfor %}
{% endfor %}
{% endif %}
---

## Dependency Graph

```mermaid
{{ mermaid }}
```
"""


def build_report(
    plan: Plan,
    source_path: str,
    result: Optional[ApplyResult] = None,
    ascii_mode: bool = False,
) -> str:
    rows = plan_rows(plan, result)
    counts = {s: 0 for s in _STATUS_ICON}
    for row in rows:
        counts[row["status"]] += 1

    formats_seen = sorted({r.source_format for r in plan if r.source_format})
    failed_step = plan.position(result.failed) + 1 if result and result.failed else None

    env = Environment(autoescape=False)
    env.filters["md_cell"] = md_cell
    template = env.from_string(_TEMPLATE)

    return template.render(
        generated=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
        source=source_path,
        version=__version__,
        formats=", ".join(formats_seen),
        rows=rows,
        counts=counts,
        result=result,
        failed_step=failed_step,
        icons=_STATUS_ASCII if ascii_mode else _STATUS_ICON,
        mermaid=build_mermaid(plan, result),
    )
