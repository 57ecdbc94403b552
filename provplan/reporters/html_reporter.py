"""
HTML + Mermaid plan / apply report generator.
"""
from datetime import datetime, timezone
from typing import Optional

from jinja2 import Environment

from provplan import __version__
from provplan.planner.driver import ApplyResult
from provplan.planner.resolver import Plan
from provplan.reporters import markdown

_HTML_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{ title }} - provplan</title>
    <script src="https://cdn.jsdelivr.net/npm/mermaid/dist/mermaid.min.js"></script>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 1200px; margin: 0 auto; padding: 2rem; background: #f9f9f9; }
        header { border-bottom: 2px solid #ddd; margin-bottom: 2rem; padding-bottom: 1rem; }
        h1 { color: #1565c0; margin-bottom: 0; }
        .meta { color: #666; font-size: 0.9rem; margin-bottom: 2rem; }
        .summary-cards { display: grid; grid-template-columns: repeat(auto-fit, minmax(150px, 1fr)); gap: 1rem; margin-bottom: 2rem; }
        .card { background: white; padding: 1rem; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); text-align: center; border-left: 5px solid #ddd; }
        .card.created { border-left-color: #4caf50; }
        .card.failed { border-left-color: #f44336; }
        .card.pending { border-left-color: #9e9e9e; }
        .card-num { font-size: 2rem; font-weight: bold; margin-bottom: 0.2rem; }
        .card-label { color: #666; font-size: 0.8rem; text-transform: uppercase; }
        .mermaid-container { background: white; padding: 2rem; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); margin-bottom: 2rem; overflow-x: auto; }
        .plan-table { width: 100%; border-collapse: collapse; background: white; border-radius: 8px; overflow: hidden; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
        .plan-table th, .plan-table td { padding: 1rem; text-align: left; border-bottom: 1px solid #eee; }
        .plan-table th { background: #f5f5f5; font-weight: 600; }
        .status { font-weight: bold; padding: 0.2rem 0.5rem; border-radius: 4px; font-size: 0.8rem; }
        .st-planned { background: #e3f2fd; color: #1565c0; }
        .st-created { background: #e8f5e9; color: #2e7d32; }
        .st-failed { background: #ffebee; color: #c62828; }
        .st-pending, .st-canceled { background: #f5f5f5; color: #757575; }
        .failure { background: #ffebee; font-family: monospace; padding: 1rem; border-radius: 4px; border-left: 3px solid #c62828; white-space: pre-wrap; margin-bottom: 2rem; }
        footer { margin-top: 4rem; text-align: center; color: #999; font-size: 0.8rem; }
    </style>
</head>
<body>
    <header>
        <h1>{{ title }}</h1>
        <div class="meta">Generated: {{ generated }} | Source: {{ source }} | provplan v{{ version }}</div>
    </header>

    {% if result %}
    <div class="summary-cards">
        <div class="card created"><div class="card-num">{{ counts.created }}</div><div class="card-label">Created</div></div>
        <div class="card failed"><div class="card-num">{{ counts.failed }}</div><div class="card-label">Failed</div></div>
        <div class="card pending"><div class="card-num">{{ counts.pending + counts.canceled }}</div><div class="card-label">Not attempted</div></div>
    </div>
    {% if result.failed %}
    <h2>Point of Failure</h2>
    <div class="failure">Step {{ failed_step }}: {{ result.failed.address }}
{{ result.error }}</div>
    {% endif %}
    {% endif %}

    <h2>Dependency Graph</h2>
    <div class="mermaid-container">
        <div class="mermaid">
{{ mermaid }}
        </div>
    </div>

    <h2>Creation Order</h2>
    <table class="plan-table">
        <thead>
            <tr>
                <th>Step</th>
                <th>Status</th>
                <th>Resource</th>
                <th>Depends on</th>
                <th>Source</th>
            </tr>
        </thead>
        <tbody>
            {% for row in rows %}
            <tr>
                <td>{{ row.step }}</td>
                <td><span class="status st-{{ row.status }}">{{ row.status }}</span></td>
                <td><strong>{{ row.address }}</strong></td>
                <td>{{ row.depends_on|join(", ") or "-" }}</td>
                <td>{{ row.source or "-" }}</td>
            </tr>
            {% endfor %}
        </tbody>
    </table>

    <footer>
        provplan: ordered provisioning plans for declarative infrastructure
    </footer>

    <script>
        mermaid.initialize({ startOnLoad: true, theme: 'neutral', securityLevel: 'loose' });
    </script>
</body>
</html>
"""


def build_report(plan: Plan, source_path: str, result: Optional[ApplyResult] = None) -> str:
    rows = markdown.plan_rows(plan, result)
    counts = {s: sum(1 for row in rows if row["status"] == s)
              for s in ("planned", "created", "failed", "pending", "canceled")}
    failed_step = plan.position(result.failed) + 1 if result and result.failed else None

    env = Environment(autoescape=True)
    template = env.from_string(_HTML_TEMPLATE)

    return template.render(
        title="Provisioning Apply Report" if result else "Provisioning Plan",
        generated=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
        source=source_path,
        version=__version__,
        counts=counts,
        rows=rows,
        result=result,
        failed_step=failed_step,
        mermaid=markdown.build_mermaid(plan, result),
    )
