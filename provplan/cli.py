"""
provplan CLI entry point.
"""
import signal
import sys
import threading
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from provplan import __version__
from provplan.config import load_settings
from provplan.models.errors import ApplyAborted, ParseError, PlanError
from provplan.models.resource import Resource
from provplan.parsers import collect_files, load_declarations
from provplan.planner.driver import ApplyResult, Driver, TimeoutPolicy
from provplan.planner.resolver import Plan, resolve
from provplan.planner.state import load_state, save_state
from provplan.providers import get_provider
from provplan.reporters import html_reporter, json_reporter, markdown

_BANNER = r"""
  _ __  _ __ _____   ___ __ | | __ _ _ __
 | '_ \| '__/ _ \ \ / / '_ \| |/ _` | '_ \
 | |_) | | | (_) \ V /| |_) | | (_| | | | |
 | .__/|_|  \___/ \_/ | .__/|_|\__,_|_| |_|
 |_|                  |_|
"""

_STATUS_COLORS = {
    "planned": "cyan",
    "created": "green",
    "failed": "bold red",
    "pending": "dim",
    "canceled": "yellow",
}


def _print_banner(no_color: bool = False) -> None:
    c = Console(stderr=True, no_color=no_color)
    c.print(f"[bold blue]{_BANNER}[/bold blue]")
    c.print(f"  [dim]ordered provisioning plans[/dim]   [dim]v{__version__}[/dim]\n")


def _print_plan_table(plan: Plan, result: Optional[ApplyResult], no_color: bool) -> None:
    """Print a rich plan table to stderr."""
    tbl = Table(title="Provisioning Plan", show_header=True, header_style="bold")
    tbl.add_column("#", style="dim", width=4)
    tbl.add_column("Status", width=10)
    tbl.add_column("Resource", width=45)
    tbl.add_column("Depends on")

    for row in markdown.plan_rows(plan, result):
        color = _STATUS_COLORS.get(row["status"], "") if not no_color else ""
        status = row["status"]
        tbl.add_row(
            str(row["step"]),
            f"[{color}]{status}[/{color}]" if color else status,
            row["address"],
            ", ".join(row["depends_on"]) or "-",
        )

    Console(stderr=True, no_color=no_color).print(tbl)


def _load(paths: Tuple[str, ...], strict: bool, stderr: Console) -> List[Resource]:
    with stderr.status("[bold]Collecting files…"):
        file_paths = collect_files(paths)

    if not file_paths:
        stderr.print("[red]No files found.[/red]")
        sys.exit(2)

    with stderr.status(f"[bold]Parsing {len(file_paths)} file(s)…"):
        try:
            resources = load_declarations(file_paths, strict=strict)
        except ParseError as exc:
            stderr.print(f"[red]Parse error:[/red] {exc}")
            sys.exit(2)

    if not resources:
        stderr.print("[yellow]No resource declarations found in the provided paths.[/yellow]")
        sys.exit(2)

    stderr.print(f"Found [bold]{len(resources)}[/bold] resources.")
    return resources


def _resolve(resources: List[Resource], stderr: Console) -> Plan:
    try:
        return resolve(resources)
    except PlanError as exc:
        stderr.print(f"[red]Plan error:[/red] {exc}")
        sys.exit(1)


def _emit(content: str, output: Optional[str], stderr: Console) -> None:
    if output:
        with open(output, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(content)
        stderr.print(f"Report written to [bold]{output}[/bold]")
    else:
        click.echo(content)


def _render(
    fmt: str,
    plan: Plan,
    source_label: str,
    result: Optional[ApplyResult],
    ascii_mode: bool,
) -> str:
    fmt = fmt.lower()
    if fmt == "json":
        return json_reporter.build_report(plan, source_label, result)
    if fmt == "html":
        return html_reporter.build_report(plan, source_label, result)
    return markdown.build_report(plan, source_label, result, ascii_mode=ascii_mode)


def _report_options(fn):
    options = [
        click.argument("paths", nargs=-1, required=True, type=click.Path()),
        click.option(
            "--format", "output_format",
            type=click.Choice(["markdown", "json", "html"], case_sensitive=False),
            default="markdown",
            show_default=True,
            help="Output format.",
        ),
        click.option(
            "--output", "-o",
            type=click.Path(),
            default=None,
            help="Write report to this file (default: stdout).",
        ),
        click.option(
            "--summary",
            is_flag=True,
            default=False,
            help="Print terminal plan table only, do not write a full report.",
        ),
        click.option(
            "--strict",
            is_flag=True,
            default=False,
            help="Fail when a declaration file cannot be parsed instead of skipping it.",
        ),
        click.option(
            "--ascii",
            is_flag=True,
            default=False,
            help="Use ASCII-only status indicators (no emojis).",
        ),
        click.option(
            "--no-color",
            is_flag=True,
            default=False,
            help="Disable rich terminal color output.",
        ),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(__version__)
@click.pass_context
def cli(ctx):
    """provplan: ordered provisioning plans for declarative infrastructure."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()


@cli.command()
@_report_options
def plan(
    paths: Tuple[str, ...],
    output_format: str,
    output: Optional[str],
    summary: bool,
    strict: bool,
    ascii: bool,
    no_color: bool,
) -> None:
    """
    Resolve declarations into a creation order without provisioning anything.

    PATHS can be files or directories; multiple values accepted.
    """
    _print_banner(no_color)
    stderr = Console(stderr=True, no_color=no_color)
    resources = _load(paths, strict, stderr)
    the_plan = _resolve(resources, stderr)
    stderr.print(f"Plan has [bold]{len(the_plan)}[/bold] steps.")

    if summary or output:
        _print_plan_table(the_plan, None, no_color)

    if not summary:
        _emit(_render(output_format, the_plan, ", ".join(paths), None, ascii), output, stderr)

    sys.exit(0)


@cli.command()
@_report_options
@click.option(
    "--config", "config_file",
    type=click.Path(),
    default=None,
    help="Settings file (default: ./provplan.yaml when present).",
)
@click.option(
    "--provider", "provider_name",
    default=None,
    help="Provisioning backend (default from settings: local).",
)
@click.option(
    "--state", "state_file",
    type=click.Path(),
    default=None,
    help="State snapshot file read before and written after the run.",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Seconds to wait for each create call (default: no limit).",
)
def apply(
    paths: Tuple[str, ...],
    output_format: str,
    output: Optional[str],
    summary: bool,
    strict: bool,
    ascii: bool,
    no_color: bool,
    config_file: Optional[str],
    provider_name: Optional[str],
    state_file: Optional[str],
    timeout: Optional[float],
) -> None:
    """
    Realize declarations in dependency order, stopping at the first failure.

    Exits 0 when every resource was created and 1 otherwise, so CI can gate
    on it. Ctrl-C stops the run before the next resource.
    """
    _print_banner(no_color)
    stderr = Console(stderr=True, no_color=no_color)
    settings = load_settings(config_file)

    # Static checks run before any provider call
    resources = _load(paths, strict, stderr)
    the_plan = _resolve(resources, stderr)

    name = provider_name or settings.provider
    try:
        api = get_provider(name, settings.provider_settings(name))
    except (ValueError, TypeError) as exc:
        stderr.print(f"[red]Provider error:[/red] {exc}")
        sys.exit(2)

    state_path = state_file or settings.state_file
    try:
        state = load_state(state_path)
    except (OSError, ValueError, TypeError) as exc:
        stderr.print(f"[red]State error:[/red] cannot read {state_path}: {exc}")
        sys.exit(2)

    cancel = threading.Event()

    def _on_interrupt(signum, frame):
        stderr.print("[yellow]Interrupt received, stopping after the current resource…[/yellow]")
        cancel.set()

    driver = Driver(
        api,
        timeouts=TimeoutPolicy(
            timeout if timeout is not None else settings.default_timeout,
            settings.timeouts,
        ),
        cancel_event=cancel,
        out=stderr,
    )

    stderr.print(
        f"Applying [bold]{len(the_plan)}[/bold] resources with provider "
        f"[bold]{name}[/bold] (state v{state.version})."
    )
    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        result = driver.apply(the_plan, state)
    except ApplyAborted as exc:
        # Resources created before the crash still go into the snapshot
        result = exc.result
    finally:
        signal.signal(signal.SIGINT, previous)

    save_state(result.state, state_path)
    stderr.print(f"State v{result.state.version} written to [bold]{state_path}[/bold]")

    if result.ok:
        stderr.print(f"[green]Apply complete:[/green] {len(result.realized)} resources created.")
    else:
        stderr.print(
            f"[red]Apply failed:[/red] {result.error} "
            f"({len(result.realized)} created, {len(result.pending)} not attempted)"
        )

    if summary or output or not result.ok:
        _print_plan_table(the_plan, result, no_color)

    if not summary:
        _emit(_render(output_format, the_plan, ", ".join(paths), result, ascii), output, stderr)

    sys.exit(0 if result.ok else 1)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
