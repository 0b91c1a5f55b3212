"""
stackgraph CLI entry point.
"""
import sys
from typing import Any, Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from stackgraph import __version__
from stackgraph.config import TABLE_ACCESS_LEVELS, Settings, load_settings
from stackgraph.errors import ProvisionError, StackError, StateLockedError
from stackgraph.loader import load_stack
from stackgraph.models.resource import ResourceNode
from stackgraph.providers.local import LocalProvider
from stackgraph.provisioning.provisioner import Provisioner
from stackgraph.reporters import json_reporter, markdown
from stackgraph.stacks import contacts
from stackgraph.stacks.orchestrator import StackOrchestrator
from stackgraph.state import StateFile

_BANNER = r"""
     _             _                         _
 ___| |_ __ _  ___| | ____ _ _ __ __ _ _ __ | |__
/ __| __/ _` |/ __| |/ / _` | '__/ _` | '_ \| '_ \
\__ \ || (_| | (__|   < (_| | | | (_| | |_) | | | |
|___/\__\__,_|\___|_|\_\__, |_|  \__,_| .__/|_| |_|
                       |___/          |_|
"""

_STATE_COLORS = {
    "Pending": "dim",
    "Provisioning": "cyan",
    "Ready": "green",
    "Failed": "bold red",
    "Destroying": "yellow",
    "Destroyed": "dim",
}


def _print_banner(no_color: bool = False) -> None:
    c = Console(stderr=True, no_color=no_color)
    c.print(f"[bold cyan]{_BANNER}[/bold cyan]")
    c.print(f"  [dim]declarative resource graphs[/dim]   [dim]v{__version__}[/dim]\n")


def _print_plan_table(nodes: List[ResourceNode], default_region: str, no_color: bool) -> None:
    tbl = Table(title="Plan", show_header=True, header_style="bold")
    tbl.add_column("#", style="dim", width=3)
    tbl.add_column("Resource", width=24)
    tbl.add_column("Kind", width=13)
    tbl.add_column("Region", width=15)
    tbl.add_column("State", width=12)
    tbl.add_column("Depends on")

    for i, n in enumerate(nodes, 1):
        color = _STATE_COLORS.get(n.state.value, "") if not no_color else ""
        tbl.add_row(
            str(i),
            n.id,
            n.kind.value,
            n.region or default_region,
            f"[{color}]{n.state.value}[/{color}]" if color else n.state.value,
            ", ".join(n.references()) or "-",
        )

    Console(stderr=True, no_color=no_color).print(tbl)


def _print_outputs(outputs: Dict[str, Any]) -> None:
    for key, val in outputs.items():
        click.echo(f"{key} = {val}")


_STACK_OPTIONS = [
    click.argument("files", nargs=-1, type=click.Path()),
    click.option("--domain", default=None, help="Root domain name [env: DOMAIN_NAME]."),
    click.option("--subdomain", default=None, help="Subdomain label [env: SUB_DOMAIN]."),
    click.option("--region", default=None, help="Primary region [env: AWS_DEFAULT_REGION]."),
    click.option("--asset-dir", default=None, type=click.Path(), help="Pre-built static site directory."),
    click.option(
        "--table-access",
        type=click.Choice(TABLE_ACCESS_LEVELS),
        default=None,
        help="Capability granted to the function on the contacts table.",
    ),
    click.option("--state-file", default=None, type=click.Path(), help="Provider state file."),
    click.option("--no-color", is_flag=True, default=False, help="Disable rich terminal color output."),
]


def _stack_options(fn):
    """Options shared by every stack command."""
    for option in reversed(_STACK_OPTIONS):
        fn = option(fn)
    return fn


def _settings(domain, subdomain, region, asset_dir, table_access, state_file) -> Settings:
    return load_settings({
        "domain_name": domain,
        "subdomain": subdomain,
        "region": region,
        "asset_dir": asset_dir,
        "table_access": table_access,
        "state_file": state_file,
    })


def _provider(settings: Settings, state: StateFile) -> LocalProvider:
    return LocalProvider(
        hosted_zones=settings.zones,
        cdn_region=settings.cdn_certificate_region,
        state=state.load(),
    )


def _orchestrator(
    files: Tuple[str, ...], settings: Settings, provider: LocalProvider
) -> StackOrchestrator:
    provisioner = Provisioner(
        provider,
        settings.region,
        max_attempts=settings.max_attempts,
        base_delay=settings.base_delay,
        max_delay=settings.max_delay,
        wait_timeout=settings.wait_timeout,
        poll_interval=settings.poll_interval,
    )
    if files:
        builder, outputs = load_stack(list(files))
        return StackOrchestrator(", ".join(files), builder, provisioner, outputs)
    return contacts.build(settings, provisioner)


def _fail(stderr: Console, exc: StackError) -> None:
    if isinstance(exc, ProvisionError):
        stderr.print(
            f"[red]Failed at {exc.kind} '{exc.node_id}'[/red] ({exc.error_kind}): {exc.cause}"
        )
        sys.exit(1)
    if isinstance(exc, StateLockedError):
        stderr.print(f"[red]Locked:[/red] {exc}")
        sys.exit(1)
    stderr.print(f"[red]Invalid stack:[/red] {exc}")
    sys.exit(2)


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(__version__)
@click.pass_context
def cli(ctx):
    """stackgraph — declarative resource-graph provisioning."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()


@cli.command()
@_stack_options
@click.option(
    "--format", "output_format",
    type=click.Choice(["table", "markdown", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--output", "-o",
    type=click.Path(),
    default=None,
    help="Write report to this file (default: stdout).",
)
@click.option("--ascii", is_flag=True, default=False, help="Use ASCII-only state indicators.")
def plan(files, domain, subdomain, region, asset_dir, table_access, state_file, no_color,
         output_format: str, output: Optional[str], ascii: bool) -> None:
    """
    Show the creation order of a stack.

    FILES are YAML, JSON or HCL stack files (or directories of them). Without
    FILES the built-in contact-form stack is planned.
    """
    _print_banner(no_color)
    stderr = Console(stderr=True, no_color=no_color)
    try:
        settings = _settings(domain, subdomain, region, asset_dir, table_access, state_file)
        state = StateFile(settings.state_file)
        stack = _orchestrator(files, settings, _provider(settings, state))
        with stderr.status("[bold]Reading current state…"):
            stack.refresh()
    except StackError as exc:
        _fail(stderr, exc)
        return

    nodes = stack.plan()
    outputs = dict(stack.declared_outputs, **stack.outputs())
    stderr.print(f"Planned [bold]{len(nodes)}[/bold] resources for [bold]{stack.name}[/bold].")

    fmt = output_format.lower()
    if fmt == "table":
        _print_plan_table(nodes, settings.region, no_color)
        return

    if fmt == "json":
        report = json_reporter.build_report(nodes, outputs, ", ".join(files) or "built-in",
                                            stack.name, settings.region)
    else:
        report = markdown.build_report(nodes, outputs, ", ".join(files) or "built-in",
                                       stack.name, settings.region, ascii_mode=ascii)

    if output:
        with open(output, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(report)
        stderr.print(f"Report written to [bold]{output}[/bold]")
    else:
        click.echo(report)


@cli.command()
@_stack_options
def apply(files, domain, subdomain, region, asset_dir, table_access, state_file, no_color) -> None:
    """Create every resource of a stack that is not already up to date."""
    _print_banner(no_color)
    stderr = Console(stderr=True, no_color=no_color)
    try:
        settings = _settings(domain, subdomain, region, asset_dir, table_access, state_file)
        state = StateFile(settings.state_file)
        with state.lock():
            provider = _provider(settings, state)
            stack = _orchestrator(files, settings, provider)
            try:
                outputs = stack.deploy()
            finally:
                state.save(provider.to_dict())
    except StackError as exc:
        _fail(stderr, exc)
        return

    _print_plan_table(stack.plan(), settings.region, no_color)
    stderr.print("[green]Apply complete.[/green]")
    _print_outputs(outputs)


@cli.command()
@_stack_options
def destroy(files, domain, subdomain, region, asset_dir, table_access, state_file, no_color) -> None:
    """Tear a stack down in reverse creation order."""
    _print_banner(no_color)
    stderr = Console(stderr=True, no_color=no_color)
    try:
        settings = _settings(domain, subdomain, region, asset_dir, table_access, state_file)
        state = StateFile(settings.state_file)
        with state.lock():
            provider = _provider(settings, state)
            stack = _orchestrator(files, settings, provider)
            try:
                stack.refresh(match_attributes=False)
                destroyed = stack.teardown()
            finally:
                state.save(provider.to_dict())
    except StackError as exc:
        _fail(stderr, exc)
        return

    stderr.print(f"[green]Destroyed {len(destroyed)} resource(s).[/green]")


@cli.command()
@_stack_options
def outputs(files, domain, subdomain, region, asset_dir, table_access, state_file, no_color) -> None:
    """Print the outputs of a deployed stack."""
    stderr = Console(stderr=True, no_color=no_color)
    try:
        settings = _settings(domain, subdomain, region, asset_dir, table_access, state_file)
        state = StateFile(settings.state_file)
        stack = _orchestrator(files, settings, _provider(settings, state))
        values = stack.refresh()
    except StackError as exc:
        _fail(stderr, exc)
        return

    missing = [k for k in stack.declared_outputs if k not in values]
    for key in missing:
        stderr.print(f"[yellow]Warning:[/yellow] output '{key}' is not available yet.")
    _print_outputs(values)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
