"""Unified CLI for az-relocate.

Provides four subcommands:
    az-relocate validate  – run the pre-flight checks for a zone move
    az-relocate move      – move a VM into a zone (``--what-if`` to preview)
    az-relocate web       – run the REST API (FastAPI + uvicorn)
    az-relocate mcp       – run the MCP server (stdio or SSE transport)
"""

import logging
from collections.abc import Callable
from typing import Any

import click

from az_relocate import __version__
from az_relocate.errors import RelocateError, ValidationError
from az_relocate.models.migration import MigrationRequest, MigrationResult, ValidationReport


def _request_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by ``validate`` and ``move``."""
    options = [
        click.option("--subscription", "-s", required=True, help="Subscription ID."),
        click.option("--resource-group", "-g", required=True, help="Source resource group."),
        click.option("--name", "-n", "vm_name", required=True, help="Source VM name."),
        click.option("--zone", "-z", required=True, help="Target availability zone."),
        click.option("--tenant", default=None, help="Tenant ID to scope the query."),
        click.option(
            "--target-resource-group",
            default=None,
            help="Resource group for the replica (default: source group).",
        ),
        click.option("--target-name", default=None, help="Name of the replica VM."),
        click.option("--vm-size", default=None, help="New VM size."),
        click.option("--os-disk-sku", default=None, help="New OS disk SKU."),
        click.option("--data-disk-sku", default=None, help="New data disk SKU."),
        click.option(
            "--verbose", "-v", is_flag=True, default=False, help="Enable verbose logging."
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_request(what_if: bool = False, **kwargs: Any) -> MigrationRequest:
    return MigrationRequest(
        subscriptionId=kwargs["subscription"],
        tenantId=kwargs["tenant"],
        resourceGroup=kwargs["resource_group"],
        vmName=kwargs["vm_name"],
        targetZone=kwargs["zone"],
        targetResourceGroup=kwargs["target_resource_group"],
        targetVmName=kwargs["target_name"],
        vmSize=kwargs["vm_size"],
        osDiskSku=kwargs["os_disk_sku"],
        dataDiskSku=kwargs["data_disk_sku"],
        whatIf=what_if,
    )


def _echo_report(report: ValidationReport) -> None:
    if report.ok:
        click.secho(f"✔ {report.vmName} can move to zone {report.targetZone}", fg="green")
    else:
        click.secho(
            f"✘ {report.vmName} cannot move to zone {report.targetZone} "
            f"({len(report.violations)} violation(s))",
            fg="red",
            bold=True,
        )
        for violation in report.violations:
            click.echo(f"  [{violation.kind}] {violation.message}")
    for warning in report.warnings:
        click.secho(f"  ! {warning}", fg="yellow")


def _echo_result(result: MigrationResult) -> None:
    header = "What-If" if result.whatIf else "Move"
    colour = "green" if result.succeeded else "red"
    click.secho(
        f"{header} of {result.vmName} to zone {result.targetZone}: stage {result.stage}",
        fg=colour,
        bold=True,
    )
    for action in result.plannedActions:
        click.echo(f"  • {action}")
    for outcome in result.diskOutcomes:
        click.echo(f"  disk {outcome.diskName} ({outcome.sku}): {outcome.status}")
    if result.nicId:
        click.echo(f"  nic  {result.nicId}")
    if result.vmId:
        click.echo(f"  vm   {result.vmId}")
    for warning in result.warnings:
        click.secho(f"  ! {warning}", fg="yellow")
    for error in result.errors:
        click.secho(f"  ✘ {error}", fg="red")


@click.group()
@click.version_option(version=__version__, prog_name="az-relocate")
def cli() -> None:
    """Move Azure virtual machines into availability zones."""


@cli.command()
@_request_options
def validate(verbose: bool, **kwargs: Any) -> None:
    """Check whether a VM can move into a zone; change nothing."""
    from az_relocate.app import _setup_logging
    from az_relocate.services import validator
    from az_relocate.settings import get_settings

    _setup_logging(level=logging.DEBUG if verbose else logging.WARNING)
    try:
        report, _plan = validator.validate(_build_request(**kwargs), get_settings())
    except RelocateError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_report(report)
    if not report.ok:
        raise SystemExit(1)


@cli.command()
@_request_options
@click.option(
    "--what-if",
    is_flag=True,
    default=False,
    help="Only show what would be done.",
)
def move(verbose: bool, what_if: bool, **kwargs: Any) -> None:
    """Move a VM into a zone."""
    from az_relocate.app import _setup_logging
    from az_relocate.services.orchestrator import MigrationOrchestrator
    from az_relocate.settings import get_settings

    _setup_logging(level=logging.DEBUG if verbose else logging.INFO)
    try:
        result = MigrationOrchestrator(get_settings()).run(
            _build_request(what_if=what_if, **kwargs)
        )
    except ValidationError as exc:
        _echo_report(exc.report)
        raise SystemExit(1) from exc
    except RelocateError as exc:
        if exc.result is not None:
            _echo_result(exc.result)
        else:
            click.secho(str(exc), fg="red", err=True)
        raise SystemExit(1) from exc
    _echo_result(result)


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Host to bind to.")
@click.option("--port", default=5001, show_default=True, help="Port to listen on.")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging.",
)
def web(host: str, port: int, verbose: bool) -> None:
    """Run the REST API."""
    import uvicorn

    from az_relocate.app import _setup_logging, app

    log_level = "info" if verbose else "warning"
    _setup_logging(level=logging.DEBUG if verbose else logging.WARNING)

    url = f"http://{host}:{port}"
    click.echo(f"✦ az-relocate running at {click.style(url, fg='cyan', bold=True)}")
    click.echo(f"  API docs at {url}/docs")
    click.echo("  Press Ctrl+C to stop.\n")
    uvicorn.run(app, host=host, port=port, log_level=log_level)


@cli.command()
@click.option(
    "--sse",
    is_flag=True,
    default=False,
    help="Use SSE transport instead of stdio.",
)
@click.option(
    "--port",
    default=8080,
    show_default=True,
    help="Port for SSE transport.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging.",
)
def mcp(sse: bool, port: int, verbose: bool) -> None:
    """Run the MCP server."""
    from az_relocate.mcp_server import mcp as mcp_server

    if verbose:
        logging.basicConfig(level=logging.INFO)
    else:
        logging.basicConfig(level=logging.WARNING)

    if sse:
        mcp_server.settings.port = port
        mcp_server.run(transport="sse")
    else:
        mcp_server.run(transport="stdio")
