"""
Command Line Interface
mailstack start-all | stop-all | restart-all | status | fix-ports | check-config | services
"""

import logging
import logging.config
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from pydantic import TypeAdapter, ValidationError

from .config.catalog import dump_catalog, resolve_catalog
from .config.settings import Settings, get_settings
from .orchestrator.errors import CatalogError, CommandError
from .orchestrator.health_monitor import HealthMonitor
from .orchestrator.models import ConfigCheckResult, OrchestrationRun, ServiceSpec
from .orchestrator.report import render_config_checks, render_run, render_status
from .orchestrator.service_manager import ServiceOrchestrator
from .orchestrator.system import SocketTablePortInspector

app = typer.Typer(
    help="Start, stop and monitor the mail stack services.",
    no_args_is_help=True,
    add_completion=False
)

ServicesFile = typer.Option(
    None,
    "--services-file",
    "-f",
    help="JSON service catalog (overrides MAILSTACK_SERVICES_FILE)",
    exists=True,
    dir_okay=False
)
JsonOutput = typer.Option(False, "--json", help="Print a machine-readable report")

_CONFIG_CHECKS_ADAPTER = TypeAdapter(List[ConfigCheckResult])


def build_orchestrator(settings: Settings) -> ServiceOrchestrator:
    """Wire the orchestrator to the real system"""
    return ServiceOrchestrator(
        policy=settings.retry_policy(),
        inspector=SocketTablePortInspector(connect_timeout=settings.connect_timeout_seconds)
    )


def _setup(services_file: Optional[Path], as_json: bool) -> Tuple[Settings, List[ServiceSpec]]:
    try:
        settings = get_settings()
    except ValidationError as e:
        typer.echo(f"❌ Invalid configuration: {e}", err=True)
        raise typer.Exit(2)

    stream = "ext://sys.stderr" if as_json else "ext://sys.stdout"
    logging.config.dictConfig(settings.get_log_config(stream=stream))

    try:
        specs = resolve_catalog(settings, services_file)
    except CatalogError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(2)
    return settings, specs


def _run(operation: str, services_file: Optional[Path], as_json: bool):
    settings, specs = _setup(services_file, as_json)
    orchestrator = build_orchestrator(settings)
    try:
        run = getattr(orchestrator, operation)(specs)
    except CommandError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(2)
    _finish_run(run, settings, as_json)


def _finish_run(run: OrchestrationRun, settings: Settings, as_json: bool):
    if as_json:
        typer.echo(run.to_json(indent=2))
    else:
        typer.echo(render_run(run, settings.timezone))
    raise typer.Exit(run.exit_code)


@app.command("start-all")
def start_all(services_file: Optional[Path] = ServicesFile, as_json: bool = JsonOutput):
    """Start all mail services in dependency order"""
    _run("start_all", services_file, as_json)


@app.command("stop-all")
def stop_all(services_file: Optional[Path] = ServicesFile, as_json: bool = JsonOutput):
    """Stop all mail services in reverse order"""
    _run("stop_all", services_file, as_json)


@app.command("restart-all")
def restart_all(services_file: Optional[Path] = ServicesFile, as_json: bool = JsonOutput):
    """Stop, then start all mail services"""
    _run("restart_all", services_file, as_json)


@app.command("fix-ports")
def fix_ports(services_file: Optional[Path] = ServicesFile, as_json: bool = JsonOutput):
    """Restart the stack if any declared port is inactive"""
    _run("fix_ports", services_file, as_json)


@app.command("status")
def status(
    services_file: Optional[Path] = ServicesFile,
    as_json: bool = JsonOutput,
    probe: bool = typer.Option(True, "--probe/--no-probe", help="TCP-connect critical ports"),
    watch: bool = typer.Option(False, "--watch", help="Repeat the check until interrupted"),
):
    """Show service and port status"""
    settings, specs = _setup(services_file, as_json)
    monitor = HealthMonitor(
        build_orchestrator(settings),
        check_interval=settings.health_check_interval_seconds
    )

    def show(report):
        if as_json:
            typer.echo(report.to_json(indent=2))
        else:
            typer.echo(render_status(report, settings.timezone))

    try:
        if watch:
            report = monitor.watch(specs, on_report=show)
        else:
            report = monitor.check(specs, probe=probe)
            show(report)
    except KeyboardInterrupt:
        monitor.stop()
        raise typer.Exit(0)
    except CommandError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(2)
    raise typer.Exit(report.exit_code)


@app.command("check-config")
def check_config(services_file: Optional[Path] = ServicesFile, as_json: bool = JsonOutput):
    """Validate each service's configuration syntax"""
    settings, specs = _setup(services_file, as_json)
    results = HealthMonitor(build_orchestrator(settings)).check_config(specs)

    if as_json:
        typer.echo(_CONFIG_CHECKS_ADAPTER.dump_json(results, indent=2).decode())
    else:
        typer.echo(render_config_checks(results))

    failed = [r for r in results if r.passed is False]
    raise typer.Exit(1 if failed else 0)


@app.command("services")
def services(services_file: Optional[Path] = ServicesFile):
    """Print the service catalog as JSON"""
    _settings, specs = _setup(services_file, as_json=True)
    typer.echo(dump_catalog(specs))


def main():
    app()


if __name__ == "__main__":
    main()
