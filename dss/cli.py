"""DSS command-line interface."""

import sys
import time
from pathlib import Path

import click
import yaml  # type: ignore[import-untyped]
from rich.console import Console
from rich.table import Table

from dss import __version__
from dss.config import DssConfig, WrapperConfig
from dss.constants import DecisionKind
from dss.exceptions import ContainerError, DssError
from dss.logging import get_logger, setup_logging
from dss.runtime import DssRuntime
from dss.types import SchedulableUnit
from dss.worker import worker_label

console = Console()
logger = get_logger("cli")


def _wrapper_or_exit(config: DssConfig, project: str) -> WrapperConfig:
    wrapper = config.get_wrapper(project)
    if wrapper is None:
        console.print(f"[red]Error:[/red] Project '{project}' has no worker configuration")
        console.print("Add it under [cyan]jobs[/cyan] in the config file")
        raise SystemExit(1)
    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="dss")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: .dss/config.yaml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """DSS - ephemeral docker build workers.

    Provisions one container per queued build, routes the build to it and
    tears it down when the build is finished.
    """
    ctx.ensure_object(dict)
    config = DssConfig.load(config_path)
    setup_logging(
        level="debug" if verbose else config.logging.level,
        log_dir=config.logging.directory,
        json_output=config.logging.json_output,
    )
    ctx.obj["config"] = config


@cli.command()
@click.argument("project")
@click.argument("build_number", type=int)
def label(project: str, build_number: int) -> None:
    """Print the worker label for PROJECT and BUILD_NUMBER."""
    click.echo(worker_label(SchedulableUnit(project, build_number)))


@cli.command("resolve-address")
@click.option("--project", "-p", help="Use the docker host and network of this project")
@click.option("--network", "-n", default=None, help="Docker network to inspect")
@click.pass_context
def resolve_address(ctx: click.Context, project: str | None, network: str | None) -> None:
    """Print the callback URL a worker would be given."""
    config: DssConfig = ctx.obj["config"]
    wrapper = _wrapper_or_exit(config, project) if project else WrapperConfig(docker_image="unused")
    if network:
        wrapper = wrapper.model_copy(update={"docker_network": network})

    runtime = DssRuntime(config)
    try:
        with runtime.credentials.materialize(wrapper) as material:
            url = runtime.resolver.resolve(runtime.driver_for(wrapper), wrapper.docker_network, material.env)
        click.echo(url)
    except DssError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1) from None
    finally:
        runtime.shutdown()


@cli.command()
@click.argument("project")
@click.argument("build_number", type=int)
@click.option("--poll-interval", default=1.0, type=float, help="Seconds between scheduling attempts")
@click.option("--max-wait", default=120.0, type=float, help="Give up after this many seconds")
@click.pass_context
def run(ctx: click.Context, project: str, build_number: int, poll_interval: float, max_wait: float) -> None:
    """Provision a worker for a build, report when it is routable, tear it down.

    Drives the scheduling hook the way a scheduler would.

    Examples:

        dss run my-project 42

        dss run my-project 42 --max-wait 30
    """
    config: DssConfig = ctx.obj["config"]
    _wrapper_or_exit(config, project)
    unit = SchedulableUnit(project, build_number)

    console.print(f"\n[bold cyan]DSS Run[/bold cyan] - {unit}\n")

    with DssRuntime(config) as runtime:
        deadline = time.monotonic() + max_wait
        attempts = 0
        decision = runtime.on_scheduling_attempt(unit)
        attempts += 1
        while decision.kind is DecisionKind.PENDING and time.monotonic() < deadline:
            time.sleep(poll_interval)
            decision = runtime.on_scheduling_attempt(unit)
            attempts += 1

        worker = runtime.registry.get(unit)

        table = Table(title="Scheduling")
        table.add_column("Unit", style="cyan")
        table.add_column("Label")
        table.add_column("State")
        table.add_column("Decision")
        table.add_column("Attempts", justify="right")
        table.add_row(
            str(unit),
            worker_label(unit),
            worker.state.value if worker else "-",
            decision.kind.value,
            str(attempts),
        )
        console.print(table)

        if decision.kind is DecisionKind.REFUSED:
            console.print(f"[red]Refused:[/red] {decision.reason}")
            runtime.on_build_setup(unit, sys.stderr)

        runtime.on_unit_finished(unit)

    if decision.kind is not DecisionKind.READY:
        raise SystemExit(1)


@cli.command()
@click.argument("project")
@click.argument("build_number", type=int)
@click.pass_context
def destroy(ctx: click.Context, project: str, build_number: int) -> None:
    """Force-remove the container of PROJECT and BUILD_NUMBER."""
    config: DssConfig = ctx.obj["config"]
    wrapper = _wrapper_or_exit(config, project)
    container = worker_label(SchedulableUnit(project, build_number))

    runtime = DssRuntime(config)
    try:
        driver = runtime.driver_for(wrapper)
        with runtime.credentials.materialize(wrapper) as material:
            driver.run_and_wait(driver.remove_command(container, force=True), material.env, check=True)
    except ContainerError as e:
        console.print(f"[yellow]Nothing removed:[/yellow] {e.stderr.strip() or container}")
        raise SystemExit(1) from None
    except DssError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1) from None
    finally:
        runtime.shutdown()

    console.print(f"[green]Removed[/green] {container}")


@cli.command("config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration (secrets masked)."""
    config: DssConfig = ctx.obj["config"]
    click.echo(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False))


if __name__ == "__main__":
    cli()
