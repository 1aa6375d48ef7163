"""Main CLI entry point using Typer."""

from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Any

import structlog
import typer
from rich.console import Console
from rich.table import Table

from capacity_controller import __version__
from capacity_controller.integrations.kubernetes.client import KubernetesClient
from capacity_controller.integrations.kubernetes.cluster_store import ClusterClientStore
from capacity_controller.integrations.kubernetes.config import CapacityControllerConfig
from capacity_controller.integrations.kubernetes.custom_objects import ShipperClient
from capacity_controller.integrations.kubernetes.events import EventRecorder
from capacity_controller.integrations.kubernetes.exceptions import KubernetesError
from capacity_controller.integrations.kubernetes.informers import InformerFactory
from capacity_controller.logging.config import configure_logging
from capacity_controller.services.capacity.controller import CapacityController

app = typer.Typer(
    name="capacity-controller",
    help="Keep release capacity in sync across Kubernetes clusters.",
    add_completion=True,
)

console = Console()
logger = structlog.get_logger()

# XDG-compliant config location
CONFIG_DIR = Path.home() / ".config" / "capacity-controller"
CONFIG_FILE = CONFIG_DIR / "config.yaml"

MANAGEMENT_CLUSTER = "management"


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"capacity-controller version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode.",
    ),
) -> None:
    """Capacity controller - scale releases across clusters."""
    ctx.obj = {"verbose": verbose, "debug": debug}
    configure_logging(verbose=verbose, debug=debug)


def load_config(config_file: Path | None) -> CapacityControllerConfig:
    """Load the configuration file (or the default one when present) with env overrides."""
    if config_file is not None:
        return CapacityControllerConfig.from_file(config_file)
    if CONFIG_FILE.exists():
        return CapacityControllerConfig.from_file(CONFIG_FILE)
    return CapacityControllerConfig.from_env()


def _load_config_or_exit(config_file: Path | None) -> CapacityControllerConfig:
    try:
        return load_config(config_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]ERROR:[/red] Invalid configuration: {e}")
        raise typer.Exit(1) from e


@app.command()
def run(
    ctx: typer.Context,
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the YAML configuration file.",
    ),
    workers: int | None = typer.Option(
        None,
        "--workers",
        "-w",
        min=1,
        help="Worker threads per queue (overrides the configuration).",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Write console logs as JSON.",
    ),
) -> None:
    """Run the capacity controller until interrupted."""
    settings: dict[str, Any] = ctx.obj or {}
    if json_logs:
        configure_logging(
            verbose=settings.get("verbose", False),
            debug=settings.get("debug", False),
            json_output=True,
        )

    config = _load_config_or_exit(config_file)
    defaults = config.defaults

    try:
        management = KubernetesClient(
            config.management_cluster,
            name=MANAGEMENT_CLUSTER,
            retry_attempts=defaults.retry_attempts,
        )
    except KubernetesError as e:
        console.print(f"[red]ERROR:[/red] {e}")
        raise typer.Exit(1) from e

    stop_event = threading.Event()

    def _stop(signum: int, frame: Any) -> None:
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    informers = InformerFactory(
        management,
        MANAGEMENT_CLUSTER,
        resync_seconds=defaults.resync_seconds,
        namespace=defaults.namespace,
    )
    store = ClusterClientStore(config)
    controller = CapacityController(
        informers,
        store,
        ShipperClient(management, namespace=defaults.namespace),
        EventRecorder(management),
        sad_pod_limit=defaults.sad_pod_limit,
    )

    logger.info(
        "capacity_controller_configured",
        clusters=config.get_cluster_names(),
        namespace=defaults.namespace or "*",
    )
    informers.start(stop_event)
    store.start(stop_event)
    try:
        controller.run(workers or defaults.workers, stop_event)
    except KubernetesError as e:
        console.print(f"[red]ERROR:[/red] {e}")
        raise typer.Exit(1) from e
    finally:
        stop_event.set()
        store.close()
        management.close()


@app.command()
def check(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the YAML configuration file.",
    ),
) -> None:
    """Check connectivity to the management and application clusters."""
    config = _load_config_or_exit(config_file)

    table = Table(title="Cluster Connectivity")
    table.add_column("Cluster", style="cyan", no_wrap=True)
    table.add_column("Context", style="dim")
    table.add_column("Status")

    targets = [(MANAGEMENT_CLUSTER, config.management_cluster)]
    targets += [(name, config.clusters[name]) for name in config.get_cluster_names()]

    failures = 0
    for name, cluster_config in targets:
        try:
            with KubernetesClient(cluster_config, name=name, retry_attempts=0) as client:
                reachable = client.check_connection()
        except KubernetesError as e:
            logger.debug("cluster_check_failed", cluster=name, error=str(e))
            reachable = False
        if not reachable:
            failures += 1
        status = "[green]reachable[/green]" if reachable else "[red]unreachable[/red]"
        table.add_row(name, cluster_config.context or "(current)", status)

    console.print(table)
    if failures:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
