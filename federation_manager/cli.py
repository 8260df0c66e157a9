"""Main CLI entry point for the federation manager."""

import signal
import threading
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from federation_manager.config import ControllerConfig
from federation_manager.exceptions import FederationError
from federation_manager.logging_config import get_logger, setup_logging
from federation_manager.models.cluster import ConditionStatus, ConditionType, is_cluster_ready

app = typer.Typer(
    name="fed-mgr",
    help="Multi-cluster federation control plane",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


def _fail(error: FederationError) -> None:
    console.print(f"[red]Error:[/red] {error.message}")
    if error.details:
        console.print(f"\n{error.details}")
    raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show version information."""
    from federation_manager import __version__

    typer.echo(f"Federation manager version {__version__}")


@app.command()
def run(
    config_file: str | None = typer.Option(None, "--config", "-c", help="Controller configuration YAML"),
    kubeconfig: str | None = typer.Option(None, "--kubeconfig", help="Kubeconfig of the host cluster"),
    context: str | None = typer.Option(None, "--context", help="Kubeconfig context to use"),
    metrics_port: int | None = typer.Option(None, "--metrics-port", help="Serve Prometheus metrics on this port"),
    minimize_latency: bool = typer.Option(
        False, "--minimize-latency", help="Shrink all delays (for test environments)"
    ),
) -> None:
    """
    Run the cluster health monitor and DNS controllers.

    Runs until interrupted with SIGINT or SIGTERM.
    """
    from federation_manager import metrics
    from federation_manager.client import HostClient, load_api_client
    from federation_manager.controllers.context import ControllerContext
    from federation_manager.manager import ControllerManager

    try:
        config = ControllerConfig.load(config_file) if config_file else ControllerConfig()
        if minimize_latency:
            config.apply_minimized_latency()
        api_client = load_api_client(kubeconfig, context)
    except FederationError as e:
        _fail(e)

    host_client = HostClient(api_client, config.federation_namespace)
    manager = ControllerManager(ControllerContext.for_host(host_client, config))

    if metrics_port:
        metrics.serve(metrics_port)

    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    console.print(
        f"[bold cyan]Federation manager running[/bold cyan] "
        f"(namespace {config.federation_namespace}, probe period {config.health_check.period}s)"
    )
    manager.run(stop_event)
    console.print("[green]Stopped[/green]")


@app.command()
def clusters(
    kubeconfig: str | None = typer.Option(None, "--kubeconfig", help="Kubeconfig of the host cluster"),
    context: str | None = typer.Option(None, "--context", help="Kubeconfig context to use"),
    namespace: str = typer.Option(
        ControllerConfig().federation_namespace, "--namespace", "-n", help="Federation namespace"
    ),
) -> None:
    """List member clusters with their published health and topology."""
    from federation_manager.client import HostClient, load_api_client

    try:
        host_client = HostClient(load_api_client(kubeconfig, context), namespace)
        memberships = host_client.list_clusters()
    except FederationError as e:
        _fail(e)

    if not memberships:
        console.print(f"[yellow]No member clusters found in namespace {namespace}[/yellow]")
        return

    table = Table(title="Member Clusters")
    table.add_column("Name", style="cyan")
    table.add_column("Endpoint", style="magenta")
    table.add_column("Ready", style="green")
    table.add_column("Offline", style="red")
    table.add_column("Zones", style="yellow")
    table.add_column("Region", style="yellow")
    table.add_column("Version", style="blue")

    for membership in sorted(memberships, key=lambda m: m.name):
        status = membership.status
        offline = status.get_condition(ConditionType.OFFLINE) if status else None
        table.add_row(
            membership.name,
            membership.api_endpoint,
            "✓ Ready" if is_cluster_ready(status) else "✗ Not ready",
            "Yes" if offline is not None and offline.status == ConditionStatus.TRUE else "No",
            ", ".join(status.zones) if status else "",
            (status.region or "") if status else "",
            (status.kubernetes_version or "") if status else "",
        )

    console.print(table)
    ready = sum(1 for m in memberships if is_cluster_ready(m.status))
    console.print(f"\n[bold]Ready:[/bold] {ready}/{len(memberships)}")


if __name__ == "__main__":
    app()
