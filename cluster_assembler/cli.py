"""Main CLI entry point for cluster assembly."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cluster_assembler.exceptions import ClusterAssemblerError
from cluster_assembler.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="kubeassemble",
    help="Assemble kubeadm clusters over SSH",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


def _report_error(e: ClusterAssemblerError) -> None:
    logger.error(f"Assembly error: {e.message}")
    console.print(f"[red]Error:[/red] {e.message}")
    if e.details:
        console.print(f"\n{e.details}")


# Global callback to set up logging
@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


@app.command()
def version() -> None:
    """Show version information."""
    from cluster_assembler import __version__

    typer.echo(f"kubeassemble version {__version__}")


@app.command()
def images(
    filename: str = typer.Option(..., "--filename", "-f", help="Path to the cluster configuration"),
    all_images: bool = typer.Option(False, "--all", "-a", help="Include disabled images"),
) -> None:
    """
    List the container images the cluster needs.

    Images are selected from the Kubernetes version, container manager,
    network plugin and number of nodes in the configuration.
    """
    from cluster_assembler.images import images_for_cluster
    from cluster_assembler.models.cluster import ClusterConfig

    try:
        config = ClusterConfig.load(filename)
        manifest = images_for_cluster(config)
    except ClusterAssemblerError as e:
        _report_error(e)
        raise typer.Exit(code=1)

    table = Table(title=f"Images for cluster '{config.name}'")
    table.add_column("Name", style="cyan")
    table.add_column("Image", style="magenta")
    table.add_column("Group", style="green")
    table.add_column("Enabled", style="yellow")

    for image in manifest:
        if not image.enabled and not all_images:
            continue
        table.add_row(image.name, image.reference, image.group, "Yes" if image.enabled else "No")

    console.print(table)


@app.command()
def create(
    filename: str = typer.Option(..., "--filename", "-f", help="Path to the cluster configuration"),
    work_dir: str = typer.Option(
        "kubeassemble", "--work-dir", "-w", help="Local directory for generated files"
    ),
    sources_dir: str = typer.Option(
        "kubeassemble/binaries",
        "--sources",
        "-s",
        help="Directory holding <version>/<arch>/ binaries to upload",
    ),
    skip_pull_images: bool = typer.Option(
        False, "--skip-pull-images", help="Do not pre-pull container images"
    ),
    max_workers: int = typer.Option(10, "--max-workers", help="Hosts processed in parallel"),
) -> None:
    """
    Create a cluster, or extend an existing one with new hosts.

    The first master detects or initializes the control plane; every other
    host then joins as master or worker. Hosts already in the cluster are
    skipped.
    """
    from cluster_assembler.executor import SSHRunner
    from cluster_assembler.models.cluster import ClusterConfig
    from cluster_assembler.pipeline import AssemblyPipeline

    runners = []
    try:
        config = ClusterConfig.load(filename)
        runners = [SSHRunner(node) for node in config.hosts]
        pipeline = AssemblyPipeline(
            config,
            runners,
            work_dir=work_dir,
            sources_dir=sources_dir,
            max_workers=max_workers,
            skip_pull_images=skip_pull_images,
        )

        console.print(f"[bold cyan]Assembling cluster '{config.name}'[/bold cyan]")
        console.print(f"Hosts: {len(config.hosts)} ({len(config.masters)} master(s))")
        state = pipeline.run()

        console.print(f"\n[green]✓[/green] Cluster '{config.name}' is ready")
        if state.version:
            console.print(f"  Version: {state.version}")
        console.print(f"  Kubeconfig: {pipeline.kubeconfig.local_path}")

    except ClusterAssemblerError as e:
        _report_error(e)
        raise typer.Exit(code=1)
    except Exception as e:
        logger.error(f"Unexpected error during assembly: {e}", exc_info=True)
        console.print(f"[red]Unexpected error:[/red] {e}")
        console.print("\nRun with --verbose --log-file debug.log for more details")
        raise typer.Exit(code=1)
    finally:
        for runner in runners:
            runner.close()


@app.command()
def join_command(
    filename: str = typer.Option(..., "--filename", "-f", help="Path to the cluster configuration"),
    work_dir: str = typer.Option(
        "kubeassemble", "--work-dir", "-w", help="Local directory for generated files"
    ),
) -> None:
    """
    Print fresh join commands for an existing cluster.
    """
    from cluster_assembler.executor import SSHRunner
    from cluster_assembler.models.cluster import ClusterConfig
    from cluster_assembler.pipeline import AssemblyPipeline

    try:
        config = ClusterConfig.load(filename)
        with SSHRunner(config.driver) as driver:
            pipeline = AssemblyPipeline(config, [driver], work_dir=work_dir, sources_dir=work_dir)
            state = pipeline.detect()
    except ClusterAssemblerError as e:
        _report_error(e)
        raise typer.Exit(code=1)

    if not state.exists:
        console.print(f"[yellow]No cluster found on {config.driver.name}[/yellow]")
        raise typer.Exit(code=1)

    console.print("[bold]Worker:[/bold]")
    console.print(state.worker_join_command, soft_wrap=True)
    console.print("\n[bold]Master:[/bold]")
    console.print(state.master_join_command, soft_wrap=True)
