# src/kubeboot/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from kubeboot.bootstrap.stages import build_catalogue, stage_graphs
from kubeboot.collaborators.probe import build_probe
from kubeboot.collaborators.session import ssh_session_factory
from kubeboot.config.loader import load_config
from kubeboot.deploy.coordinator import ClusterCoordinator
from kubeboot.deploy.errors import ConfigurationError
from kubeboot.deploy.executor import Executor, ExecutorOptions
from kubeboot.inventory.loader import load_inventory
from kubeboot.logging.log import init_logging
from kubeboot.observers.events import new_ctx
from kubeboot.state.store import StateStore

from kubeboot.cli.helper import (
    build_bus,
    load_inputs,
    print_plan,
    print_report,
    print_status,
)


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="kubeboot: bootstrap a kubeadm cluster over SSH")

EXIT_CONFIG = 2


def _fail_config(err: Exception) -> None:
    typer.secho(f"Configuration error: {err}", fg=typer.colors.RED, err=True)
    raise typer.Exit(EXIT_CONFIG)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
    inventory: Optional[Path] = typer.Option(None, "--inventory", "-i", help="YAML or INI inventory"),
    state: Optional[Path] = typer.Option(None, "--state", help="State journal (default from config)"),
    debug: bool = typer.Option(False, "--debug"),
):
    """
    Bootstrap every machine in the inventory. Safe to re-run: finished
    steps are skipped. Ctrl-C stops scheduling new steps.
    """
    logger, run_id, log_path = init_logging(verbose=debug)

    try:
        cfg, inv = load_inputs(config, inventory)
    except ConfigurationError as e:
        _fail_config(e)

    run_ctx = new_ctx(env=cfg.environment, cluster=cfg.cluster.name, run_id=run_id)
    bus = build_bus(logger, run_id, verbose=debug)

    try:
        graphs = stage_graphs(build_catalogue(cfg.cluster), bus=bus, run_ctx=run_ctx)
    except ConfigurationError as e:
        _fail_config(e)

    store = StateStore(state or cfg.execution.state_path)
    liveness = cfg.execution.liveness
    coordinator = ClusterCoordinator(
        store,
        [w.hostname for w in inv.workers],
        probe=build_probe(cfg, inv.control_plane),
        probe_attempts=liveness.attempts,
        probe_interval=liveness.interval_seconds,
        bus=bus,
        run_ctx=run_ctx,
    )
    executor = Executor(
        inv,
        graphs,
        store,
        coordinator,
        ssh_session_factory(cfg),
        options=ExecutorOptions.from_spec(cfg.execution),
        bus=bus,
        run_ctx=run_ctx,
    )

    report = executor.run()
    print_report(report)
    typer.echo(f"Log file: {log_path}")
    raise typer.Exit(report.exit_code)


@app.command()
def plan(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
    inventory: Optional[Path] = typer.Option(None, "--inventory", "-i", help="Also validate this inventory"),
):
    """Print each role's step order without touching any machine."""
    try:
        cfg = load_config(config)
        graphs = stage_graphs(build_catalogue(cfg.cluster))
        path = inventory or cfg.inventory
        inv = load_inventory(path) if path else None
    except ConfigurationError as e:
        _fail_config(e)
    print_plan(graphs)
    if inv is not None:
        typer.echo("")
        typer.echo(f"control plane: {inv.control_plane.hostname} ({inv.control_plane.address})")
        typer.echo(f"workers: {', '.join(m.hostname for m in inv.workers) or 'none'}")


@app.command()
def status(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
    state: Optional[Path] = typer.Option(None, "--state", help="State journal (default from config)"),
    inventory: Optional[Path] = typer.Option(None, "--inventory", "-i"),
):
    """Show the latest recorded status of every step."""
    try:
        cfg = load_config(config)
        path = inventory or cfg.inventory
        inv = load_inventory(path) if path else None
    except ConfigurationError as e:
        _fail_config(e)

    journal = Path(state or cfg.execution.state_path)
    if not journal.exists():
        typer.echo(f"No state journal at {journal}")
        raise typer.Exit(0)
    print_status(StateStore(journal), inv)


if __name__ == "__main__":
    app()
