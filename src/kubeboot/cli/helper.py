# src/kubeboot/cli/helper.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import typer

from ..config.loader import load_config
from ..config.models import KubebootConfig
from ..deploy.errors import ConfigurationError
from ..deploy.executor import MachineStatus, RunReport
from ..deploy.planner import StageGraph
from ..inventory.loader import load_inventory
from ..inventory.models import Inventory, Role
from ..observers.console import ConsoleObserver
from ..observers.dispatcher import EventBus
from ..observers.jsonfile import JsonFileObserver
from ..observers.logger import LoggerObserver
from ..state.store import StateStore

_STATUS_COLORS = {
    MachineStatus.CONVERGED: typer.colors.GREEN,
    MachineStatus.FATAL: typer.colors.RED,
    MachineStatus.DEGRADED: typer.colors.RED,
    MachineStatus.ABORTED: typer.colors.YELLOW,
}


def load_inputs(config: str, inventory: Optional[Path] = None) -> Tuple[KubebootConfig, Inventory]:
    """Config + inventory; --inventory wins over the config's own path."""
    cfg = load_config(config)
    path = inventory or cfg.inventory
    if not path:
        raise ConfigurationError("No inventory given: pass --inventory or set 'inventory' in the config")
    return cfg, load_inventory(path)


def build_bus(logger: logging.Logger, run_id: str, verbose: bool = False) -> EventBus:
    return EventBus(
        observers=[
            ConsoleObserver(verbose=verbose),
            LoggerObserver(logger),
            JsonFileObserver(Path.home() / ".kubeboot/logs" / f"{run_id}.jsonl"),
        ]
    )


def _table(headers: List[str], rows: List[List[str]]) -> List[str]:
    widths = [max(len(str(c)) for c in col) for col in zip(headers, *rows)]
    fmt = "  ".join(f"{{:<{w}}}" for w in widths)
    out = [fmt.format(*headers), fmt.format(*("-" * w for w in widths))]
    out.extend(fmt.format(*r) for r in rows)
    return out


def print_plan(graphs: Dict[Role, StageGraph]) -> None:
    for role, graph in graphs.items():
        typer.secho(f"{role.value} ({len(graph)} steps)", bold=True)
        for i, s in enumerate(graph, 1):
            deps = f"  <- {', '.join(s.depends_on)}" if s.depends_on else ""
            gate = f"  [waits for {s.gate.value}]" if s.gate else ""
            typer.echo(f"  {i:2d}. {s.id}{deps}{gate}")


def print_report(report: RunReport) -> None:
    typer.echo("")
    step_ids: List[str] = []
    for m in report.machines:
        for sid in m.steps:
            if sid not in step_ids:
                step_ids.append(sid)

    rows = []
    for sid in step_ids:
        rows.append([sid] + [m.steps[sid].value if sid in m.steps else "-" for m in report.machines])
    for line in _table(["step"] + [m.machine for m in report.machines], rows):
        typer.echo(line)

    typer.echo("")
    for m in report.machines:
        detail = f" first failure: {m.first_failure}" if m.first_failure else ""
        if m.error:
            detail += f" ({m.error})"
        typer.secho(f"{m.machine:<20} {m.role:<14} {m.status.value}{detail}", fg=_STATUS_COLORS[m.status])

    typer.echo("")
    color = typer.colors.GREEN if report.ok else typer.colors.RED
    typer.secho(f"Run {report.run_id}: {report.summary()}", fg=color, bold=True)
    if report.degraded_reason:
        typer.secho(f"Degraded: {report.degraded_reason}", fg=typer.colors.RED)


def print_status(store: StateStore, inventory: Optional[Inventory] = None) -> None:
    latest = store.latest()
    hosts = [m.hostname for m in inventory] if inventory else sorted(latest)
    if not hosts:
        typer.echo("No execution records yet.")
    else:
        rows = []
        for host in hosts:
            for sid, rec in latest.get(host, {}).items():
                rows.append([host, sid, rec.status.value, str(rec.attempt), rec.ts, rec.reason or ""])
        for line in _table(["machine", "step", "status", "attempt", "at", "reason"], rows):
            typer.echo(line)

    token = store.get_token()
    typer.echo("")
    typer.echo(f"join token: {'stored (sha256:' + token.fingerprint + ')' if token else 'none'}")
