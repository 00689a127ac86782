# src/kubeboot/observers/console.py
import typer

from .events import BaseEvent

_QUIET = {"StepAttempt", "LivenessChecked"}
_COLORS = {
    "StepFailed": typer.colors.RED,
    "StepAborted": typer.colors.YELLOW,
    "StepSucceeded": typer.colors.GREEN,
    "PhaseChanged": typer.colors.CYAN,
}


class ConsoleObserver:
    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def notify(self, event: BaseEvent) -> None:
        k = event.__class__.__name__
        if k in _QUIET and not self.verbose:
            return
        d = event.dict()
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in ("ts", "run_id", "env", "cluster"))
        typer.secho(f"[{d['ts']}] {k} {data}", fg=_COLORS.get(k))
