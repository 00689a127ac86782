# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/observers/jsonfile.py

import json
from pathlib import Path
from typing import Iterable

from ..utils.serialize import to_jsonable
from .events import BaseEvent


class JsonFileObserver:
    """
    Event trail for one run as JSON lines: ``{"type": "<EventClass>", ...}``
    per event, appended and flushed immediately, so an interrupted run
    leaves every line it got to. ``jq`` or ``kubeboot status`` can read it
    back next to the state journal.

    *exclude* names event types that are too chatty to keep (for example
    ``LivenessChecked`` on a slow API server).
    """

    def __init__(self, path: str | Path, *, exclude: Iterable[str] = ()):
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.exclude = frozenset(exclude)

    def notify(self, event: BaseEvent) -> None:
        kind = type(event).__name__
        if kind in self.exclude:
            return
        record = {"type": kind}
        record.update(to_jsonable(event))
        line = json.dumps(record, separators=(",", ":"), default=str)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
            fh.flush()
