# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/state/store.py

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..deploy.errors import TokenConflict
from .models import ClusterToken, ExecutionRecord, StepStatus, utc_now

log = logging.getLogger("kubeboot")


class StateStore:
    """
    Append-only journal of execution records, one JSON object per line.

    Every ``record()`` is flushed and fsynced before it returns, so a crash
    never loses an acknowledged transition. On open the journal is replayed;
    the latest record per (machine, step) is authoritative.

    ``path=None`` keeps the journal in memory only.
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._latest: Dict[Tuple[str, str], ExecutionRecord] = {}
        self._history: Dict[Tuple[str, str], List[ExecutionRecord]] = {}
        # one join token per run; kubeadm tokens expire, so a resumed run mints its own
        self._tokens: Dict[Optional[str], ClusterToken] = {}
        self._last_token: Optional[ClusterToken] = None

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                self._replay()

    # ------------------ journal ------------------

    def _replay(self) -> None:
        assert self.path is not None
        for lineno, raw in enumerate(self.path.read_text(encoding="utf-8").splitlines(), 1):
            if not raw.strip():
                continue
            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                # a torn last line from an interrupted write
                log.warning("Skipping unreadable journal line %d in %s", lineno, self.path)
                continue
            kind = entry.get("kind")
            if kind == "record":
                self._index(ExecutionRecord.from_dict(entry))
            elif kind == "token":
                token = ClusterToken(entry["value"])
                self._tokens.setdefault(entry.get("run_id"), token)
                self._last_token = token
        log.debug(
            "Replayed %d step records from %s (token=%s)",
            len(self._latest), self.path, "yes" if self._last_token else "no",
        )

    def _append(self, entry: dict) -> None:
        if self.path is None:
            return
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")
            f.flush()
            os.fsync(f.fileno())

    def _index(self, rec: ExecutionRecord) -> None:
        key = (rec.machine, rec.step)
        self._latest[key] = rec
        self._history.setdefault(key, []).append(rec)

    # ------------------ records ------------------

    def get(self, machine: str, step: str) -> Optional[ExecutionRecord]:
        with self._lock:
            return self._latest.get((machine, step))

    def history(self, machine: str, step: str) -> List[ExecutionRecord]:
        with self._lock:
            return list(self._history.get((machine, step), []))

    def record(
        self,
        machine: str,
        step: str,
        status: StepStatus,
        *,
        attempt: int = 0,
        reason: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> ExecutionRecord:
        rec = ExecutionRecord(
            machine=machine,
            step=step,
            status=status,
            attempt=attempt,
            run_id=run_id,
            reason=reason,
        )
        with self._lock:
            self._append({"kind": "record", **rec.dict()})
            self._index(rec)
        return rec

    def latest(self) -> Dict[str, Dict[str, ExecutionRecord]]:
        """machine -> step -> latest record."""
        out: Dict[str, Dict[str, ExecutionRecord]] = {}
        with self._lock:
            for (machine, step), rec in self._latest.items():
                out.setdefault(machine, {})[step] = rec
        return out

    # ------------------ token ------------------

    def get_token(self, run_id: Optional[str] = None) -> Optional[ClusterToken]:
        """
        The token published by run *run_id*, or the most recently published
        one (from any run) when *run_id* is None.
        """
        with self._lock:
            if run_id is None:
                return self._last_token
            return self._tokens.get(run_id)

    def set_token(self, token: ClusterToken, *, run_id: Optional[str] = None) -> bool:
        """
        Set-once per run. Offering the run's stored value again is a no-op
        (returns False); a different value within the same run raises
        TokenConflict. Later runs publish their own token.
        """
        with self._lock:
            current = self._tokens.get(run_id)
            if current is not None:
                if current.value == token.value:
                    return False
                raise TokenConflict(
                    f"join token already set for this run ({current!r}); refusing {token!r}"
                )
            self._append({"kind": "token", "value": token.value, "ts": utc_now(), "run_id": run_id})
            self._tokens[run_id] = token
            self._last_token = token
            return True
