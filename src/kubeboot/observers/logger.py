# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/observers/logger.py

import logging
from typing import Dict

from ..utils.serialize import to_jsonable
from .events import BaseEvent

# run-wide context is already in the log file name and header
_CONTEXT = ("ts", "run_id", "env", "cluster")


class LoggerObserver:
    """Copies events into the run log so the file trace has them in order with the SSH output."""

    def __init__(self, logger: logging.Logger, level: int = logging.DEBUG):
        self.logger = logger
        self.level = level

    @staticmethod
    def describe(event: BaseEvent) -> str:
        fields: Dict[str, object] = to_jsonable(event)
        return " ".join(f"{k}={v}" for k, v in fields.items() if k not in _CONTEXT and v is not None)

    def notify(self, event: BaseEvent) -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        self.logger.log(self.level, "[EVENT] %s: %s", type(event).__name__, self.describe(event))
