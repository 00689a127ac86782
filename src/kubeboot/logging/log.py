# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/kubeboot/logging/log.py

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# third-party loggers that drown out our own at DEBUG
QUIET = ("paramiko", "urllib3")


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "kubeboot",
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    One log file per run with the full DEBUG trace, plus console output at
    INFO (DEBUG with --debug). Machine threads log through the same logger,
    so the thread name goes into every line.

    Returns (logger, run_id, log_path); the run_id is shared with the
    event observers.
    """
    run_id = str(uuid.uuid4())
    base_dir = base_dir or Path.home() / ".kubeboot" / "logs"
    base_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{stamp}-{run_id}.log"

    logger = logging.getLogger(name)
    # a second init in the same process (tests, repeated CLI calls) starts clean
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(_handler(logging.FileHandler(log_path), logging.DEBUG))
    logger.addHandler(_handler(logging.StreamHandler(), logging.DEBUG if verbose else logging.INFO))

    for noisy in QUIET:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("kubeboot run %s started, full trace in %s", run_id, log_path)
    return logger, run_id, log_path
