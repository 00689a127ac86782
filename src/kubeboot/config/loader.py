# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/config/loader.py

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..deploy.errors import ConfigurationError
from .models import KubebootConfig

log = logging.getLogger("kubeboot")

SECRETS_ENV = "KUBEBOOT_SECRETS_FILE"


def merge_overrides(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Nested mappings merge key by key; any other override value replaces the
    base value unless it is empty (None or ""). Returns a new dict.
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_overrides(current, value)
        elif value is not None and value != "":
            merged[key] = value
    return merged


def _secrets_path(config_path: Path) -> Optional[Path]:
    explicit = os.environ.get(SECRETS_ENV)
    if explicit:
        candidate = Path(explicit).expanduser()
        if not candidate.is_file():
            log.warning("%s=%s does not exist, ignoring it", SECRETS_ENV, explicit)
            return None
        return candidate
    sibling = config_path.parent / "secrets.yaml"
    return sibling if sibling.is_file() else None


def _read_yaml(path: Path) -> Dict[str, Any]:
    """YAML mapping with ${VAR} references expanded from the environment."""
    try:
        data = yaml.safe_load(os.path.expandvars(path.read_text()))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path} is not valid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def load_config(path: str | Path) -> KubebootConfig:
    """
    Read and validate a cluster definition.

    Credentials can stay out of the main file: a ``secrets.yaml`` beside it
    (or wherever ``KUBEBOOT_SECRETS_FILE`` points) with the same layout is
    merged over it before validation. ``${VAR}`` placeholders work in both.
    A relative ``inventory`` is taken relative to the config file.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Config file not found: {path}")

    data = _read_yaml(path)
    secrets = _secrets_path(path)
    if secrets is not None:
        log.debug("merging %s over %s", secrets, path)
        data = merge_overrides(data, _read_yaml(secrets))

    try:
        cfg = KubebootConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config {path}: {e}") from e

    if cfg.inventory and not Path(cfg.inventory).expanduser().is_absolute():
        cfg.inventory = str(path.parent / cfg.inventory)
    return cfg
