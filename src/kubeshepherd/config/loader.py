# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from .models import ShepherdConfig

log = logging.getLogger("kubeshepherd")

# environment variable -> top-level config key
_ENV_OVERRIDES = {
    "KUBESHEPHERD_STATE_DIR": "state_dir",
    "KUBESHEPHERD_BUNDLE_ROOT": "bundle_root",
}


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        elif value not in (None, ""):
            base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml:

    1. KUBESHEPHERD_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the config
    """
    env = os.environ.get("KUBESHEPHERD_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("KUBESHEPHERD_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p
    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def _apply_env_overrides(data: dict) -> dict:
    for env, key in _ENV_OVERRIDES.items():
        value = os.environ.get(env)
        if value:
            log.debug("%s overrides %s", env, key)
            data[key] = value
    return data


def load_config(path: str | Path | None = None) -> ShepherdConfig:
    """
    Load and validate a kubeshepherd YAML config.

    ``None`` means no file: defaults plus environment overrides. SSH
    passwords and similar secrets can live in a ``secrets.yaml`` with
    the same structure; it is deep-merged before validation.
    """
    data: dict = {}
    if path is not None:
        path = Path(path)
        data = _load_yaml(path)

        secrets_path = _find_secrets_file(path)
        if secrets_path:
            log.debug("Merging secrets from %s", secrets_path)
            _deep_merge(data, _load_yaml(secrets_path))

    _apply_env_overrides(data)
    return ShepherdConfig.model_validate(data)
