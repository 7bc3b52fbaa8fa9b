"""
Configuration loading for Task Orchestra.

Settings come from three layers, later layers winning:

1. :class:`~task_orchestra.protocol.types.OrchestraConfig` defaults
2. ``~/.config/task-orchestra/config.yaml``: the ``defaults`` section, plus
   per-provider initialization settings from the ``providers`` section
3. Environment variables

Environment Variables:
    ORCHESTRA_PROVIDERS: Comma-separated provider names (e.g. "claude,codex")
    ORCHESTRA_DEFAULT_PROVIDER
    ORCHESTRA_TIMEOUT_MS
    ORCHESTRA_CONSENSUS_MODE: majority, byzantine or raft
    ORCHESTRA_FAULT_TOLERANCE
    ORCHESTRA_AUTO_VALIDATE
    ORCHESTRA_COORDINATOR
    ORCHESTRA_MAX_RETRIES
    ORCHESTRA_ENABLE_HEALTH_CHECK
    ORCHESTRA_ENABLE_MEMORY
    ORCHESTRA_MEMORY_DB_PATH
    ORCHESTRA_MEMORY_NAMESPACE
    ORCHESTRA_ENFORCE_LIMITS: Check usage limits (see config.limits) before dispatch
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from task_orchestra.protocol.types import OrchestraConfig

logger = logging.getLogger(__name__)

# env var -> OrchestraConfig field
ENV_FIELDS: dict[str, str] = {
    "ORCHESTRA_PROVIDERS": "providers",
    "ORCHESTRA_DEFAULT_PROVIDER": "default_provider",
    "ORCHESTRA_TIMEOUT_MS": "timeout_ms",
    "ORCHESTRA_CONSENSUS_MODE": "consensus_mode",
    "ORCHESTRA_FAULT_TOLERANCE": "fault_tolerance",
    "ORCHESTRA_AUTO_VALIDATE": "auto_validate",
    "ORCHESTRA_COORDINATOR": "coordinator_provider",
    "ORCHESTRA_MAX_RETRIES": "max_retries",
    "ORCHESTRA_ENABLE_HEALTH_CHECK": "enable_health_check",
    "ORCHESTRA_ENABLE_MEMORY": "enable_memory",
    "ORCHESTRA_MEMORY_DB_PATH": "memory_db_path",
    "ORCHESTRA_MEMORY_NAMESPACE": "memory_namespace",
    "ORCHESTRA_ENFORCE_LIMITS": "enforce_limits",
}

DEFAULT_CONFIG_TEMPLATE = """\
# Task Orchestra Configuration

# Provider initialization settings, passed to each adapter's initialize()
providers:
  - name: claude
    # cli_path: /usr/local/bin/claude
    # model: claude-3-5-sonnet-20241022
  - name: openai
    # api_key: ${OPENAI_API_KEY}
    model: gpt-4o-mini

# Default settings for 'orchestra run'
defaults:
  # Providers to create adapters for when --providers is not given
  providers:
    - claude
  timeout_ms: 300000
  consensus_mode: majority
  fault_tolerance: 0.33
  max_retries: 0
  auto_validate: false
  # Check ORCHESTRA_MAX_* usage limits before dispatch
  enforce_limits: false
"""


def get_config_file() -> Path:
    """Get the config file path. Computed at runtime for test compatibility."""
    return Path.home() / ".config" / "task-orchestra" / "config.yaml"


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (yaml.YAMLError, OSError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: top level is not a mapping", path)
        return {}
    return data


def load_config_defaults(path: Path | None = None) -> dict[str, Any]:
    """Load the ``defaults`` section of the config file.

    Returns:
        Dictionary with default values from config file, or empty dict if not found.
    """
    defaults = _read_config_file(path or get_config_file()).get("defaults") or {}
    return dict(defaults) if isinstance(defaults, dict) else {}


def load_provider_settings(path: Path | None = None) -> dict[str, dict[str, Any]]:
    """Load per-provider settings from the ``providers`` section of the config file."""

    entries = _read_config_file(path or get_config_file()).get("providers") or []
    settings: dict[str, dict[str, Any]] = {}
    for entry in entries:
        if isinstance(entry, dict) and entry.get("name"):
            values = {k: v for k, v in entry.items() if k != "name" and v is not None}
            settings[str(entry["name"]).strip().lower()] = values
    return settings


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect ``ORCHESTRA_*`` overrides as raw values keyed by config field."""

    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for var, field_name in ENV_FIELDS.items():
        raw = env.get(var)
        if raw is None or not raw.strip():
            continue
        if field_name == "providers":
            overrides[field_name] = [p.strip() for p in raw.split(",") if p.strip()]
        else:
            overrides[field_name] = raw.strip()
    return overrides


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> OrchestraConfig:
    """Build an :class:`OrchestraConfig` from file, environment and *overrides*.

    Args:
        path: Config file to read (default: ~/.config/task-orchestra/config.yaml)
        environ: Environment mapping (default: os.environ)
        **overrides: Explicit values that win over every other layer; None is ignored

    Returns:
        The merged configuration
    """
    values: dict[str, Any] = load_config_defaults(path)
    provider_settings = load_provider_settings(path)
    if provider_settings:
        values["provider_settings"] = {
            **provider_settings,
            **(values.get("provider_settings") or {}),
        }
    values.update(env_overrides(environ))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return OrchestraConfig.model_validate(values)


def write_default_config(path: Path | None = None) -> Path:
    """Write the starter config file and return its path."""

    config_file = path or get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(DEFAULT_CONFIG_TEMPLATE)
    return config_file


__all__ = [
    "DEFAULT_CONFIG_TEMPLATE",
    "ENV_FIELDS",
    "env_overrides",
    "get_config_file",
    "load_config",
    "load_config_defaults",
    "load_provider_settings",
    "write_default_config",
]
