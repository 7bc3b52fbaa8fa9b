"""Configuration module for Task Orchestra."""

from task_orchestra.config.limits import (
    LimitChecker,
    StaticLimitChecker,
    UsageLimits,
    estimate_tokens,
    validate_usage_limits,
)
from task_orchestra.config.settings import (
    DEFAULT_CONFIG_TEMPLATE,
    ENV_FIELDS,
    env_overrides,
    get_config_file,
    load_config,
    load_config_defaults,
    load_provider_settings,
    write_default_config,
)

__all__ = [
    "DEFAULT_CONFIG_TEMPLATE",
    "ENV_FIELDS",
    "LimitChecker",
    "StaticLimitChecker",
    "UsageLimits",
    "env_overrides",
    "estimate_tokens",
    "get_config_file",
    "load_config",
    "load_config_defaults",
    "load_provider_settings",
    "validate_usage_limits",
    "write_default_config",
]
