"""
Config Module - Black Box Interface

Purpose: Executor and timeout configuration
Interface: get_config_provider(), ExecutorConfig, TimeoutDefaults
Hidden: Config sources (environment, YAML file), value validation
"""

from .provider import (
    ConfigProvider,
    EnvConfigProvider,
    ExecutorConfig,
    TimeoutDefaults,
    YamlConfigProvider,
    get_config_provider,
)

__all__ = [
    "ConfigProvider",
    "EnvConfigProvider",
    "ExecutorConfig",
    "TimeoutDefaults",
    "YamlConfigProvider",
    "get_config_provider",
]
