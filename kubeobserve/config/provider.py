"""Configuration provider following Black Box Design principles."""
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import yaml


@dataclass(frozen=True)
class ExecutorConfig:
    """kubectl execution configuration."""
    kubectl_binary: str = "kubectl"
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    shell: str = "sh"
    stream_limit: int = 1024 * 1024

    def base_args(self) -> list:
        """kubectl invocation prefix including cluster selection flags."""
        args = [self.kubectl_binary]
        if self.kubeconfig:
            args += ["--kubeconfig", self.kubeconfig]
        if self.context:
            args += ["--context", self.context]
        return args


@dataclass(frozen=True)
class TimeoutDefaults:
    """Default durations in seconds."""
    short_command_timeout: float = 10.0
    mid_command_timeout: float = 30.0
    helper_timeout: float = 240.0
    poll_interval: float = 1.0
    cancel_grace_period: float = 5.0


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_executor_config(self) -> ExecutorConfig:
        """Get executor configuration."""
        ...

    def get_timeout_defaults(self) -> TimeoutDefaults:
        """Get timeout defaults."""
        ...


def _number(name: str, raw: Any, cast=float):
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


class EnvConfigProvider:
    """Environment-based configuration provider."""

    TIMEOUT_ENV = {
        "short_command_timeout": "SHORT_COMMAND_TIMEOUT",
        "mid_command_timeout": "MID_COMMAND_TIMEOUT",
        "helper_timeout": "HELPER_TIMEOUT",
        "poll_interval": "POLL_INTERVAL",
        "cancel_grace_period": "CANCEL_GRACE_PERIOD",
    }

    def get_executor_config(self) -> ExecutorConfig:
        """Get executor configuration from environment variables."""
        return ExecutorConfig(
            kubectl_binary=os.getenv("KUBEOBSERVE_KUBECTL", "kubectl"),
            kubeconfig=os.getenv("KUBECONFIG") or None,
            context=os.getenv("KUBEOBSERVE_CONTEXT") or None,
            shell=os.getenv("KUBEOBSERVE_SHELL", "sh"),
            stream_limit=_number(
                "KUBEOBSERVE_STREAM_LIMIT",
                os.getenv("KUBEOBSERVE_STREAM_LIMIT", str(1024 * 1024)),
                int,
            ),
        )

    def get_timeout_defaults(self) -> TimeoutDefaults:
        """Get timeout defaults from environment variables."""
        values = {}
        for field_name, env_name in self.TIMEOUT_ENV.items():
            raw = os.getenv(env_name)
            if raw is not None:
                values[field_name] = _number(env_name, raw)
        return TimeoutDefaults(**values)


class YamlConfigProvider:
    """
    File-based configuration provider.

    Expected layout:

        executor:
          kubectlBinary: kubectl
          context: kind-kind
          shell: sh
        timeouts:
          shortCommandTimeout: 10
          helperTimeout: 240
    """

    def __init__(self, path: str):
        self.path = Path(path)
        with self.path.open() as f:
            self._data: Dict[str, Any] = yaml.safe_load(f) or {}
        if not isinstance(self._data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")

    @staticmethod
    def _camel(name: str) -> str:
        head, *rest = name.split("_")
        return head + "".join(part.title() for part in rest)

    def _section(self, name: str, cls) -> Dict[str, Any]:
        section = self._data.get(name) or {}
        values = {}
        for f in fields(cls):
            key = self._camel(f.name)
            if key in section:
                values[f.name] = section[key]
        return values

    def get_executor_config(self) -> ExecutorConfig:
        """Get executor configuration from the YAML file."""
        values = self._section("executor", ExecutorConfig)
        if "stream_limit" in values:
            values["stream_limit"] = _number("executor.streamLimit", values["stream_limit"], int)
        return ExecutorConfig(**values)

    def get_timeout_defaults(self) -> TimeoutDefaults:
        """Get timeout defaults from the YAML file."""
        values = {
            name: _number(f"timeouts.{self._camel(name)}", raw)
            for name, raw in self._section("timeouts", TimeoutDefaults).items()
        }
        return TimeoutDefaults(**values)


def get_config_provider() -> ConfigProvider:
    """Use KUBEOBSERVE_CONFIG when it names a file, otherwise the environment."""
    path = os.getenv("KUBEOBSERVE_CONFIG")
    if path:
        return YamlConfigProvider(path)
    return EnvConfigProvider()
