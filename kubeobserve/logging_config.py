"""
Logging configuration with suppression of per-attempt probe logs
"""

import logging
import logging.config
import os
from typing import Any, Dict, Optional

POLLER_LOGGER = "kubeobserve.modules.poller.poller"


class ProbeAttemptFilter(logging.Filter):
    """Filter to suppress per-attempt records from the readiness poller."""

    def __init__(self, enabled: Optional[bool] = None):
        super().__init__()
        if enabled is None:
            enabled = os.getenv("KUBEOBSERVE_LOG_PROBES", "false").lower() == "true"
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        """Drop poller attempt records unless probe logging is enabled."""
        if self.enabled:
            return True
        if record.name == POLLER_LOGGER and getattr(record, "probe_attempt", False):
            return False
        return True


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get logging configuration with probe attempt suppression."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "probe_attempt_filter": {
                "()": ProbeAttemptFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
                "filters": ["probe_attempt_filter"]
            }
        },
        "loggers": {
            "kubeobserve": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            }
        },
        "root": {
            "level": "WARNING",
            "handlers": ["default"]
        }
    }


def setup_logging(level: Optional[str] = None) -> None:
    """Apply the logging configuration, defaulting to LOG_LEVEL."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.config.dictConfig(get_logging_config(level))
