"""
Poller Module - Black Box Interface

Purpose: Wait for readiness by repeatedly invoking a boolean probe
Interface: poll(), TimeoutConfig
Hidden: Scheduling, attempt accounting, probe error handling
"""

from .poller import DEFAULT_POLL_INTERVAL, Probe, TimeoutConfig, poll

__all__ = ["DEFAULT_POLL_INTERVAL", "Probe", "TimeoutConfig", "poll"]
