"""
Executor Module - Black Box Interface

Purpose: Run commands inside Kubernetes pods
Interface: run_sync() for one-shot commands, run_async() for streaming ones
Hidden: kubectl invocation, argument building, stream setup

Can be replaced with different execution mechanisms (direct K8s API, SSH).
"""

from .executor import CmdResult, KubectlExecutor, PodTarget, RemoteExecutor

__all__ = ["CmdResult", "KubectlExecutor", "PodTarget", "RemoteExecutor"]
