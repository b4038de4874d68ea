"""
Kubeobserve - Command Observation for Kubernetes Workloads

Runs long-lived commands inside pods, captures their output as it streams
and waits for expected lines or readiness conditions with bounded timeouts.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- executor: kubectl-backed remote execution (one-shot and streaming)
- poller: timeout-bounded readiness polling
- background: background command handles and their scopes
- watcher: pattern waits over captured output
- workload: namespaces, manifests, pod readiness, services, annotations
- hubble: Hubble flow observation built on the modules above
"""

__version__ = "1.0.0"
