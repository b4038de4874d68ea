"""
Workload Module - Black Box Interface

Purpose: Prepare the workloads that observed commands run against
Interface: create/delete namespaces, apply/delete manifests, wait_for_pods(),
           get_service_host_port(), annotate_pods()/unannotate_pods(), get_app_pods()
Hidden: kubectl invocations, JSON parsing, readiness rules

Can be replaced with a Kubernetes API client implementation.
"""

from .workload import (
    KubectlWorkloadManager,
    Manifest,
    WorkloadManager,
    generate_namespace,
    pod_ready,
)

__all__ = [
    "KubectlWorkloadManager",
    "Manifest",
    "WorkloadManager",
    "generate_namespace",
    "pod_ready",
]
