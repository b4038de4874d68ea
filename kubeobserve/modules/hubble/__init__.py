"""
Hubble Module - Black Box Interface

Purpose: Observe network flows reported by Hubble in cilium agent pods
Interface: HubbleObserver.wait_ready(), wait_endpoints_ready(), observe(), find_cilium_pod(); FlowFilter
Hidden: cilium CLI invocation and argument rendering
"""

from .hubble import (
    CILIUM_NAMESPACE,
    CILIUM_SELECTOR,
    ENDPOINT_READY_STATE,
    L3_L4_FLOW,
    L7_FLOW,
    PROXY_VISIBILITY_ANNOTATION,
    FlowFilter,
    HubbleObserver,
)

__all__ = [
    "CILIUM_NAMESPACE",
    "CILIUM_SELECTOR",
    "ENDPOINT_READY_STATE",
    "L3_L4_FLOW",
    "L7_FLOW",
    "PROXY_VISIBILITY_ANNOTATION",
    "FlowFilter",
    "HubbleObserver",
]
