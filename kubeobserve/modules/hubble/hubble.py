"""
Hubble flow observation on top of the background and poller modules.

``cilium observe`` runs inside the cilium agent pod; with ``--follow`` it
streams one JSON flow per line, which is what the pattern watcher consumes.
"""

import json
import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional, Union

from kubeobserve.config import TimeoutDefaults
from kubeobserve.errors import WorkloadError
from kubeobserve.modules.background import BackgroundCommand, CommandScope
from kubeobserve.modules.executor import PodTarget, RemoteExecutor
from kubeobserve.modules.poller import TimeoutConfig, poll
from kubeobserve.modules.workload import WorkloadManager

logger = logging.getLogger(__name__)

CILIUM_NAMESPACE = "kube-system"
CILIUM_SELECTOR = "k8s-app=cilium"
PROXY_VISIBILITY_ANNOTATION = "policy.cilium.io/proxy-visibility"

L3_L4_FLOW = '"Type":"L3_L4"'
L7_FLOW = '"Type":"L7"'

ENDPOINT_READY_STATE = "ready"


@dataclass
class FlowFilter:
    """Arguments for ``cilium observe``."""

    follow: bool = True
    last: Optional[int] = 1
    json: bool = True
    type: Optional[str] = None
    from_pod: Optional[str] = None
    to_label: Optional[str] = None
    to_namespace: Optional[str] = None
    to_port: Optional[int] = None
    protocol: Optional[str] = None
    since: Optional[str] = None

    def to_args(self) -> List[str]:
        args = []
        if self.follow:
            args.append("--follow")
        if self.since is not None:
            args += ["--since", self.since]
        if self.last is not None:
            args += ["--last", str(self.last)]
        if self.json:
            args.append("--json")
        options = [
            ("--type", self.type),
            ("--from-pod", self.from_pod),
            ("--to-label", self.to_label),
            ("--to-namespace", self.to_namespace),
            ("--to-port", self.to_port),
            ("--protocol", self.protocol),
        ]
        for flag, value in options:
            if value is not None:
                args += [flag, str(value)]
        return args

    def __str__(self) -> str:
        return shlex.join(self.to_args())


class HubbleObserver:
    """Readiness checks and flow observation against cilium agent pods."""

    def __init__(
        self,
        executor: RemoteExecutor,
        workload: Optional[WorkloadManager] = None,
        timeouts: Optional[TimeoutDefaults] = None,
        namespace: str = CILIUM_NAMESPACE,
        container: Optional[str] = None,
    ):
        self.executor = executor
        self.workload = workload
        self.timeouts = timeouts or TimeoutDefaults()
        self.namespace = namespace
        self.container = container

    def target(self, pod: str) -> PodTarget:
        return PodTarget(self.namespace, pod, self.container)

    async def wait_ready(self, pod: str) -> int:
        """
        Wait until Hubble in ``pod`` answers queries.

        Each attempt runs ``cilium observe --since 0`` bounded by the short
        command timeout; the whole wait is bounded by the mid command timeout.

        Returns:
            Number of attempts it took
        """
        target = self.target(pod)

        def hubble_ready() -> bool:
            res = self.executor.run_sync(
                target, "cilium observe --since 0", timeout=self.timeouts.short_command_timeout
            )
            return res.was_successful()

        logger.info(f"Waiting for Hubble to become ready on cilium pod {pod}")
        return await poll(
            hubble_ready,
            TimeoutConfig(
                timeout=self.timeouts.mid_command_timeout,
                interval=self.timeouts.poll_interval,
            ),
            f"timed out waiting for hubble to become ready on cilium pod {pod}",
        )

    async def wait_endpoints_ready(self, pod: str) -> int:
        """
        Wait until every endpoint managed by the cilium agent in ``pod`` is ready.

        Endpoints regenerate after policy-relevant changes such as the proxy
        visibility annotation; flows observed before that finishes may miss
        the L7 proxy. Each attempt lists endpoints with a short command
        timeout; the whole wait is bounded by the helper timeout.

        Returns:
            Number of attempts it took
        """
        target = self.target(pod)

        def endpoints_ready() -> bool:
            res = self.executor.run_sync(
                target, "cilium endpoint list -o json", timeout=self.timeouts.short_command_timeout
            )
            if not res.was_successful():
                return False
            try:
                endpoints = json.loads(res.stdout)
            except json.JSONDecodeError:
                logger.debug(f"Unparseable endpoint list from {pod}: {res.stdout[:200]}")
                return False
            states = [ep.get("status", {}).get("state") for ep in endpoints or []]
            not_ready = [state for state in states if state != ENDPOINT_READY_STATE]
            if not_ready:
                logger.debug(f"{len(not_ready)} of {len(states)} endpoints on {pod} not ready")
            return not not_ready

        logger.info(f"Waiting for endpoints on cilium pod {pod} to be ready")
        return await poll(
            endpoints_ready,
            TimeoutConfig(
                timeout=self.timeouts.helper_timeout,
                interval=self.timeouts.poll_interval,
            ),
            f"timed out waiting for endpoints on cilium pod {pod} to be ready",
        )

    async def observe(
        self, scope: CommandScope, pod: str, flow_filter: Union[FlowFilter, str]
    ) -> BackgroundCommand:
        """Start ``cilium observe`` in the background, owned by ``scope``."""
        cmd = f"cilium observe {flow_filter}"
        logger.info(f"Executing {cmd!r} on pod {self.namespace}/{pod}")
        return await scope.start(self.executor, self.target(pod), cmd)

    async def find_cilium_pod(self, node: str) -> str:
        """Name of the cilium agent pod scheduled on ``node``."""
        if self.workload is None:
            raise WorkloadError("a workload manager is required to look up cilium pods")
        pods = await self.workload.list_pods(self.namespace, CILIUM_SELECTOR)
        for pod in pods:
            if pod.get("spec", {}).get("nodeName") == node:
                return pod["metadata"]["name"]
        raise WorkloadError(f"Cannot get cilium pod on {node}")
