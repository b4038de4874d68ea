import asyncio
import json
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

import yaml

from kubeobserve.config import TimeoutDefaults
from kubeobserve.errors import WorkloadError
from kubeobserve.modules.executor import CmdResult, KubectlExecutor
from kubeobserve.modules.poller import TimeoutConfig, poll

logger = logging.getLogger(__name__)

Manifest = Union[str, Path, Dict[str, Any], List[Dict[str, Any]]]


def generate_namespace(prefix: str = "kubeobserve") -> str:
    """Unique, DNS-1123 compliant namespace name for one test run."""
    base = re.sub(r"[^a-z0-9-]+", "-", prefix.lower()).strip("-")[:50] or "kubeobserve"
    return f"{base}-{uuid.uuid4().hex[:8]}"


def pod_ready(pod: Dict[str, Any]) -> bool:
    """A pod is ready when it runs, is not terminating and all containers are ready."""
    if pod.get("metadata", {}).get("deletionTimestamp"):
        return False
    status = pod.get("status", {})
    if status.get("phase") != "Running":
        return False
    containers = status.get("containerStatuses") or []
    return bool(containers) and all(c.get("ready") for c in containers)


class WorkloadManager(Protocol):
    """Protocol for namespace and workload management."""

    async def create_namespace(self, name: str) -> None:
        ...

    async def delete_namespace(self, name: str) -> None:
        ...

    async def apply(self, manifest: Manifest, namespace: Optional[str] = None) -> None:
        ...

    async def delete(self, manifest: Manifest, namespace: Optional[str] = None) -> None:
        ...

    async def list_pods(self, namespace: str, selector: str) -> List[Dict[str, Any]]:
        ...

    async def wait_for_pods(
        self, namespace: str, selector: str, timeout: Optional[float] = None
    ) -> None:
        ...

    async def get_service_host_port(self, namespace: str, service: str) -> Tuple[str, int]:
        ...

    async def annotate_pods(self, namespace: str, selector: str, key: str, value: str) -> None:
        ...

    async def unannotate_pods(self, namespace: str, selector: str, key: str) -> None:
        ...

    async def get_app_pods(
        self, apps: Iterable[str], namespace: str, label: str = "id"
    ) -> Dict[str, str]:
        ...


class KubectlWorkloadManager:
    """Workload manager backed by the kubectl CLI."""

    def __init__(self, executor: KubectlExecutor, timeouts: Optional[TimeoutDefaults] = None):
        self.executor = executor
        self.timeouts = timeouts or TimeoutDefaults()

    async def _kubectl(
        self,
        args: List[str],
        error: str,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CmdResult:
        result = await asyncio.to_thread(
            self.executor.run_kubectl,
            args,
            timeout or self.timeouts.mid_command_timeout,
            input,
        )
        if not result.success:
            raise WorkloadError(f"{error}: {result.output.strip()}")
        return result

    @staticmethod
    def _manifest_args(manifest: Manifest) -> Tuple[List[str], Optional[str]]:
        if isinstance(manifest, (str, Path)):
            return ["-f", str(manifest)], None
        if isinstance(manifest, dict):
            return ["-f", "-"], yaml.safe_dump(manifest, sort_keys=False)
        return ["-f", "-"], yaml.safe_dump_all(manifest, sort_keys=False)

    async def create_namespace(self, name: str) -> None:
        logger.info(f"Creating namespace {name}")
        await self._kubectl(["create", "namespace", name], f"could not create namespace {name}")

    async def delete_namespace(self, name: str) -> None:
        logger.info(f"Deleting namespace {name}")
        await self._kubectl(
            ["delete", "namespace", name, "--ignore-not-found"],
            f"could not delete namespace {name}",
            timeout=self.timeouts.helper_timeout,
        )

    async def apply(self, manifest: Manifest, namespace: Optional[str] = None) -> None:
        args, input = self._manifest_args(manifest)
        if namespace:
            args = ["-n", namespace] + args
        await self._kubectl(["apply"] + args, "could not apply manifest", input=input)

    async def delete(self, manifest: Manifest, namespace: Optional[str] = None) -> None:
        args, input = self._manifest_args(manifest)
        if namespace:
            args = ["-n", namespace] + args
        await self._kubectl(
            ["delete", "--ignore-not-found"] + args,
            "could not delete manifest",
            timeout=self.timeouts.helper_timeout,
            input=input,
        )

    async def list_pods(self, namespace: str, selector: str) -> List[Dict[str, Any]]:
        result = await self._kubectl(
            ["get", "pods", "-n", namespace, "-l", selector, "-o", "json"],
            f"could not list pods matching {selector!r} in {namespace}",
        )
        try:
            return json.loads(result.stdout).get("items", [])
        except json.JSONDecodeError as e:
            raise WorkloadError(f"unexpected kubectl output for pods in {namespace}: {e}") from e

    async def wait_for_pods(
        self, namespace: str, selector: str, timeout: Optional[float] = None
    ) -> None:
        """
        Wait until every pod matching ``selector`` is ready.

        Raises:
            WaitTimeoutError: If the pods are not ready within ``timeout``
                (helper timeout by default)
        """

        async def all_ready() -> bool:
            pods = await self.list_pods(namespace, selector)
            return bool(pods) and all(pod_ready(pod) for pod in pods)

        config = TimeoutConfig(
            timeout=self.timeouts.helper_timeout if timeout is None else timeout,
            interval=self.timeouts.poll_interval,
        )
        await poll(all_ready, config, f"pods matching {selector!r} in {namespace} to be ready")

    async def get_service_host_port(self, namespace: str, service: str) -> Tuple[str, int]:
        """Resolve a service to its cluster IP and first port."""
        result = await self._kubectl(
            ["get", "service", service, "-n", namespace, "-o", "json"],
            f"cannot get service {service} in {namespace}",
        )
        try:
            spec = json.loads(result.stdout)["spec"]
            return spec["clusterIP"], int(spec["ports"][0]["port"])
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise WorkloadError(f"service {namespace}/{service} has no usable address: {e}") from e

    async def annotate_pods(self, namespace: str, selector: str, key: str, value: str) -> None:
        logger.info(f"Annotating pods {selector!r} in {namespace} with {key}={value}")
        await self._kubectl(
            ["annotate", "pod", "-n", namespace, "-l", selector, f"{key}={value}", "--overwrite"],
            f"adding annotation {key} failed",
        )

    async def unannotate_pods(self, namespace: str, selector: str, key: str) -> None:
        logger.info(f"Removing annotation {key} from pods {selector!r} in {namespace}")
        await self._kubectl(
            ["annotate", "pod", "-n", namespace, "-l", selector, f"{key}-"],
            f"removing annotation {key} failed",
        )

    async def get_app_pods(
        self, apps: Iterable[str], namespace: str, label: str = "id"
    ) -> Dict[str, str]:
        """Map each app to the name of the first pod labelled ``label=<app>``."""
        pods = {}
        for app in apps:
            result = await self._kubectl(
                [
                    "get", "pods", "-n", namespace, "-l", f"{label}={app}",
                    "-o", "jsonpath={.items[*].metadata.name}",
                ],
                f"could not get pods for {app} in {namespace}",
            )
            names = result.stdout.split()
            if not names:
                raise WorkloadError(f"no pod labelled {label}={app} in {namespace}")
            pods[app] = names[0]
        return pods
