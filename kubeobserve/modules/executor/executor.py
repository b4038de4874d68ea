"""
kubectl-backed remote execution.

One-shot commands go through ``subprocess.run`` and come back as a
``CmdResult``. Streaming commands are spawned with
``asyncio.create_subprocess_exec`` and handed back as the raw process so a
background command handle can consume stdout line by line.
"""

import asyncio
import logging
import shlex
import subprocess
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Protocol

from kubeobserve.config import ExecutorConfig
from kubeobserve.errors import CommandFailedError, StartError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PodTarget:
    """A container inside a pod that commands run against."""

    namespace: str
    pod: str
    container: Optional[str] = None

    def __str__(self) -> str:
        name = f"{self.namespace}/{self.pod}"
        if self.container:
            name += f":{self.container}"
        return name


@dataclass
class CmdResult:
    """Result of a completed one-shot command."""

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def was_successful(self) -> bool:
        """Check whether the command exited with code 0."""
        return self.success

    @property
    def output(self) -> str:
        """Combine stdout and stderr for output."""
        output = self.stdout
        if self.stderr:
            output += "\n" + self.stderr
        return output

    def lines(self) -> List[str]:
        """Non-empty stdout lines."""
        return [line for line in self.stdout.splitlines() if line.strip()]

    def expect_success(self, message: str = "command failed") -> "CmdResult":
        """
        Raise CommandFailedError unless the command succeeded.

        Returns:
            self for chaining
        """
        if not self.success:
            raise CommandFailedError(message, self)
        return self

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["success"] = self.success
        return result


class RemoteExecutor(Protocol):
    """Protocol for remote execution backends."""

    def run_sync(
        self, target: PodTarget, command: str, timeout: Optional[float] = None
    ) -> CmdResult:
        """Run a command to completion."""
        ...

    async def run_async(self, target: PodTarget, command: str) -> asyncio.subprocess.Process:
        """Start a command and return its process with stdout piped."""
        ...


class KubectlExecutor:
    """Executes commands in pods through ``kubectl exec``."""

    def __init__(self, config: Optional[ExecutorConfig] = None):
        self.config = config or ExecutorConfig()

    def exec_args(self, target: PodTarget, command: str) -> List[str]:
        """
        Build the kubectl exec argument vector for a command.

        With a configured shell the command string is handed to
        ``<shell> -c`` so pipes and quoting behave as on a terminal;
        without one it is split with shlex.
        """
        args = self.config.base_args() + ["exec", "-n", target.namespace, target.pod]
        if target.container:
            args += ["-c", target.container]
        args.append("--")
        if self.config.shell:
            args += [self.config.shell, "-c", command]
        else:
            args += shlex.split(command)
        return args

    def run_kubectl(
        self,
        args: List[str],
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CmdResult:
        """
        Execute a kubectl command.

        Args:
            args: kubectl arguments without the binary and cluster flags
            timeout: Seconds before the command is killed
            input: Text written to stdin

        Returns:
            CmdResult, with exit code -1 on timeout or launch failure
        """
        cmd = self.config.base_args() + list(args)
        return self._run(cmd, " ".join(args), timeout, input)

    def run_sync(
        self, target: PodTarget, command: str, timeout: Optional[float] = None
    ) -> CmdResult:
        """Run a command inside the target pod and wait for it to finish."""
        return self._run(self.exec_args(target, command), command, timeout, None)

    def _run(
        self,
        cmd: List[str],
        label: str,
        timeout: Optional[float],
        input: Optional[str],
    ) -> CmdResult:
        logger.debug(f"Running: {' '.join(cmd)}")
        start_time = time.monotonic()

        try:
            process = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
            )
            return CmdResult(
                command=label,
                stdout=process.stdout or "",
                stderr=process.stderr or "",
                exit_code=process.returncode,
                duration=time.monotonic() - start_time,
            )

        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout}s: {label}")
            return CmdResult(
                command=label,
                stderr="Command timed out",
                exit_code=-1,
                duration=time.monotonic() - start_time,
            )

        except OSError as e:
            logger.error(f"Command execution failed: {e}")
            return CmdResult(
                command=label,
                stderr=str(e),
                exit_code=-1,
                duration=time.monotonic() - start_time,
            )

    async def run_async(self, target: PodTarget, command: str) -> asyncio.subprocess.Process:
        """
        Start a command inside the target pod without waiting for it.

        stderr is merged into stdout so the caller sees one ordered stream.

        Raises:
            StartError: If the kubectl process could not be spawned
        """
        cmd = self.exec_args(target, command)
        logger.debug(f"Starting in background: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=self.config.stream_limit,
            )
        except OSError as e:
            raise StartError(command, str(e)) from e

        logger.info(f"Started {command!r} on {target} (pid {process.pid})")
        return process
