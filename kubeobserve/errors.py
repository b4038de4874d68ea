"""Error taxonomy shared by all kubeobserve modules."""

from typing import Optional


class ObserveError(Exception):
    """Base class for kubeobserve errors."""


class StartError(ObserveError):
    """A background command could not be launched."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"failed to start {command!r}: {reason}")


class WaitTimeoutError(ObserveError, TimeoutError):
    """
    A bounded wait expired without success.

    Attributes:
        description: What the caller was waiting for
        timeout: Configured timeout in seconds
        elapsed: Seconds actually waited
        attempts: Probe attempts made (poller only)
        result: Partial MatchResult (watcher only)
    """

    def __init__(
        self,
        description: str,
        timeout: float,
        elapsed: float,
        attempts: Optional[int] = None,
        result=None,
    ):
        self.description = description
        self.timeout = timeout
        self.elapsed = elapsed
        self.attempts = attempts
        self.result = result

        message = f"{description}: timed out after {elapsed:.1f}s (timeout {timeout}s"
        if attempts is not None:
            message += f", {attempts} attempts"
        message += ")"
        super().__init__(message)


class CancellationError(ObserveError):
    """An in-flight wait was interrupted by cancellation of its handle or scope."""


class CommandExitedError(ObserveError):
    """The observed command finished before the expected output appeared."""

    def __init__(self, description: str, exit_code: Optional[int], result=None):
        self.description = description
        self.exit_code = exit_code
        self.result = result
        super().__init__(f"{description}: command exited with code {exit_code} before a match")


class CommandFailedError(ObserveError):
    """A one-shot command returned a non-zero exit code."""

    def __init__(self, message: str, result):
        self.result = result
        super().__init__(
            f"{message}: exit code {result.exit_code} for {result.command!r}\n{result.output}"
        )


class WorkloadError(ObserveError):
    """A workload manager operation failed."""
