"""
Shared pytest fixtures for kubeobserve tests.

This module provides common fixtures including:
- KubectlMocker: Mock kubectl subprocess calls with canned responses
- FakeProcess / FakeExecutor: in-memory stand-ins for streaming remote commands
- A command scope fixture that doubles as the per-test cleanup barrier
"""

import asyncio
import os
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern, Union
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio

# Add project root and tests directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from kubeobserve.errors import StartError
from kubeobserve.modules.background import CommandScope, active_commands, cancel_all
from kubeobserve.modules.executor import CmdResult, PodTarget


# =============================================================================
# Kubectl Mocking Infrastructure
# =============================================================================

@dataclass
class KubectlResponse:
    """Represents a mocked kubectl command response."""
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0

    def to_completed_process(self) -> MagicMock:
        """Convert to a subprocess.CompletedProcess-like mock."""
        result = MagicMock()
        result.stdout = self.stdout
        result.stderr = self.stderr
        result.returncode = self.returncode
        return result


@dataclass
class KubectlCall:
    """Record of a kubectl call made during testing."""
    command: List[str]
    full_command_str: str
    matched_pattern: Optional[str] = None
    response: Optional[KubectlResponse] = None
    input: Optional[str] = None
    timeout: Optional[float] = None


class KubectlMocker:
    """
    Mock kubectl subprocess calls with pattern-matched responses.

    Usage:
        def test_pods(kubectl_mocker):
            kubectl_mocker.register("get pods", KubectlResponse(stdout="{...}"))
            executor.run_kubectl(["get", "pods"])
            assert kubectl_mocker.was_called_with("get pods")
    """

    def __init__(self):
        self._responses: List[tuple] = []
        self._call_history: List[KubectlCall] = []
        self._default_response = KubectlResponse(
            stderr="Error: mock not configured for this command",
            returncode=1
        )

    def register(
        self,
        pattern: Union[str, Pattern],
        response: KubectlResponse,
        priority: int = 0
    ) -> "KubectlMocker":
        """
        Register a response for commands matching the pattern.

        Args:
            pattern: String (substring match) or regex pattern
            response: KubectlResponse to return when matched
            priority: Higher priority patterns are checked first

        Returns:
            self for chaining
        """
        self._responses.append((pattern, response, priority))
        self._responses.sort(key=lambda x: x[2], reverse=True)
        return self

    def register_scenario(self, scenario_name: str) -> "KubectlMocker":
        """Register all responses for a named scenario."""
        from fixtures.kubectl_scenarios import SCENARIOS

        if scenario_name not in SCENARIOS:
            raise ValueError(
                f"Unknown scenario: {scenario_name}. "
                f"Available: {list(SCENARIOS.keys())}"
            )

        for pattern, response in SCENARIOS[scenario_name].items():
            self.register(pattern, response)

        return self

    def set_default_response(self, response: KubectlResponse) -> "KubectlMocker":
        """Set the default response for unmatched commands."""
        self._default_response = response
        return self

    def mock_run(
        self,
        cmd: List[str],
        capture_output: bool = True,
        text: bool = True,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
        **kwargs
    ) -> MagicMock:
        """Side effect for patching subprocess.run."""
        cmd_str = " ".join(cmd)

        if cmd[0] != "kubectl":
            raise RuntimeError(f"Non-kubectl command blocked: {cmd_str}")

        kubectl_args = " ".join(cmd[1:])
        matched_pattern = None
        response = self._default_response

        for pattern, resp, _ in self._responses:
            if isinstance(pattern, str):
                if pattern in kubectl_args:
                    matched_pattern = pattern
                    response = resp
                    break
            else:
                if pattern.search(kubectl_args):
                    matched_pattern = pattern.pattern
                    response = resp
                    break

        self._call_history.append(KubectlCall(
            command=cmd,
            full_command_str=cmd_str,
            matched_pattern=matched_pattern,
            response=response,
            input=input,
            timeout=timeout,
        ))

        return response.to_completed_process()

    @property
    def calls(self) -> List[KubectlCall]:
        """Get all kubectl calls made during the test."""
        return self._call_history

    @property
    def call_count(self) -> int:
        return len(self._call_history)

    def was_called_with(self, pattern: str) -> bool:
        """Check if any call contained the given pattern."""
        return any(pattern in call.full_command_str for call in self._call_history)

    def get_calls_matching(self, pattern: str) -> List[KubectlCall]:
        """Get all calls containing the given pattern."""
        return [c for c in self._call_history if pattern in c.full_command_str]


@pytest.fixture
def kubectl_mocker():
    """KubectlMocker with subprocess.run patched."""
    mocker = KubectlMocker()
    with patch("subprocess.run", side_effect=mocker.mock_run):
        yield mocker


# =============================================================================
# Streaming Process Fakes
# =============================================================================

class FakeProcess:
    """
    In-memory stand-in for asyncio.subprocess.Process.

    Tests push output with emit() and end the stream with exit(). Signals
    mark the process as exited without closing stdout, so lines emitted after
    a cancel are still readable by anyone who keeps consuming.
    """

    def __init__(self, ignore_sigterm: bool = False, limit: int = 2 ** 16):
        self.stdout = asyncio.StreamReader(limit=limit)
        self.returncode: Optional[int] = None
        self.pid = 4242
        self.signals: List[str] = []
        self.ignore_sigterm = ignore_sigterm
        self._exited = asyncio.Event()

    def emit(self, *lines: str) -> None:
        for line in lines:
            self.stdout.feed_data(f"{line}\n".encode())

    def exit(self, code: int = 0) -> None:
        """Close stdout and exit with ``code``."""
        self.stdout.feed_eof()
        self._set_exited(code)

    def _set_exited(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if not self.ignore_sigterm:
            self._set_exited(-15)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self._set_exited(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeExecutor:
    """
    RemoteExecutor double.

    run_async hands out FakeProcess objects (optionally pre-loaded with
    ``initial_lines``); run_sync answers from ``sync_results`` in order,
    repeating the last entry.
    """

    def __init__(
        self,
        initial_lines: Optional[List[str]] = None,
        exit_code: Optional[int] = None,
        start_error: Optional[str] = None,
        sync_results: Optional[List[CmdResult]] = None,
        process_factory: Callable[[], FakeProcess] = FakeProcess,
    ):
        self.initial_lines = initial_lines or []
        self.exit_code = exit_code
        self.start_error = start_error
        self.sync_results = list(sync_results or [])
        self.process_factory = process_factory
        self.processes: List[FakeProcess] = []
        self.started: List[tuple] = []
        self.sync_calls: List[tuple] = []

    async def run_async(self, target: PodTarget, command: str) -> FakeProcess:
        if self.start_error:
            raise StartError(command, self.start_error)
        process = self.process_factory()
        process.emit(*self.initial_lines)
        if self.exit_code is not None:
            process.exit(self.exit_code)
        self.processes.append(process)
        self.started.append((target, command))
        return process

    def run_sync(
        self, target: PodTarget, command: str, timeout: Optional[float] = None
    ) -> CmdResult:
        self.sync_calls.append((target, command, timeout))
        if not self.sync_results:
            return CmdResult(command=command)
        if len(self.sync_results) > 1:
            return self.sync_results.pop(0)
        return self.sync_results[0]


@pytest.fixture
def target():
    return PodTarget("kube-system", "cilium-abcde")


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest_asyncio.fixture
async def scope():
    """Command scope closed at the end of the test."""
    async with CommandScope(grace_period=0.5, name="test scope") as test_scope:
        yield test_scope


@pytest_asyncio.fixture(autouse=True)
async def command_cleanup():
    """
    Cleanup barrier run after every test.

    Any handle still running anywhere in the process is cancelled and its
    consumer joined, so no task leaks into the next test.
    """
    yield
    await cancel_all()
    assert not active_commands()


# =============================================================================
# Test Markers Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "kubectl_mock: Tests using mocked kubectl subprocess calls"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring infrastructure"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take a long time to run"
    )
