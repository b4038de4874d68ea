"""
Background command handles.

A BackgroundCommand owns one running process, the single consumer task that
reads its output, and the append-only buffer of lines read so far. Handles
are created through a CommandScope, which cancels and joins every handle it
created when it closes.
"""

import asyncio
import contextlib
import logging
import weakref
from enum import Enum
from typing import List, Optional, Tuple

from kubeobserve.errors import CancellationError, WaitTimeoutError
from kubeobserve.modules.executor import PodTarget, RemoteExecutor

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 5.0

_live: "weakref.WeakSet[BackgroundCommand]" = weakref.WeakSet()


class CommandState(Enum):
    """Lifecycle states of a background command."""

    RUNNING = "running"
    EXITED = "exited"
    CANCELLED = "cancelled"
    FAILED = "failed"


class BackgroundCommand:
    """
    A long-running command whose output is consumed while the caller works.

    Output lines are appended by exactly one consumer task, in the order the
    process emitted them, under an asyncio.Condition that is notified on every
    append and on every terminal transition. The handle is bound to the event
    loop it was started on.
    """

    def __init__(
        self,
        target: PodTarget,
        command: str,
        process: asyncio.subprocess.Process,
        scope: Optional["CommandScope"] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ):
        self.target = target
        self.command = command
        self.scope = scope
        self.grace_period = grace_period
        self.exit_code: Optional[int] = None
        self.error: Optional[Exception] = None

        self._process = process
        self._lines: List[str] = []
        self._changed = asyncio.Condition()
        self._state = CommandState.RUNNING
        self._shutdown: Optional[asyncio.Future] = None
        self._consumer = asyncio.create_task(
            self._consume(), name=f"consume {command!r} on {target}"
        )
        _live.add(self)

    def __repr__(self) -> str:
        return (
            f"<BackgroundCommand {self.command!r} on {self.target} "
            f"state={self._state.value} lines={len(self._lines)}>"
        )

    async def __aenter__(self) -> "BackgroundCommand":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.cancel()

    @property
    def state(self) -> CommandState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is CommandState.RUNNING

    @property
    def cancelled(self) -> bool:
        return self._state is CommandState.CANCELLED

    def output(self) -> Tuple[str, ...]:
        """Snapshot of the lines observed so far."""
        return tuple(self._lines)

    def stdout(self) -> str:
        """Captured output joined back into text."""
        return "\n".join(self._lines)

    async def _consume(self) -> None:
        stream = self._process.stdout
        try:
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                await self._append(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
            self.exit_code = await self._process.wait()
        except Exception as e:
            # readline raises ValueError for lines beyond the stream limit
            logger.error(f"Reading output of {self.command!r} on {self.target} failed: {e}")
            self.error = e
            self._signal(terminate=True)
            await self._finish(CommandState.FAILED)
            return

        logger.info(
            f"{self.command!r} on {self.target} exited with code {self.exit_code} "
            f"after {len(self._lines)} lines"
        )
        await self._finish(CommandState.EXITED)

    async def _append(self, line: str) -> None:
        async with self._changed:
            if self._state is not CommandState.RUNNING:
                return
            self._lines.append(line)
            self._changed.notify_all()

    async def _finish(self, state: CommandState) -> None:
        async with self._changed:
            if self._state is CommandState.RUNNING:
                self._state = state
            self._changed.notify_all()
        _live.discard(self)

    async def next_lines(self, cursor: int) -> List[str]:
        """
        Wait for lines appended after position ``cursor``.

        Returns:
            The new lines, or an empty list once the stream has ended

        Raises:
            CancellationError: If the handle was cancelled and no lines
                after ``cursor`` remain
        """
        async with self._changed:
            await self._changed.wait_for(
                lambda: len(self._lines) > cursor or self._state is not CommandState.RUNNING
            )
            if len(self._lines) > cursor:
                return self._lines[cursor:]
            if self._state is CommandState.CANCELLED:
                raise CancellationError(f"{self.command!r} on {self.target} was cancelled")
            return []

    async def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Wait for the command to finish.

        Returns:
            The exit code (None if the output stream failed)

        Raises:
            WaitTimeoutError: If it is still running after ``timeout`` seconds
            CancellationError: If the handle is cancelled first
        """
        loop = asyncio.get_running_loop()
        start = loop.time()

        async def _finished() -> None:
            async with self._changed:
                await self._changed.wait_for(lambda: self._state is not CommandState.RUNNING)

        try:
            await asyncio.wait_for(_finished(), timeout)
        except asyncio.TimeoutError:
            raise WaitTimeoutError(
                f"waiting for {self.command!r} on {self.target} to finish",
                timeout,
                loop.time() - start,
            ) from None

        if self._state is CommandState.CANCELLED:
            raise CancellationError(f"{self.command!r} on {self.target} was cancelled")
        return self.exit_code

    async def cancel(self) -> None:
        """
        Stop the command and its consumer task.

        Idempotent: later calls wait for the first one to complete and
        handles that already finished are left alone. Once this returns no
        more lines are appended and every waiter has been woken.
        """
        if self._shutdown is None:
            self._shutdown = asyncio.ensure_future(self._cancel())
        await asyncio.shield(self._shutdown)

    async def _cancel(self) -> None:
        if self._state is not CommandState.RUNNING:
            await asyncio.gather(self._consumer, return_exceptions=True)
            if self._state is CommandState.FAILED:
                await self._stop_process()
            return

        logger.info(f"Cancelling {self.command!r} on {self.target}")
        self._state = CommandState.CANCELLED
        self._consumer.cancel()
        await asyncio.gather(self._consumer, return_exceptions=True)
        async with self._changed:
            self._changed.notify_all()
        _live.discard(self)
        await self._stop_process()

    def _signal(self, terminate: bool) -> None:
        if self._process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            if terminate:
                self._process.terminate()
            else:
                self._process.kill()

    async def _stop_process(self) -> None:
        self._signal(terminate=True)
        try:
            self.exit_code = await asyncio.wait_for(self._process.wait(), self.grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.command!r} on {self.target} ignored SIGTERM for "
                f"{self.grace_period}s, killing"
            )
            self._signal(terminate=False)
            self.exit_code = await self._process.wait()


class CommandScope:
    """
    Lifetime boundary for background commands.

    Every handle started through the scope is cancelled and joined when the
    scope closes. With ``timeout`` set, the scope also cancels its handles
    once that many seconds have passed since it was entered.

    Usage:
        async with CommandScope(timeout=30) as scope:
            handle = await scope.start(executor, target, "cilium observe --follow")
            await wait_until_match(handle, '"Type":"L7"', timeout=10)
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        name: str = "scope",
    ):
        self.timeout = timeout
        self.grace_period = grace_period
        self.name = name
        self.expired = False
        self._commands: List[BackgroundCommand] = []
        self._closed = False
        self._deadline_handle: Optional[asyncio.TimerHandle] = None
        self._deadline_task: Optional[asyncio.Future] = None

    async def __aenter__(self) -> "CommandScope":
        if self.timeout is not None:
            loop = asyncio.get_running_loop()
            self._deadline_handle = loop.call_later(self.timeout, self._on_deadline)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed or self.expired

    @property
    def commands(self) -> Tuple[BackgroundCommand, ...]:
        return tuple(self._commands)

    async def start(
        self, executor: RemoteExecutor, target: PodTarget, command: str
    ) -> BackgroundCommand:
        """
        Launch ``command`` on ``target`` and return its handle without waiting.

        Raises:
            StartError: If the executor could not launch the command
            CancellationError: If the scope is already closed or expired
        """
        if self.closed:
            raise CancellationError(f"{self.name} is closed")

        process = await executor.run_async(target, command)
        handle = BackgroundCommand(
            target, command, process, scope=self, grace_period=self.grace_period
        )
        self._commands.append(handle)

        if self.closed:
            await handle.cancel()
            raise CancellationError(f"{self.name} closed while starting {command!r}")
        return handle

    def _on_deadline(self) -> None:
        self.expired = True
        logger.info(f"{self.name} deadline of {self.timeout}s reached, cancelling commands")
        self._deadline_task = asyncio.ensure_future(self._cancel_commands())

    async def _cancel_commands(self) -> None:
        results = await asyncio.gather(
            *(handle.cancel() for handle in self._commands), return_exceptions=True
        )
        for handle, result in zip(self._commands, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to cancel {handle!r}: {result}")

    async def close(self) -> None:
        """Cancel every handle of this scope and join their consumer tasks."""
        self._closed = True
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
        await self._cancel_commands()
        if self._deadline_task is not None:
            await asyncio.gather(self._deadline_task, return_exceptions=True)


async def start(
    executor: RemoteExecutor, target: PodTarget, command: str, scope: CommandScope
) -> BackgroundCommand:
    """Start a background command owned by ``scope``."""
    return await scope.start(executor, target, command)


def active_commands() -> List[BackgroundCommand]:
    """Handles that are still running, across all scopes."""
    return [handle for handle in list(_live) if handle.running]


async def cancel_all() -> int:
    """
    Cancel every running handle in the process.

    Used as the cleanup barrier at the end of a test or program.

    Returns:
        Number of handles that were cancelled
    """
    handles = active_commands()
    if handles:
        logger.warning(f"Cancelling {len(handles)} outstanding background commands")
        await asyncio.gather(*(handle.cancel() for handle in handles), return_exceptions=True)
    return len(handles)
