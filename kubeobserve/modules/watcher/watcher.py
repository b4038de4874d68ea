import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple, Union

from kubeobserve.errors import CommandExitedError, WaitTimeoutError
from kubeobserve.modules.background import BackgroundCommand

logger = logging.getLogger(__name__)

PatternLike = Union[str, Pattern[str]]


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a pattern wait."""

    matched: bool
    line: Optional[str]
    lines: Tuple[str, ...]
    elapsed: float


def _compile(pattern: PatternLike) -> Pattern[str]:
    if isinstance(pattern, str):
        return re.compile(pattern)
    return pattern


async def wait_until_match(
    handle: BackgroundCommand,
    pattern: PatternLike,
    timeout: float,
    description: Optional[str] = None,
) -> MatchResult:
    """
    Block until a line of the handle's output matches ``pattern``.

    Lines already captured are checked first, then new lines are examined
    as the consumer appends them. Matching uses ``re.search``. With a timeout
    of zero or less only the lines already captured are checked.

    Args:
        handle: Running background command
        pattern: Regular expression string or compiled pattern
        timeout: Seconds to wait before giving up
        description: What is expected, used in error messages

    Returns:
        MatchResult with the matching line and every line up to it

    Raises:
        WaitTimeoutError: No match before the deadline; ``result`` holds the
            partial output
        CancellationError: The handle was cancelled while waiting
        CommandExitedError: The command finished without a match
    """
    regex = _compile(pattern)
    if description is None:
        description = f"waiting for {regex.pattern!r} in output of {handle.command!r}"

    loop = asyncio.get_running_loop()
    start = loop.time()
    cursor = 0

    def _timed_out() -> WaitTimeoutError:
        elapsed = loop.time() - start
        result = MatchResult(False, None, handle.output(), elapsed)
        logger.warning(f"{description}: no match after {elapsed:.1f}s ({len(result.lines)} lines)")
        return WaitTimeoutError(description, timeout, elapsed, result=result)

    async def _scan() -> Optional[str]:
        nonlocal cursor
        while True:
            lines = await handle.next_lines(cursor)
            if not lines:
                return None
            for line in lines:
                cursor += 1
                if regex.search(line):
                    return line

    line = None
    for captured in handle.output():
        cursor += 1
        if regex.search(captured):
            line = captured
            break

    if line is None:
        if timeout <= 0:
            raise _timed_out()
        try:
            line = await asyncio.wait_for(_scan(), timeout=timeout)
        except asyncio.TimeoutError:
            raise _timed_out() from None

    elapsed = loop.time() - start
    if line is None:
        result = MatchResult(False, None, handle.output(), elapsed)
        raise CommandExitedError(description, handle.exit_code, result=result)

    logger.debug(f"{description}: matched after {elapsed:.1f}s: {line}")
    return MatchResult(True, line, handle.output()[:cursor], elapsed)


def count_lines(handle: BackgroundCommand) -> int:
    """Number of lines captured so far."""
    return len(handle.output())


def filter_lines(handle: BackgroundCommand, pattern: PatternLike) -> List[str]:
    """Captured lines that match ``pattern``."""
    regex = _compile(pattern)
    return [line for line in handle.output() if regex.search(line)]


def count_matching(handle: BackgroundCommand, pattern: PatternLike) -> int:
    return len(filter_lines(handle, pattern))
