import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, Union

from kubeobserve.errors import WaitTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0

Probe = Callable[[], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class TimeoutConfig:
    """
    Bounds for a blocking operation.

    Args:
        timeout: Maximum seconds to wait
        interval: Seconds between probe attempts (DEFAULT_POLL_INTERVAL if None)
        fatal_exceptions: Exception types raised by a probe that abort polling
    """

    timeout: float
    interval: Optional[float] = None
    fatal_exceptions: Tuple[Type[BaseException], ...] = ()

    @property
    def poll_interval(self) -> float:
        if self.interval is None or self.interval <= 0:
            return DEFAULT_POLL_INTERVAL
        return self.interval


async def _attempt(probe: Probe, attempt: int, config: TimeoutConfig, description: str) -> bool:
    """Run one probe attempt; exceptions count as a failed attempt unless fatal."""
    try:
        if inspect.iscoroutinefunction(probe):
            result = await probe()
        else:
            result = await asyncio.to_thread(probe)
            if inspect.isawaitable(result):
                result = await result
    except config.fatal_exceptions:
        raise
    except Exception as e:
        logger.debug(
            f"Probe attempt {attempt} for {description!r} raised {type(e).__name__}: {e}",
            extra={"probe_attempt": True},
        )
        return False

    logger.debug(
        f"Probe attempt {attempt} for {description!r} returned {bool(result)}",
        extra={"probe_attempt": True},
    )
    return bool(result)


async def poll(probe: Probe, config: TimeoutConfig, description: str = "condition") -> int:
    """
    Invoke probe until it returns True or the timeout elapses.

    The first attempt runs immediately; later attempts are scheduled every
    interval from the start time. Each attempt is cut off at the deadline and
    a result that arrives after it does not count. A timeout of zero or less
    still attempts the probe exactly once, unbounded. Sync probes run in a
    worker thread; a thread that overruns the deadline is abandoned, not
    interrupted.

    Args:
        probe: Callable returning bool, or an async callable
        config: Timeout and interval
        description: What is being waited for, used in the timeout message

    Returns:
        Number of attempts it took

    Raises:
        WaitTimeoutError: If no attempt succeeded before the deadline
    """
    loop = asyncio.get_running_loop()
    interval = config.poll_interval
    start = loop.time()
    deadline = start + config.timeout
    bounded = config.timeout > 0
    attempt = 0

    while True:
        attempt += 1
        if bounded:
            try:
                ok = await asyncio.wait_for(
                    _attempt(probe, attempt, config, description), deadline - loop.time()
                )
            except asyncio.TimeoutError:
                logger.debug(
                    f"Probe attempt {attempt} for {description!r} still running at the deadline",
                    extra={"probe_attempt": True},
                )
                ok = False
            ok = ok and loop.time() <= deadline
        else:
            ok = await _attempt(probe, attempt, config, description)

        if ok:
            logger.debug(f"{description!r} satisfied after {attempt} attempts")
            return attempt

        now = loop.time()
        next_at = start + attempt * interval
        if next_at >= deadline:
            if deadline > now:
                await asyncio.sleep(deadline - now)
            elapsed = loop.time() - start
            logger.warning(f"Timed out waiting for {description!r} after {elapsed:.1f}s")
            raise WaitTimeoutError(description, config.timeout, elapsed, attempts=attempt)

        await asyncio.sleep(max(0.0, next_at - now))
