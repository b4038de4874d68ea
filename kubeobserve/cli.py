"""Command line entry point: watch pod commands for output and wait for readiness."""

import asyncio
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape

from kubeobserve.config import TimeoutDefaults, get_config_provider
from kubeobserve.errors import CommandExitedError, StartError, WaitTimeoutError
from kubeobserve.logging_config import setup_logging
from kubeobserve.modules.background import CommandScope
from kubeobserve.modules.executor import KubectlExecutor, PodTarget
from kubeobserve.modules.poller import TimeoutConfig, poll
from kubeobserve.modules.watcher import count_matching, wait_until_match

console = Console(soft_wrap=True, highlight=False)
err_console = Console(stderr=True, soft_wrap=True, highlight=False)


async def _watch(
    executor: KubectlExecutor,
    timeouts: TimeoutDefaults,
    target: PodTarget,
    command: str,
    pattern: str,
    timeout: float,
    settle: float,
    expect_count: Optional[int],
) -> int:
    async with CommandScope(grace_period=timeouts.cancel_grace_period, name="watch") as scope:
        try:
            handle = await scope.start(executor, target, command)
        except StartError as e:
            err_console.print(f"[red]{escape(str(e))}[/red]")
            return 2

        try:
            result = await wait_until_match(handle, pattern, timeout)
        except (WaitTimeoutError, CommandExitedError) as e:
            err_console.print(f"[red]{escape(str(e))}[/red]")
            return 1

        if settle > 0:
            await asyncio.sleep(settle)
        await handle.cancel()

    console.print(result.line, markup=False)
    if expect_count is not None:
        actual = count_matching(handle, pattern)
        if actual != expect_count:
            err_console.print(f"[red]expected {expect_count} matching lines, got {actual}[/red]")
            return 1
    return 0


@click.group()
@click.option("--log-level", default=None, help="Logging level (defaults to LOG_LEVEL or INFO)")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]):
    """Observe commands running inside Kubernetes pods."""
    load_dotenv()
    setup_logging(log_level)
    provider = get_config_provider()
    ctx.obj = {
        "executor": KubectlExecutor(provider.get_executor_config()),
        "timeouts": provider.get_timeout_defaults(),
    }


@cli.command()
@click.argument("namespace")
@click.argument("pod")
@click.argument("command")
@click.option("--pattern", "-p", required=True, help="Regular expression to wait for")
@click.option("--container", "-c", default=None)
@click.option("--timeout", type=float, default=None, help="Seconds to wait for a match")
@click.option("--settle", type=float, default=0.0, help="Seconds to keep capturing after the match")
@click.option("--expect-count", type=int, default=None, help="Required number of matching lines")
@click.pass_context
def watch(ctx, namespace, pod, command, pattern, container, timeout, settle, expect_count):
    """Run COMMAND in the background in POD and wait for PATTERN in its output."""
    timeouts = ctx.obj["timeouts"]
    exit_code = asyncio.run(
        _watch(
            ctx.obj["executor"],
            timeouts,
            PodTarget(namespace, pod, container),
            command,
            pattern,
            timeouts.mid_command_timeout if timeout is None else timeout,
            settle,
            expect_count,
        )
    )
    ctx.exit(exit_code)


@cli.command("wait-ready")
@click.argument("namespace")
@click.argument("pod")
@click.argument("command")
@click.option("--container", "-c", default=None)
@click.option("--timeout", type=float, default=None, help="Seconds to keep trying")
@click.option("--interval", type=float, default=None, help="Seconds between attempts")
@click.pass_context
def wait_ready(ctx, namespace, pod, command, container, timeout, interval):
    """Run COMMAND in POD repeatedly until it exits with code 0."""
    executor = ctx.obj["executor"]
    timeouts = ctx.obj["timeouts"]
    target = PodTarget(namespace, pod, container)

    def probe() -> bool:
        res = executor.run_sync(target, command, timeout=timeouts.short_command_timeout)
        return res.was_successful()

    config = TimeoutConfig(
        timeout=timeouts.mid_command_timeout if timeout is None else timeout,
        interval=timeouts.poll_interval if interval is None else interval,
    )
    try:
        attempts = asyncio.run(poll(probe, config, f"{command!r} on {target} to succeed"))
    except WaitTimeoutError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        ctx.exit(1)
        return

    console.print(f"[green]ready after {attempts} attempts[/green]")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
