"""
Command-line interface for httpprobe.

Runs the probe against one URL and maps the outcome to an exit code.
"""

import asyncio
import logging
import re
import sys
from typing import Optional

import click

from . import __version__
from .errors import ConfigError, ProbeError
from .models import RunConfig
from .output import ConsoleOutput, RichConsoleOutput
from .runner import TestRunner

logger = logging.getLogger(__name__)

EXIT_FAIL = 1

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """
    Parse a duration such as "500ms", "10s" or "1m30s" into seconds.

    A bare number is taken as seconds.
    """
    text = text.strip()
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration {text!r}")
    return total


class DurationType(click.ParamType):
    """Click parameter accepting Go-style durations."""

    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, (int, float)):
            return float(value)
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationType()


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr (only if logging is not configured yet)."""
    if not logging.root.handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format="%(asctime)s - %(levelname)s - %(message)s",
            stream=sys.stderr,
        )


@click.command(context_settings={"auto_envvar_prefix": "HTTPPROBE"})
@click.version_option(__version__)
@click.option(
    "--url", "-u",
    default="",
    help="URL to test",
)
@click.option(
    "--concurrency", "-c",
    type=int,
    default=1,
    show_default=True,
    help="Number of concurrent requests",
)
@click.option(
    "--duration", "-d",
    type=DURATION,
    default=None,
    help="Time to run tests for (e.g. 10s, 1m). Without it every worker makes one request",
)
@click.option(
    "--timeout", "-t",
    type=DURATION,
    default=None,
    help="Per-request timeout",
)
@click.option(
    "--attempt-timeout",
    type=DURATION,
    default=30.0,
    show_default=True,
    help="Time allowed for all requests when running without --duration",
)
@click.option(
    "--http1",
    is_flag=True,
    help="Do not attempt HTTP/2",
)
@click.option(
    "--insecure", "-k",
    is_flag=True,
    help="Skip TLS certificate verification",
)
@click.option(
    "--table",
    is_flag=True,
    help="Print the final averages as a table",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable debug logging",
)
def main(
    url: str,
    concurrency: int,
    duration: Optional[float],
    timeout: Optional[float],
    attempt_timeout: float,
    http1: bool,
    insecure: bool,
    table: bool,
    verbose: bool,
):
    """
    HTTP latency probe.

    Sends GET requests to a URL from concurrent workers and reports DNS,
    TCP, TLS, server processing and total time for each request, then
    the averages.

    Examples:

    \b
      # One request
      httpprobe -u https://example.com

    \b
      # Four workers for 30 seconds
      httpprobe -u https://example.com -c 4 -d 30s
    """
    configure_logging(verbose)

    config = RunConfig(
        url=url,
        concurrency=concurrency,
        duration=duration,
        timeout=timeout,
        attempt_timeout=attempt_timeout,
        http2=not http1,
        verify=not insecure,
    )
    output = RichConsoleOutput() if table else ConsoleOutput()

    try:
        runner = TestRunner(config, output=output)
        asyncio.run(runner.run())
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAIL)
    except ProbeError as e:
        logger.debug("Run failed", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAIL)


if __name__ == "__main__":
    main()
