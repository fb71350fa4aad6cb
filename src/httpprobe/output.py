"""
Output formatting for probe results.

Provides:
- Duration formatting in the style of Go's time.Duration
- Plain line output: one line per request plus the final summary
- Rich output: the final summary as a terminal table
"""

from typing import Optional, TextIO

import click
from rich import box
from rich.console import Console
from rich.table import Table

from .models import Phase, Result, RunConfig


def _trim(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def format_duration(seconds: float) -> str:
    """
    Format a duration given in seconds.

    Examples: 0s, 850ns, 12.5µs, 3.214ms, 1.5s, 1m3s
    """
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)

    if seconds < 1e-6:
        return f"{sign}{round(seconds * 1e9)}ns"
    if seconds < 1e-3:
        return f"{sign}{_trim(seconds * 1e6)}µs"
    if seconds < 1:
        return f"{sign}{_trim(seconds * 1e3)}ms"
    if seconds < 60:
        return f"{sign}{_trim(seconds)}s"

    minutes, rest = divmod(seconds, 60)
    return f"{sign}{int(minutes)}m{_trim(rest)}s"


def format_phase(phase: Phase, seconds: float) -> str:
    """Format a phase duration, using n/a for DNS/TLS that did not happen."""
    if phase.optional and seconds <= 0:
        return "n/a"
    return format_duration(seconds)


def format_result(result: Result) -> str:
    """One-line summary of a request."""
    return (
        f"{result.proto} {result.status} - "
        f"DNS: {format_phase(Phase.DNS, result.dns_lookup)}, "
        f"TCP: {format_phase(Phase.TCP, result.tcp_connect)}, "
        f"TLS: {format_phase(Phase.TLS, result.tls_handshake)}, "
        f"Server processing: {format_phase(Phase.SERVER, result.server_processing)}, "
        f"Total: {format_phase(Phase.TOTAL, result.round_trip)}"
    )


def format_header(config: RunConfig) -> str:
    """Line printed before the first request."""
    if config.fixed_count:
        return (
            f"Running {config.concurrency} requests with "
            f"{config.concurrency} concurrent workers"
        )
    return (
        f"Running for {format_duration(config.duration)} with "
        f"{config.concurrency} concurrent workers"
    )


class ConsoleOutput:
    """Plain text output to a stream (stdout by default)."""

    def __init__(self, file: Optional[TextIO] = None, err: Optional[TextIO] = None):
        self.file = file
        self.err = err

    def header(self, config: RunConfig) -> None:
        click.echo(format_header(config) + "\n", file=self.file)

    def result(self, result: Result) -> None:
        click.echo(format_result(result), file=self.file)

    def failure(self, error: Exception) -> None:
        """Report a failed attempt that does not end the run."""
        click.echo(f"Request failed: {error}", file=self.err, err=self.err is None)

    def summary(self, summary) -> None:
        """Print the final block of a ResultSummary."""
        click.echo("\n" + summary.render() + "\n", file=self.file)


class RichConsoleOutput(ConsoleOutput):
    """Plain per-request lines with a rich table for the summary."""

    def __init__(self, file: Optional[TextIO] = None, err: Optional[TextIO] = None):
        super().__init__(file=file, err=err)
        self.console = Console(file=file, highlight=False)

    def summary(self, summary) -> None:
        """Print the final block of a ResultSummary as a table."""
        self.console.print()
        self.console.print(f"Test ended. [bold]{summary.count}[/bold] requests made")
        averages = summary.averages()
        if not averages:
            self.console.print()
            return

        table = Table(
            title="Average Latency",
            box=box.ROUNDED,
            header_style="bold magenta",
        )
        table.add_column("Phase", style="cyan")
        table.add_column("Average", justify="right", style="green")

        for phase, value in averages.items():
            table.add_row(phase.label, format_phase(phase, value))

        self.console.print(table)
        self.console.print()
