"""
Exception types raised by the probe.

Configuration problems are reported before any request is made; the rest
describe how a run ended.
"""

from typing import Optional


class ProbeError(Exception):
    """Base class for all probe errors."""


class ConfigError(ProbeError, ValueError):
    """Invalid run configuration (bad URL, non-positive concurrency, ...)."""


class TransportError(ProbeError):
    """A single request attempt failed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class RunTimeoutError(ProbeError, TimeoutError):
    """Fixed-count run did not collect all attempts within its bound."""

    def __init__(self, message: str, bound: float):
        super().__init__(message)
        self.bound = bound


class RunInterrupted(ProbeError, InterruptedError):
    """Run was stopped by an operator interrupt."""
