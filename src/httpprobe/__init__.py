"""
httpprobe - concurrent HTTP latency probe.

Breaks every request down into DNS lookup, TCP connect, TLS handshake,
server processing and total round trip.
"""

__version__ = "1.0.0"

from .errors import ConfigError, RunInterrupted, RunTimeoutError, TransportError
from .models import Phase, PhaseTimestamps, Result, RunConfig
from .request_engine import HTTPRequestEngine
from .runner import TestRunner
from .statistics import ResultSummary

__all__ = [
    "__version__",
    "ConfigError",
    "RunInterrupted",
    "RunTimeoutError",
    "TransportError",
    "Phase",
    "PhaseTimestamps",
    "Result",
    "RunConfig",
    "HTTPRequestEngine",
    "TestRunner",
    "ResultSummary",
]
