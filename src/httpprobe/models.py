"""
Data models for the HTTP latency probe.

Defines the per-request timestamp record, the derived request result
and the run configuration.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from .errors import ConfigError


class Phase(Enum):
    """Timed segments of one request, in report order."""
    DNS = "dns"
    TCP = "tcp"
    TLS = "tls"
    SERVER = "server"
    TOTAL = "total"

    @property
    def label(self) -> str:
        """Human-readable name used in the summary."""
        return PHASE_LABELS[self]

    @property
    def optional(self) -> bool:
        """Phases that legitimately do not happen on every request."""
        return self in (Phase.DNS, Phase.TLS)


PHASE_LABELS = {
    Phase.DNS: "DNS lookup",
    Phase.TCP: "TCP connect",
    Phase.TLS: "TLS handshake",
    Phase.SERVER: "server processing",
    Phase.TOTAL: "round trip",
}


@dataclass
class PhaseTimestamps:
    """
    Instants recorded during one request.

    Values come from a monotonic clock and are None until stamped.
    An instance belongs to a single in-flight request.
    """
    dns_start: Optional[float] = None
    dns_done: Optional[float] = None
    connect_start: Optional[float] = None
    connect_done: Optional[float] = None
    conn: Optional[float] = None  # connection established
    first_response_byte: Optional[float] = None
    tls_handshake_start: Optional[float] = None
    tls_handshake_done: Optional[float] = None
    round_trip_start: Optional[float] = None
    round_trip_done: Optional[float] = None


def elapsed(start: Optional[float], done: Optional[float]) -> float:
    """Seconds between two stamps, 0 if either was never recorded."""
    if start is None or done is None:
        return 0.0
    return done - start


@dataclass(frozen=True)
class Result:
    """Timing of one completed request."""
    proto: str
    status: str
    dns_lookup: float
    tcp_connect: float
    tls_handshake: float
    server_processing: float
    round_trip: float

    @classmethod
    def from_timestamps(cls, proto: str, status: str, times: PhaseTimestamps) -> "Result":
        """Derive phase durations from a finished request's timestamps."""
        return cls(
            proto=proto,
            status=status,
            dns_lookup=elapsed(times.dns_start, times.dns_done),
            tcp_connect=elapsed(times.connect_start, times.connect_done),
            tls_handshake=elapsed(times.tls_handshake_start, times.tls_handshake_done),
            server_processing=elapsed(times.conn, times.first_response_byte),
            round_trip=elapsed(times.round_trip_start, times.round_trip_done),
        )

    def duration(self, phase: Phase) -> float:
        """Duration of the given phase in seconds."""
        return {
            Phase.DNS: self.dns_lookup,
            Phase.TCP: self.tcp_connect,
            Phase.TLS: self.tls_handshake,
            Phase.SERVER: self.server_processing,
            Phase.TOTAL: self.round_trip,
        }[phase]


@dataclass(frozen=True)
class RunConfig:
    """Configuration for a probe run."""
    url: str
    concurrency: int = 1
    duration: Optional[float] = None  # seconds; None selects fixed-count mode
    timeout: Optional[float] = None   # per-request, enforced by the transport
    attempt_timeout: float = 30.0     # fixed-count mode bound
    http2: bool = True
    verify: bool = True

    @property
    def fixed_count(self) -> bool:
        """True when the run ends after one request per worker."""
        return self.duration is None

    def validate(self) -> None:
        """Raise ConfigError if the configuration cannot be run."""
        if not self.url:
            raise ConfigError("url not provided")
        try:
            url = httpx.URL(self.url)
        except httpx.InvalidURL as e:
            raise ConfigError(f"invalid url {self.url!r}: {e}") from e
        if url.scheme not in ("http", "https"):
            raise ConfigError(f"url must be an absolute http or https url, got {self.url!r}")
        if not url.host:
            raise ConfigError(f"url has no host: {self.url!r}")
        if self.concurrency < 1:
            raise ConfigError("concurrency should be greater or equal to 1")
        if self.duration is not None and self.duration <= 0:
            raise ConfigError("duration must be positive")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.attempt_timeout <= 0:
            raise ConfigError("attempt timeout must be positive")
