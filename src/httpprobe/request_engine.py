"""
Core HTTP request engine.

Executes one GET request per call with a fresh phase clock and a
single-use transport, and turns the recorded timestamps into a Result.
"""

import logging
from typing import Callable, Optional

import httpx

from .errors import TransportError
from .models import Result
from .timing import PhaseClock
from .transports import ProbeTransport, create_ssl_context

logger = logging.getLogger(__name__)

# Connect bound applied when no per-request timeout is configured.
DEFAULT_CONNECT_TIMEOUT = 30.0

TransportFactory = Callable[[PhaseClock], httpx.AsyncBaseTransport]


class HTTPRequestEngine:
    """
    Timed HTTP request executor.

    Every request gets its own PhaseClock and connection, so no timing
    state is shared between concurrent requests.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        http2: bool = True,
        verify: bool = True,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """
        Initialize the request engine.

        Args:
            timeout: Per-request timeout in seconds (None for no overall limit)
            http2: Whether to attempt HTTP/2
            verify: Whether to verify TLS certificates
            transport_factory: Builds the transport for one request
        """
        self.timeout = timeout
        self.http2 = http2
        self.verify = verify
        # One TLS context for every request made by this engine.
        self.ssl_context = create_ssl_context(verify)
        self._transport_factory = transport_factory or self._create_transport

    def _create_transport(self, clock: PhaseClock) -> httpx.AsyncBaseTransport:
        return ProbeTransport(clock, self.ssl_context, http2=self.http2)

    def _create_timeout(self) -> httpx.Timeout:
        if self.timeout is None:
            return httpx.Timeout(None, connect=DEFAULT_CONNECT_TIMEOUT)
        return httpx.Timeout(self.timeout)

    async def request(self, url: str) -> Result:
        """
        Execute a single GET request.

        The round trip ends when the response headers arrive; the body
        is not read.

        Args:
            url: Target URL

        Returns:
            Result with the phase durations of this request

        Raises:
            TransportError: The request failed for any reason
        """
        clock = PhaseClock()
        transport = self._transport_factory(clock)

        try:
            async with httpx.AsyncClient(
                transport=transport,
                timeout=self._create_timeout(),
                trust_env=False,
            ) as client:
                clock.round_trip_start()
                async with client.stream(
                    "GET",
                    url,
                    extensions={"trace": clock.trace},
                ) as response:
                    clock.round_trip_done()
                    return Result.from_timestamps(
                        proto=response.http_version,
                        status=f"{response.status_code} {response.reason_phrase}",
                        times=clock.times,
                    )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Request to %s failed: %r", url, e)
            message = str(e) or type(e).__name__
            raise TransportError(f'Get "{url}": {message}', url=url) from e
