"""
Phase clock for a single HTTP request.

Each hook stamps the current monotonic time into a PhaseTimestamps
record. The transport calls the hooks as the request progresses; the
request engine brackets the whole call with the round-trip hooks.
"""

import time
from typing import Callable, Optional

from .models import PhaseTimestamps


# httpcore trace event -> PhaseTimestamps field.
# httpcore has no first-byte event: the response is stamped once all
# headers have been read, slightly later than the first byte itself.
TRACE_EVENTS = {
    "connection.start_tls.started": "tls_handshake_start",
    "connection.start_tls.complete": "tls_handshake_done",
    "http11.send_request_headers.started": "conn",
    "http2.send_request_headers.started": "conn",
    "http11.receive_response_headers.complete": "first_response_byte",
    "http2.receive_response_headers.complete": "first_response_byte",
}


class PhaseClock:
    """Records lifecycle events of one request."""

    def __init__(
        self,
        times: Optional[PhaseTimestamps] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.times = times if times is not None else PhaseTimestamps()
        self._clock = clock

    def _stamp(self, name: str) -> None:
        setattr(self.times, name, self._clock())

    def dns_start(self) -> None:
        self._stamp("dns_start")

    def dns_done(self) -> None:
        self._stamp("dns_done")

    def connect_start(self) -> None:
        self._stamp("connect_start")

    def connect_done(self) -> None:
        self._stamp("connect_done")

    def connection_established(self) -> None:
        self._stamp("conn")

    def first_response_byte(self) -> None:
        self._stamp("first_response_byte")

    def tls_handshake_start(self) -> None:
        self._stamp("tls_handshake_start")

    def tls_handshake_done(self) -> None:
        self._stamp("tls_handshake_done")

    def round_trip_start(self) -> None:
        self._stamp("round_trip_start")

    def round_trip_done(self) -> None:
        self._stamp("round_trip_done")

    async def trace(self, event_name: str, info: dict) -> None:
        """
        httpcore trace extension callback.

        Maps transport events onto the hooks above. Events without a
        matching phase are ignored.
        """
        field = TRACE_EVENTS.get(event_name)
        if field is None:
            return
        # Only the first request on the connection marks it as established.
        if field == "conn" and self.times.conn is not None:
            return
        self._stamp(field)
