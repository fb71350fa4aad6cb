"""
HTTP transport with per-request phase tracing.

httpx does not expose DNS resolution or TCP connect as separate events,
so the connection pool is given a network backend that resolves the
host itself and reports both steps to a PhaseClock. TLS and response
events arrive through httpcore's trace extension (see PhaseClock.trace).

A transport instance is single use: one connection, no keep-alive, so
every request pays for DNS, TCP and TLS again.
"""

import asyncio
import ipaddress
import logging
import socket
import ssl
from typing import Iterable, Optional

import certifi
import httpcore
import httpx

from .timing import PhaseClock

logger = logging.getLogger(__name__)


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create the TLS context used for https targets."""
    context = ssl.create_default_context(cafile=certifi.where())
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class TracingNetworkBackend(httpcore.AsyncNetworkBackend):
    """Network backend that reports DNS and TCP connect timing."""

    def __init__(
        self,
        clock: PhaseClock,
        backend: Optional[httpcore.AsyncNetworkBackend] = None,
    ):
        """
        Initialize the backend.

        Args:
            clock: Phase clock of the request using this backend
            backend: Backend that opens the actual sockets
        """
        self.clock = clock
        self._backend = backend or httpcore.AnyIOBackend()

    async def _resolve(self, host: str, port: int, timeout: Optional[float]) -> list[str]:
        """Resolve host to its addresses in resolver order, stamping DNS start/done."""
        loop = asyncio.get_running_loop()
        self.clock.dns_start()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(host, port, type=socket.SOCK_STREAM),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise httpcore.ConnectTimeout(f"DNS lookup for {host} timed out") from e
        except OSError as e:
            raise httpcore.ConnectError(f"DNS lookup for {host} failed: {e}") from e
        self.clock.dns_done()

        addresses = list(dict.fromkeys(info[4][0] for info in infos))
        if not addresses:
            raise httpcore.ConnectError(f"DNS lookup for {host} returned no addresses")
        logger.debug("Resolved %s to %s", host, ", ".join(addresses))
        return addresses

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options: Optional[Iterable] = None,
    ) -> httpcore.AsyncNetworkStream:
        """
        Resolve (unless host is an IP literal) and connect.

        Resolved addresses are tried in order until one accepts the
        connection. TCP connect time covers all attempts.
        """
        addresses = [host]
        if not _is_ip_address(host):
            addresses = await self._resolve(host, port, timeout)

        self.clock.connect_start()
        last_error: Optional[Exception] = None
        for address in addresses:
            try:
                stream = await self._backend.connect_tcp(
                    address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except (httpcore.ConnectError, httpcore.ConnectTimeout) as e:
                logger.debug("Connect to %s:%d failed: %r", address, port, e)
                last_error = e
                continue
            self.clock.connect_done()
            return stream

        raise last_error

    async def connect_unix_socket(
        self,
        path: str,
        timeout: Optional[float] = None,
        socket_options: Optional[Iterable] = None,
    ) -> httpcore.AsyncNetworkStream:
        return await self._backend.connect_unix_socket(
            path, timeout=timeout, socket_options=socket_options
        )

    async def sleep(self, seconds: float) -> None:
        await self._backend.sleep(seconds)


class ProbeTransport(httpx.AsyncHTTPTransport):
    """Single-use httpx transport whose connections report to a PhaseClock."""

    def __init__(
        self,
        clock: PhaseClock,
        ssl_context: ssl.SSLContext,
        http2: bool = True,
    ):
        """
        Initialize the transport.

        Args:
            clock: Phase clock of the request using this transport
            ssl_context: TLS context shared by all requests of an engine
            http2: Offer HTTP/2 during the TLS handshake
        """
        super().__init__(verify=ssl_context, http2=http2, trust_env=False, retries=0)
        # httpx has no public hook for the network backend, so the pool it
        # built is swapped for one that connects through the tracing backend.
        self._pool = httpcore.AsyncConnectionPool(
            ssl_context=ssl_context,
            max_connections=1,
            max_keepalive_connections=0,
            http1=True,
            http2=http2,
            retries=0,
            network_backend=TracingNetworkBackend(clock),
        )
