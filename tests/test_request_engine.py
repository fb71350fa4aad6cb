"""
Tests for the request engine and the tracing transport.
"""

import asyncio
import http.server
import io
import os
import socket
import ssl
import threading
import unittest
from unittest import mock

import httpcore
import httpx

from httpprobe.errors import TransportError
from httpprobe.models import RunConfig
from httpprobe.output import ConsoleOutput
from httpprobe.request_engine import HTTPRequestEngine
from httpprobe.runner import TestRunner
from httpprobe.timing import PhaseClock
from httpprobe.transports import TracingNetworkBackend

CERTFILE = os.path.join(os.path.dirname(__file__), "data", "localhost.pem")


class _OKHandler(http.server.BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_GET(self):
        body = b"ok"
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


class TestRequestEngineMocked(unittest.IsolatedAsyncioTestCase):
    """Engine behaviour with an in-memory transport."""

    async def test_result_carries_protocol_and_status(self):
        engine = HTTPRequestEngine(
            transport_factory=lambda clock: httpx.MockTransport(
                lambda request: httpx.Response(404)
            ),
        )
        result = await engine.request("http://example.test/")

        self.assertEqual(result.proto, "HTTP/1.1")
        self.assertEqual(result.status, "404 Not Found")
        self.assertGreaterEqual(result.round_trip, 0.0)
        # no connection events from a mock transport
        self.assertEqual(result.dns_lookup, 0.0)
        self.assertEqual(result.tls_handshake, 0.0)

    async def test_client_error_becomes_transport_error(self):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        engine = HTTPRequestEngine(
            transport_factory=lambda clock: httpx.MockTransport(fail),
        )
        with self.assertRaises(TransportError) as ctx:
            await engine.request("http://example.test/")

        self.assertEqual(ctx.exception.url, "http://example.test/")
        self.assertIn("connection refused", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, httpx.ConnectError)

    async def test_each_request_gets_a_fresh_clock(self):
        clocks = []

        def factory(clock):
            clocks.append(clock)
            return httpx.MockTransport(lambda request: httpx.Response(200))

        engine = HTTPRequestEngine(transport_factory=factory)
        await engine.request("http://example.test/")
        await engine.request("http://example.test/")

        self.assertEqual(len(clocks), 2)
        self.assertIsNot(clocks[0].times, clocks[1].times)


class _LoopbackServer(http.server.ThreadingHTTPServer):
    daemon_threads = True
    request_queue_size = 64


def _start_server(test, context=None):
    """Serve _OKHandler on 127.0.0.1 until the test case ends."""
    server = _LoopbackServer(("127.0.0.1", 0), _OKHandler)
    if context is not None:
        server.socket = context.wrap_socket(server.socket, server_side=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    def stop():
        server.shutdown()
        server.server_close()
        thread.join()

    test.addCleanup(stop)
    return server.server_address[1]


def _resolving_to(name, *addresses):
    """Build a getaddrinfo replacement answering name with addresses."""
    loop = asyncio.get_running_loop()
    original = loop.getaddrinfo

    async def getaddrinfo(host, port, *args, **kwargs):
        if host != name:
            return await original(host, port, *args, **kwargs)
        return [
            (socket.AF_INET6 if ":" in address else socket.AF_INET,
             socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (address, port))
            for address in addresses
        ]

    return mock.patch.object(loop, "getaddrinfo", getaddrinfo)


class TestRequestEngineLocalServer(unittest.IsolatedAsyncioTestCase):
    """Engine against a real HTTP server on the loopback interface."""

    def setUp(self):
        self.port = _start_server(self)
        self.url = f"http://127.0.0.1:{self.port}/"

    async def test_plain_http_phases(self):
        engine = HTTPRequestEngine(timeout=5.0)
        result = await engine.request(self.url)

        self.assertEqual(result.proto, "HTTP/1.1")
        self.assertEqual(result.status, "200 OK")
        self.assertEqual(result.dns_lookup, 0.0)  # IP literal, nothing resolved
        self.assertEqual(result.tls_handshake, 0.0)  # plain http
        self.assertGreater(result.tcp_connect, 0.0)
        self.assertGreater(result.server_processing, 0.0)
        self.assertGreater(result.round_trip, 0.0)
        self.assertGreaterEqual(result.round_trip, result.tcp_connect)

    async def test_connection_refused(self):
        with socket.socket() as sock:
            sock.bind(("127.0.0.1", 0))
            port = sock.getsockname()[1]

        engine = HTTPRequestEngine(timeout=5.0)
        with self.assertRaises(TransportError):
            await engine.request(f"http://127.0.0.1:{port}/")

    async def test_unreachable_first_address_falls_back(self):
        engine = HTTPRequestEngine(timeout=5.0)

        # nothing listens on ::1, so only the second address answers
        with _resolving_to("dualstack.test", "::1", "127.0.0.1"):
            result = await engine.request(f"http://dualstack.test:{self.port}/")

        self.assertEqual(result.status, "200 OK")
        self.assertGreater(result.dns_lookup, 0.0)
        self.assertGreater(result.tcp_connect, 0.0)


class TestRequestEngineTLS(unittest.IsolatedAsyncioTestCase):
    """Engine against a TLS server with a self-signed certificate."""

    def setUp(self):
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(CERTFILE)
        self.port = _start_server(self, context)
        self.url = f"https://127.0.0.1:{self.port}/"

    async def test_tls_handshake_is_timed(self):
        engine = HTTPRequestEngine(timeout=5.0, verify=False)
        result = await engine.request(self.url)

        self.assertEqual(result.status, "200 OK")
        self.assertEqual(result.proto, "HTTP/1.1")  # server offers no h2
        self.assertEqual(result.dns_lookup, 0.0)
        self.assertGreater(result.tcp_connect, 0.0)
        self.assertGreater(result.tls_handshake, 0.0)
        self.assertGreater(result.server_processing, 0.0)
        self.assertGreaterEqual(
            result.round_trip, result.tcp_connect + result.tls_handshake
        )

    async def test_untrusted_certificate_rejected(self):
        engine = HTTPRequestEngine(timeout=5.0)

        with self.assertRaises(TransportError):
            await engine.request(self.url)

    async def test_tls_context_shared_between_requests(self):
        engine = HTTPRequestEngine(timeout=5.0, verify=False)

        with mock.patch(
            "ssl.create_default_context", wraps=ssl.create_default_context
        ) as create_context:
            await engine.request(self.url)
            await engine.request(self.url)

        self.assertEqual(create_context.call_count, 0)


class TestRunnerAgainstLocalServer(unittest.IsolatedAsyncioTestCase):
    """Full duration-mode runs with the real engine."""

    def setUp(self):
        self.port = _start_server(self)
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()

    async def test_concurrent_run_ends_on_budget(self):
        runner = TestRunner(
            RunConfig(
                url=f"http://127.0.0.1:{self.port}/",
                concurrency=8,
                duration=0.5,
                timeout=5.0,
            ),
            output=ConsoleOutput(file=self.stdout, err=self.stderr),
            interrupt=asyncio.Event(),
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        summary = await asyncio.wait_for(runner.run(), 10.0)
        elapsed = loop.time() - started

        self.assertGreaterEqual(summary.count, 1)
        self.assertLess(elapsed, 0.5 + 2.0)
        lines = [line for line in self.stdout.getvalue().splitlines() if line.startswith("HTTP/")]
        self.assertEqual(len(lines), summary.count)
        self.assertIn(f"Test ended. {summary.count} requests made", self.stdout.getvalue())
        self.assertEqual(self.stderr.getvalue(), "")


class _RecordingBackend:
    """Stands in for the socket backend and remembers the addresses tried."""

    def __init__(self, refuse=()):
        self.addresses = []
        self.refuse = set(refuse)

    async def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        self.addresses.append(host)
        if host in self.refuse:
            raise httpcore.ConnectError(f"connect to {host} refused")
        return object()


class TestTracingNetworkBackend(unittest.IsolatedAsyncioTestCase):
    """DNS and connect stamping in the network backend."""

    async def test_ip_literal_skips_dns(self):
        clock = PhaseClock()
        inner = _RecordingBackend()
        backend = TracingNetworkBackend(clock, backend=inner)

        await backend.connect_tcp("127.0.0.1", 80)

        self.assertIsNone(clock.times.dns_start)
        self.assertIsNotNone(clock.times.connect_start)
        self.assertIsNotNone(clock.times.connect_done)
        self.assertEqual(inner.addresses, ["127.0.0.1"])

    async def test_hostname_is_resolved_before_connect(self):
        clock = PhaseClock()
        inner = _RecordingBackend()
        backend = TracingNetworkBackend(clock, backend=inner)

        await backend.connect_tcp("localhost", 80, timeout=5.0)

        times = clock.times
        self.assertIsNotNone(times.dns_start)
        self.assertLessEqual(times.dns_start, times.dns_done)
        self.assertLessEqual(times.dns_done, times.connect_start)
        self.assertNotEqual(inner.addresses[0], "localhost")

    async def test_addresses_tried_in_order(self):
        clock = PhaseClock()
        inner = _RecordingBackend(refuse={"2001:db8::1"})
        backend = TracingNetworkBackend(clock, backend=inner)

        with _resolving_to("dualstack.test", "2001:db8::1", "192.0.2.1", "2001:db8::1"):
            await backend.connect_tcp("dualstack.test", 443, timeout=5.0)

        times = clock.times
        self.assertEqual(inner.addresses, ["2001:db8::1", "192.0.2.1"])
        self.assertLessEqual(times.dns_done, times.connect_start)
        self.assertLessEqual(times.connect_start, times.connect_done)

    async def test_all_addresses_refused(self):
        clock = PhaseClock()
        inner = _RecordingBackend(refuse={"2001:db8::1", "192.0.2.1"})
        backend = TracingNetworkBackend(clock, backend=inner)

        with _resolving_to("dualstack.test", "2001:db8::1", "192.0.2.1"):
            with self.assertRaises(httpcore.ConnectError) as ctx:
                await backend.connect_tcp("dualstack.test", 443, timeout=5.0)

        self.assertIn("192.0.2.1", str(ctx.exception))
        self.assertEqual(inner.addresses, ["2001:db8::1", "192.0.2.1"])
        self.assertIsNotNone(clock.times.connect_start)
        self.assertIsNone(clock.times.connect_done)

    async def test_resolver_failure_is_a_connect_error(self):
        clock = PhaseClock()
        backend = TracingNetworkBackend(clock, backend=_RecordingBackend())
        loop = asyncio.get_running_loop()

        async def failing(host, port, *args, **kwargs):
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        with mock.patch.object(loop, "getaddrinfo", failing):
            with self.assertRaises(httpcore.ConnectError):
                await backend.connect_tcp("missing.test", 80, timeout=5.0)

        self.assertIsNone(clock.times.connect_start)


if __name__ == "__main__":
    unittest.main()
