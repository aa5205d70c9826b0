"""Periodic health probes of upstream DNS servers over UDP."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import random
import time
from datetime import timedelta
from typing import Callable, Iterable, List, Optional, Tuple, Union

from etchdns.stats import SharedStats

log = logging.getLogger(__name__)

MIN_PROBE_INTERVAL_SECS = 60

DNS_HEADER_SIZE = 12
DNS_MAX_PACKET_SIZE = 65535

SocketAddress = Tuple[str, int]
Validator = Callable[[bytes], None]

_QUERY_TEMPLATE = bytes(
    [
        0x00, 0x00,  # transaction ID, replaced per query
        0x01, 0x00,  # flags: standard query, recursion desired
        0x00, 0x01,  # one question
        0x00, 0x00,  # no answers
        0x00, 0x00,  # no authority records
        0x00, 0x00,  # no additional records
    ]
) + b"\x06google\x03com\x00" + bytes(
    [
        0x00, 0x01,  # type A
        0x00, 0x01,  # class IN
    ]
)


class ProbeError(Exception):
    """A probe of an upstream server did not succeed."""


class UpstreamError(ProbeError):
    """The upstream server could not be reached or answered badly."""


class UpstreamTimeout(ProbeError):
    """The upstream server did not answer in time."""

    def __init__(self, message: str = "Upstream server timed out") -> None:
        super().__init__(message)


def _query_with_id(tid: int) -> bytes:
    return tid.to_bytes(2, "big") + _QUERY_TEMPLATE[2:]


def create_random_query() -> bytes:
    """An A query for google.com carrying a random transaction ID."""
    return _query_with_id(random.randrange(65535))


def _check_response_header(packet: bytes) -> None:
    """Reject packets too short for a DNS header or not flagged as responses."""
    if len(packet) < DNS_HEADER_SIZE:
        raise ValueError(f"packet too short ({len(packet)} bytes)")
    if not packet[2] & 0x80:
        raise ValueError("packet is not a response")


def parse_socket_address(text: str) -> SocketAddress:
    """Parse ``ip:port`` or ``[ipv6]:port`` into an ``(ip, port)`` pair."""
    host, sep, port_text = text.rpartition(":")
    if not sep or not port_text.isdigit():
        raise ValueError(f"invalid socket address syntax: {text!r}")
    port = int(port_text)
    if port > 65535:
        raise ValueError(f"invalid port in socket address: {text!r}")
    if host.startswith("[") and host.endswith("]"):
        ip = ipaddress.IPv6Address(host[1:-1])
    else:
        ip = ipaddress.IPv4Address(host)
    return str(ip), port


def _normalize(server_addr: Union[str, SocketAddress]) -> SocketAddress:
    if isinstance(server_addr, str):
        return parse_socket_address(server_addr)
    host, port = server_addr
    return str(ipaddress.ip_address(host)), int(port)


def _format_address(addr: SocketAddress) -> str:
    host, port = addr
    if ipaddress.ip_address(host).version == 6:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class _ProbeProtocol(asyncio.DatagramProtocol):
    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.response: asyncio.Future = loop.create_future()

    def datagram_received(self, data: bytes, addr) -> None:
        if not self.response.done():
            self.response.set_result(bytes(data[:DNS_MAX_PACKET_SIZE]))

    def error_received(self, exc: Exception) -> None:
        if not self.response.done():
            self.response.set_exception(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if not self.response.done():
            self.response.set_exception(exc or ConnectionError("socket closed"))


async def _probe(
    addr: SocketAddress,
    timeout_secs: float,
    validate: Validator,
    query: bytes,
) -> timedelta:
    loop = asyncio.get_running_loop()
    label = _format_address(addr)
    is_v6 = ipaddress.ip_address(addr[0]).version == 6
    local_addr = ("::", 0) if is_v6 else ("0.0.0.0", 0)

    try:
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _ProbeProtocol(loop), local_addr=local_addr
        )
    except OSError as exc:
        raise UpstreamError(f"Failed to bind socket for probe: {exc}") from exc

    try:
        start = time.perf_counter()
        try:
            transport.sendto(query, addr)
        except OSError as exc:
            raise UpstreamError(f"Failed to send probe to {label}: {exc}") from exc

        try:
            packet = await asyncio.wait_for(protocol.response, timeout_secs)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout() from exc
        except OSError as exc:
            raise UpstreamError(
                f"Failed to receive response from {label}: {exc}"
            ) from exc
        elapsed = timedelta(seconds=time.perf_counter() - start)

        try:
            validate(packet)
        except Exception as exc:
            raise UpstreamError(f"Invalid DNS response from {label}: {exc}") from exc
        return elapsed
    finally:
        transport.close()


async def probe_server(
    server_addr: Union[str, SocketAddress],
    timeout_secs: float,
    validate: Optional[Validator] = None,
) -> timedelta:
    """Send one query to ``server_addr`` and return how long the answer took.

    ``validate`` receives the raw response and raises to reject it; by default
    only the header is checked. Raises :class:`UpstreamTimeout` when no answer
    arrives within ``timeout_secs`` and :class:`UpstreamError` otherwise.
    """
    return await _probe(
        _normalize(server_addr),
        timeout_secs,
        validate or _check_response_header,
        create_random_query(),
    )


class ServerProber:
    """Periodically probes a list of upstream servers and records the results."""

    def __init__(
        self,
        upstream_servers: Iterable[str],
        stats: SharedStats,
        server_timeout: float,
        probe_interval: Optional[float] = None,
        probe_timeout: Optional[float] = None,
        validate: Optional[Validator] = None,
    ) -> None:
        self.upstream_servers: List[str] = list(upstream_servers)
        self.stats = stats
        self.probe_interval = (
            probe_interval
            if probe_interval is not None
            else max(MIN_PROBE_INTERVAL_SECS, server_timeout)
        )
        self.probe_timeout = probe_timeout if probe_timeout is not None else server_timeout
        self._validate = validate or _check_response_header

    def start(self) -> "asyncio.Task[None]":
        """Run probes every ``probe_interval`` seconds in a background task."""
        return asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        log.info(
            "Starting server prober with interval of %s seconds", self.probe_interval
        )
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            await self.probe_all_servers()
            next_tick += self.probe_interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    async def probe_all_servers(self) -> None:
        """Probe every configured server once, recording success or failure."""
        log.debug("Probing all upstream DNS servers")
        for server in self.upstream_servers:
            try:
                addr = parse_socket_address(server)
            except ValueError as exc:
                log.error("Failed to parse server address %s: %s", server, exc)
                continue
            try:
                response_time = await self.probe_server(addr)
            except ProbeError as exc:
                log.warning("Probe to %s failed: %s", server, exc)
                await self.stats.record_failure(addr)
            else:
                log.debug("Probe to %s completed in %s", server, response_time)
                await self.stats.record_success(addr, response_time)

    async def probe_server(self, server_addr: Union[str, SocketAddress]) -> timedelta:
        """Probe one server with this prober's timeout and validator."""
        return await _probe(
            _normalize(server_addr),
            self.probe_timeout,
            self._validate,
            self.create_random_query(),
        )

    def create_random_query(self) -> bytes:
        """An A query for google.com carrying a random 16-bit transaction ID."""
        return _query_with_id(random.randrange(65536))