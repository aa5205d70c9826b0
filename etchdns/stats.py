"""Query statistics for the DNS proxy and for each upstream resolver."""

from __future__ import annotations

import asyncio
import copy
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Hashable, List, Optional, Tuple, Union

Duration = Union[timedelta, float, int]

DEFAULT_WEIGHT_FACTOR = 0.2


def _to_millis(response_time: Duration) -> int:
    """Whole milliseconds in a duration given as a timedelta or as seconds."""
    if not isinstance(response_time, timedelta):
        response_time = timedelta(seconds=response_time)
    return response_time // timedelta(milliseconds=1)


@dataclass
class ResolverStats:
    """Counters and a moving average of response times for one resolver."""

    avg_response_time_ms: float = 0.0
    success_count: int = 0
    failure_count: int = 0
    timeout_count: int = 0
    last_used: float = field(default_factory=time.time)
    weight_factor: float = field(default=DEFAULT_WEIGHT_FACTOR, repr=False)

    def update_response_time(self, response_time: Duration) -> None:
        """Fold a new measurement into the moving average."""
        response_time_ms = float(_to_millis(response_time))
        if self.avg_response_time_ms == 0.0:
            self.avg_response_time_ms = response_time_ms
        else:
            self.avg_response_time_ms = (
                (1.0 - self.weight_factor) * self.avg_response_time_ms
                + self.weight_factor * response_time_ms
            )

    def record_success(self, response_time: Duration) -> None:
        self.success_count += 1
        self.last_used = time.time()
        self.update_response_time(response_time)

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_used = time.time()

    def record_timeout(self) -> None:
        self.timeout_count += 1
        self.last_used = time.time()


@dataclass
class GlobalStats:
    """Server-wide counters plus per-resolver statistics."""

    total_queries: int = 0
    total_successful: int = 0
    total_failed: int = 0
    total_timeouts: int = 0
    client_queries: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    active_udp_clients: int = 0
    active_tcp_clients: int = 0
    active_inflight_queries: int = 0
    udp_receive_errors: int = 0
    tcp_accept_errors: int = 0
    resolver_stats: Dict[Hashable, ResolverStats] = field(default_factory=dict)

    def _resolver(self, resolver: Hashable) -> ResolverStats:
        return self.resolver_stats.setdefault(resolver, ResolverStats())

    def record_success(self, resolver: Hashable, response_time: Duration) -> None:
        self.total_queries += 1
        self.total_successful += 1
        self._resolver(resolver).record_success(response_time)

    def record_failure(self, resolver: Hashable) -> None:
        self.total_queries += 1
        self.total_failed += 1
        self._resolver(resolver).record_failure()

    def record_timeout(self, resolver: Hashable) -> None:
        self.total_queries += 1
        self.total_timeouts += 1
        self._resolver(resolver).record_timeout()

    def get_resolver_stats(self, resolver: Hashable) -> Optional[ResolverStats]:
        return self.resolver_stats.get(resolver)

    def record_client_query(self) -> None:
        self.client_queries += 1

    def record_cache_hit(self) -> None:
        self.cache_hits += 1

    def record_cache_miss(self) -> None:
        self.cache_misses += 1

    def increment_active_udp_clients(self) -> None:
        self.active_udp_clients += 1

    def decrement_active_udp_clients(self) -> None:
        self.active_udp_clients = max(0, self.active_udp_clients - 1)

    def increment_active_tcp_clients(self) -> None:
        self.active_tcp_clients += 1

    def decrement_active_tcp_clients(self) -> None:
        self.active_tcp_clients = max(0, self.active_tcp_clients - 1)

    def increment_active_inflight_queries(self) -> None:
        self.active_inflight_queries += 1

    def decrement_active_inflight_queries(self) -> None:
        self.active_inflight_queries = max(0, self.active_inflight_queries - 1)

    def increment_udp_receive_errors(self) -> None:
        self.udp_receive_errors += 1

    def increment_tcp_accept_errors(self) -> None:
        self.tcp_accept_errors += 1

    def get_resolvers_by_speed(self) -> List[Tuple[Hashable, float]]:
        """Resolvers with their average response time, fastest first."""
        return sorted(
            ((addr, stats.avg_response_time_ms) for addr, stats in self.resolver_stats.items()),
            key=lambda item: item[1],
        )


class SharedStats:
    """GlobalStats guarded by an asyncio lock for use from concurrent tasks."""

    def __init__(self) -> None:
        self._stats = GlobalStats()
        self._lock = asyncio.Lock()

    async def record_success(self, resolver: Hashable, response_time: Duration) -> None:
        async with self._lock:
            self._stats.record_success(resolver, response_time)

    async def record_failure(self, resolver: Hashable) -> None:
        async with self._lock:
            self._stats.record_failure(resolver)

    async def record_timeout(self, resolver: Hashable) -> None:
        async with self._lock:
            self._stats.record_timeout(resolver)

    async def get_stats(self) -> GlobalStats:
        """An independent snapshot of the current statistics."""
        async with self._lock:
            return copy.deepcopy(self._stats)

    async def record_client_query(self) -> None:
        async with self._lock:
            self._stats.record_client_query()

    async def record_cache_hit(self) -> None:
        async with self._lock:
            self._stats.record_cache_hit()

    async def record_cache_miss(self) -> None:
        async with self._lock:
            self._stats.record_cache_miss()

    async def increment_active_udp_clients(self) -> None:
        async with self._lock:
            self._stats.increment_active_udp_clients()

    async def decrement_active_udp_clients(self) -> None:
        async with self._lock:
            self._stats.decrement_active_udp_clients()

    async def increment_active_tcp_clients(self) -> None:
        async with self._lock:
            self._stats.increment_active_tcp_clients()

    async def decrement_active_tcp_clients(self) -> None:
        async with self._lock:
            self._stats.decrement_active_tcp_clients()

    async def increment_active_inflight_queries(self) -> None:
        async with self._lock:
            self._stats.increment_active_inflight_queries()

    async def decrement_active_inflight_queries(self) -> None:
        async with self._lock:
            self._stats.decrement_active_inflight_queries()

    async def get_resolvers_by_speed(self) -> List[Tuple[Hashable, float]]:
        async with self._lock:
            return self._stats.get_resolvers_by_speed()

    async def increment_udp_receive_errors(self) -> None:
        async with self._lock:
            self._stats.increment_udp_receive_errors()

    async def increment_tcp_accept_errors(self) -> None:
        async with self._lock:
            self._stats.increment_tcp_accept_errors()