"""Per-client sliding-window rate limiting for DNS queries."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, List, Union

log = logging.getLogger(__name__)

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class RateLimiterStats:
    """A snapshot of the rate limiter's state."""

    total_tracked_clients: int
    active_clients: int
    max_queries_per_client: int
    total_recent_queries: int


@dataclass
class _ClientActivity:
    last_active: float
    total_queries: int = 1
    timestamps: List[float] = field(default_factory=list)


class RateLimiter:
    """Limits each client IP to ``max_queries`` queries per ``window`` seconds.

    At most ``max_clients`` addresses are tracked; when full, a client from the
    least recently used third with the fewest queries is evicted.
    """

    def __init__(
        self,
        window: int,
        max_queries: int,
        max_clients: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window
        self.max_queries = max_queries
        self.max_clients = max_clients
        self._clock = clock
        # Ordered from least to most recently active.
        self._clients: "OrderedDict[IpAddress, _ClientActivity]" = OrderedDict()
        self._last_cleanup = clock()
        self._lock = asyncio.Lock()

    async def is_allowed(self, client_ip) -> bool:
        """Record a query from ``client_ip`` and say whether it is within the limit."""
        ip = ipaddress.ip_address(client_ip)
        async with self._lock:
            now = self._clock()
            if now - self._last_cleanup > self.window // 2:
                self._cleanup(now)

            activity = self._clients.get(ip)
            if activity is None:
                if self._clients and len(self._clients) >= self.max_clients:
                    self._evict_client()
                activity = _ClientActivity(last_active=now)
                self._clients[ip] = activity
            else:
                self._clients.move_to_end(ip)
                activity.last_active = now
                activity.total_queries += 1

            window_start = now - self.window
            activity.timestamps = [t for t in activity.timestamps if t >= window_start]

            if len(activity.timestamps) >= self.max_queries:
                log.warning(
                    "Rate limit exceeded for client %s: %d queries in %d seconds (limit: %d)",
                    ip,
                    len(activity.timestamps),
                    self.window,
                    self.max_queries,
                )
                return False

            activity.timestamps.append(now)
            return True

    def _evict_client(self) -> None:
        subset_size = max(len(self._clients) // 3, 1)
        candidates = list(self._clients)[:subset_size]
        victim = min(candidates, key=lambda ip: self._clients[ip].total_queries)
        del self._clients[victim]
        log.debug("Evicted client %s from rate limiter (low activity, LRU)", victim)

    def _cleanup(self, now: float) -> None:
        window_start = now - self.window
        removed = []
        for ip, activity in self._clients.items():
            activity.timestamps = [t for t in activity.timestamps if t >= window_start]
            if not activity.timestamps:
                removed.append(ip)
        for ip in removed:
            del self._clients[ip]
        self._last_cleanup = now
        log.debug(
            "Rate limiter cleanup completed: removed %d inactive clients, tracking %d clients",
            len(removed),
            len(self._clients),
        )

    async def get_stats(self) -> RateLimiterStats:
        """Summarise tracked clients and their queries within the current window."""
        async with self._lock:
            window_start = self._clock() - self.window
            recent_counts = [
                sum(1 for t in activity.timestamps if t >= window_start)
                for activity in self._clients.values()
            ]
            active = [count for count in recent_counts if count > 0]
            return RateLimiterStats(
                total_tracked_clients=len(self._clients),
                active_clients=len(active),
                max_queries_per_client=max(active, default=0),
                total_recent_queries=sum(active),
            )