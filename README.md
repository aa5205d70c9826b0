# etchdns

Asyncio building blocks for a caching DNS proxy. The package has no
dependencies outside the standard library.

## Modules

### `etchdns.stats`

- `ResolverStats` holds the success, failure and timeout counts for one
  resolver, the time it was last used, and an exponential moving average of
  its response times in milliseconds. A new measurement carries a weight of
  0.2, and the first measurement is taken as the average.
- `GlobalStats` holds server-wide counters: queries, successes, failures,
  timeouts, client queries, cache hits and misses, active UDP/TCP clients,
  active in-flight queries, UDP receive errors and TCP accept errors. It also
  holds a `ResolverStats` per resolver. The `decrement_*` methods never go
  below zero. `get_resolvers_by_speed()` returns `(resolver, avg_ms)` pairs,
  fastest first.
- `SharedStats` wraps a `GlobalStats` behind an `asyncio.Lock` and exposes the
  same operations as coroutines. `get_stats()` returns a deep copy.

Response times may be given as a `timedelta` or as a number of seconds.

### `etchdns.rate_limiter`

`RateLimiter(window, max_queries, max_clients, clock=time.monotonic)` allows
each client IP at most `max_queries` queries in any `window` seconds.
`await is_allowed(ip)` takes a string or an `ipaddress` object, records the
query and returns whether it is within the limit. Refused queries are not
counted against the window.

At most `max_clients` addresses are tracked. When a new address arrives and
the table is full, the client with the fewest total queries is evicted. It is
chosen from the least recently active third of the tracked clients. Once more
than half a window has passed since the last cleanup, clients with no queries
left in the window are dropped. `await get_stats()` returns a
`RateLimiterStats` with the number of tracked clients, the number of active
clients, the highest per-client count in the window and the total count in the
window.

### `etchdns.query_logger`

`QueryLogger(log_file_path, include_timestamp, include_client_addr,
include_query_type, include_query_class, rotation_size, rotation_interval,
rotation_count, compression)` appends one line per query:

```
[1700000000] 192.0.2.1 www.example.com TYPE1 CLASS1
```

Only the name is always present. The client's port is stripped from
`ip:port` and `[ipv6]:port` addresses. If `log_file_path` is `None`, or the
file cannot be opened, nothing is logged, and `await is_enabled()` reports
this.

Before each write the file is rotated if either of these holds:

- its size has reached `rotation_size` (0 disables this check);
- the time since the last rotation has reached `rotation_interval`, which is
  one of `"hourly"`, `"daily"`, `"weekly"` or `"monthly"` (30 days). Any other
  value means the file is never rotated by time.

A rotated file is renamed to `<log>.<unix seconds>` and, when `compression` is
true, compressed in-process to `<log>.<unix seconds>.gz`. If `rotation_count`
is positive, the oldest earlier rotated files are removed first so that fewer
than `rotation_count` remain. `close()` closes the file.

### `etchdns.hook_plugin`

`hook_client_query_received(payload)` is a sample query hook. It takes a JSON
object with `query_name`, `qtype`, `qclass` and `client_ip`. It returns `"-1"`
(refuse) for `example.com` or for client `192.168.1.100`, and `"0"`
(continue) for everything else. A malformed payload raises `ValueError`.

### `etchdns.probe`

- `create_random_query()` builds an A/IN query for `google.com` with a random
  transaction ID.
- `await probe_server(addr, timeout_secs, validate=None)` sends one query over
  UDP and returns the response time as a `timedelta`. `addr` may be a string
  such as `"192.0.2.53:53"` or `"[2001:db8::53]:53"`, or an `(ip, port)`
  tuple. `validate` receives the raw response and raises to reject it; by
  default it only checks that the packet holds a full header with the
  response bit set. A missing answer raises `UpstreamTimeout`; any other
  failure raises `UpstreamError`. Both are subclasses of `ProbeError`.
- `parse_socket_address(text)` parses the string forms above into
  `(ip, port)`.
- `ServerProber(upstream_servers, stats, server_timeout, probe_interval=None,
  probe_timeout=None, validate=None)` probes every server once per interval
  and records each success or failure in a `SharedStats`. The interval
  defaults to the larger of 60 seconds and `server_timeout`, and the timeout
  defaults to `server_timeout`. `start()` launches the loop as an asyncio task
  and returns it. `probe_all_servers()` runs a single round.

## Example

```python
import asyncio
from collections import namedtuple

from etchdns.query_logger import QueryLogger
from etchdns.rate_limiter import RateLimiter

Key = namedtuple("Key", "name qtype qclass")

async def main():
    limiter = RateLimiter(window=60, max_queries=100, max_clients=10000)
    logger = QueryLogger("queries.log", include_client_addr=True, include_query_type=True)
    if await limiter.is_allowed("192.0.2.1"):
        await logger.log_query(Key("www.example.com", 1, 1), "192.0.2.1:5353")
    logger.close()

asyncio.run(main())
```

## What this package does not do

These are components only. The package contains no DNS server or listener
and no response cache. It does not forward queries to upstream resolvers
beyond the health probes, and it has no command-line program. The hook is a
plain Python function, and nothing in the package loads or calls hooks.

## Tests

The tests use pytest and pytest-asyncio, which are available as the `test`
extra.