"""Asyncio components for a caching DNS proxy: statistics, rate limiting, query logging, a sample hook and upstream probing."""

__version__ = "0.1.0"

__all__ = ["hook_plugin", "probe", "query_logger", "rate_limiter", "stats"]