"""Append DNS queries to a log file, with size- and time-based rotation."""

from __future__ import annotations

import asyncio
import gzip
import ipaddress
import logging
import os
import shutil
import time
from pathlib import Path
from typing import BinaryIO, Callable, Optional

log = logging.getLogger(__name__)

ROTATION_INTERVALS = {
    "hourly": 3600,
    "daily": 86400,
    "weekly": 604800,
    "monthly": 2592000,  # approximately 30 days
}


def _client_ip(client_addr: str) -> str:
    """The IP part of an ``ip:port`` socket address, or the input unchanged."""
    host, sep, port = client_addr.rpartition(":")
    if not sep or not port.isdigit() or int(port) > 65535:
        return client_addr
    if host.startswith("[") and host.endswith("]"):
        try:
            return str(ipaddress.IPv6Address(host[1:-1]))
        except ValueError:
            return client_addr
    try:
        return str(ipaddress.IPv4Address(host))
    except ValueError:
        return client_addr


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def _compress(path: Path) -> None:
    """Replace ``path`` by a gzip-compressed ``path.gz``."""
    target = path.with_name(path.name + ".gz")
    try:
        with path.open("rb") as src, gzip.open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        path.unlink()
    except OSError as exc:
        log.error("Failed to compress log file %s: %s", path, exc)
    else:
        log.debug("Successfully compressed log file to %s", target)


class QueryLogger:
    """Writes one line per DNS query to a file.

    ``key`` objects passed to :meth:`log_query` need ``name``, ``qtype`` and
    ``qclass`` attributes.
    """

    def __init__(
        self,
        log_file_path: Optional[str] = None,
        include_timestamp: bool = False,
        include_client_addr: bool = False,
        include_query_type: bool = False,
        include_query_class: bool = False,
        rotation_size: int = 0,
        rotation_interval: str = "",
        rotation_count: int = 0,
        compression: bool = False,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.include_timestamp = include_timestamp
        self.include_client_addr = include_client_addr
        self.include_query_type = include_query_type
        self.include_query_class = include_query_class
        self.rotation_size = rotation_size
        self.rotation_interval = rotation_interval
        self.rotation_count = rotation_count
        self.compression = compression
        self._clock = clock
        self._lock = asyncio.Lock()
        self._path = Path(log_file_path) if log_file_path is not None else None
        self._file: Optional[BinaryIO] = None
        self._current_size = 0

        if self._path is not None:
            self._file = self._open()
            if self._file is not None:
                log.info("Query logging enabled to file: %s", self._path)
                try:
                    self._current_size = os.fstat(self._file.fileno()).st_size
                except OSError:
                    self._current_size = 0
        self._last_rotation_time = clock()

    def _open(self) -> Optional[BinaryIO]:
        assert self._path is not None
        try:
            return self._path.open("ab")
        except OSError as exc:
            log.error("Failed to open query log file %s: %s", self._path, exc)
            return None

    def _close_file(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError:
                pass
            self._file = None

    def close(self) -> None:
        """Close the log file; further queries are not logged."""
        self._close_file()

    def _should_rotate(self) -> bool:
        if self.rotation_size > 0 and self._current_size >= self.rotation_size:
            log.debug(
                "Log rotation triggered: file size %d/%d",
                self._current_size,
                self.rotation_size,
            )
            return True
        limit = ROTATION_INTERVALS.get(self.rotation_interval)
        if limit is None:
            return False
        elapsed = max(0.0, self._clock() - self._last_rotation_time)
        if elapsed >= limit:
            log.debug("Log rotation triggered: time interval %s", self.rotation_interval)
            return True
        return False

    def _prune_rotated(self) -> None:
        assert self._path is not None
        directory = self._path.parent
        name = self._path.name
        try:
            rotated = [
                entry
                for entry in directory.iterdir()
                if entry.name.startswith(name)
                and "." in entry.name
                and entry.name != name
            ]
        except OSError:
            return
        rotated.sort(key=_mtime)
        while rotated and len(rotated) >= self.rotation_count:
            oldest = rotated.pop(0)
            try:
                oldest.unlink()
            except OSError as exc:
                log.error("Failed to remove old log file %s: %s", oldest, exc)
            else:
                log.debug("Removed old log file: %s", oldest)

    def _rotate(self) -> None:
        if self._file is None or self._path is None:
            return
        self._close_file()

        if self.rotation_count > 0:
            self._prune_rotated()

        now = self._clock()
        rotated_path = Path(f"{self._path}.{int(now)}")
        try:
            os.replace(self._path, rotated_path)
        except OSError:
            log.error("Failed to rename log file from %s to %s", self._path, rotated_path)
            self._file = self._open()
            if self._file is not None:
                self._current_size = 0
            return

        if self.compression:
            log.debug("Compressing rotated log file: %s", rotated_path)
            _compress(rotated_path)

        self._file = self._open()
        if self._file is not None:
            self._current_size = 0
            self._last_rotation_time = now
            log.debug("Rotated log file: created new file at %s", self._path)
        else:
            log.error("Failed to create new log file after rotation")

    def _format(self, key, client_addr: str) -> str:
        parts = []
        if self.include_timestamp:
            parts.append(f"[{int(self._clock())}] ")
        if self.include_client_addr:
            parts.append(f"{_client_ip(client_addr)} ")
        parts.append(key.name)
        if self.include_query_type:
            parts.append(f" TYPE{key.qtype}")
        if self.include_query_class:
            parts.append(f" CLASS{key.qclass}")
        parts.append("\n")
        return "".join(parts)

    def _write(self, data: bytes) -> None:
        assert self._file is not None
        self._file.write(data)
        self._file.flush()

    async def log_query(self, key, client_addr: str) -> None:
        """Append a line for ``key`` queried by ``client_addr``, rotating first if due."""
        async with self._lock:
            if self._should_rotate():
                self._rotate()
            if self._file is None:
                return

            data = self._format(key, client_addr).encode()
            try:
                self._write(data)
            except OSError as exc:
                log.error("Failed to write to query log file: %s", exc)
                self._close_file()
                self._file = self._open()
                if self._file is None:
                    return
                log.debug("Reopened query log file: %s", self._path)
                try:
                    self._write(data)
                except OSError as retry_exc:
                    log.error("Failed to write to reopened query log file: %s", retry_exc)
            else:
                self._current_size += len(data)

    async def is_enabled(self) -> bool:
        """Whether a log file is currently open."""
        async with self._lock:
            return self._file is not None