import gzip
from dataclasses import dataclass

import pytest

from etchdns.query_logger import QueryLogger


@dataclass(frozen=True)
class Key:
    name: str
    qtype: int = 1
    qclass: int = 1


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_logger(path, **kwargs):
    options = dict(
        include_timestamp=False,
        include_client_addr=False,
        include_query_type=False,
        include_query_class=False,
        rotation_size=0,
        rotation_interval="",
        rotation_count=0,
        compression=False,
    )
    options.update(kwargs)
    return QueryLogger(str(path) if path is not None else None, **options)


def rotated_files(path):
    return sorted(p for p in path.parent.iterdir() if p.name != path.name)


@pytest.mark.asyncio
async def test_disabled_without_path():
    logger = make_logger(None)
    assert await logger.is_enabled() is False
    await logger.log_query(Key("example.com"), "192.0.2.1:53")
    assert await logger.is_enabled() is False


@pytest.mark.asyncio
async def test_unopenable_path_disables_logging(tmp_path):
    logger = make_logger(tmp_path / "missing" / "queries.log")
    assert await logger.is_enabled() is False


@pytest.mark.asyncio
async def test_domain_only(tmp_path):
    path = tmp_path / "queries.log"
    logger = make_logger(path)
    assert await logger.is_enabled() is True
    await logger.log_query(Key("example.com"), "192.0.2.1:53")
    logger.close()
    assert path.read_text() == "example.com\n"


@pytest.mark.asyncio
async def test_all_fields(tmp_path):
    path = tmp_path / "queries.log"
    clock = FakeClock(1_700_000_000.5)
    logger = make_logger(
        path,
        include_timestamp=True,
        include_client_addr=True,
        include_query_type=True,
        include_query_class=True,
        clock=clock,
    )
    await logger.log_query(Key("example.com", 28, 1), "192.0.2.1:5353")
    logger.close()
    assert path.read_text() == "[1700000000] 192.0.2.1 example.com TYPE28 CLASS1\n"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "client_addr, expected_ip",
    [
        ("192.0.2.7:53", "192.0.2.7"),
        ("[2001:db8::1]:53", "2001:db8::1"),
        ("unknown", "unknown"),
        ("192.0.2.7", "192.0.2.7"),
    ],
)
async def test_client_address_strips_port(tmp_path, client_addr, expected_ip):
    path = tmp_path / "queries.log"
    logger = make_logger(path, include_client_addr=True)
    await logger.log_query(Key("example.org"), client_addr)
    logger.close()
    assert path.read_text() == f"{expected_ip} example.org\n"


@pytest.mark.asyncio
async def test_appends_to_existing_file(tmp_path):
    path = tmp_path / "queries.log"
    path.write_text("previous\n")
    logger = make_logger(path)
    await logger.log_query(Key("a.example"), "x")
    await logger.log_query(Key("b.example"), "x")
    logger.close()
    assert path.read_text().splitlines() == ["previous", "a.example", "b.example"]


@pytest.mark.asyncio
async def test_existing_size_counts_towards_rotation(tmp_path):
    path = tmp_path / "queries.log"
    path.write_text("x" * 50)
    clock = FakeClock()
    logger = make_logger(path, rotation_size=10, clock=clock)
    await logger.log_query(Key("a.example"), "x")
    logger.close()
    assert path.read_text() == "a.example\n"
    rotated = rotated_files(path)
    assert [p.name for p in rotated] == [f"queries.log.{int(clock.now)}"]
    assert rotated[0].read_text() == "x" * 50


@pytest.mark.asyncio
async def test_size_rotation(tmp_path):
    path = tmp_path / "queries.log"
    clock = FakeClock()
    logger = make_logger(path, rotation_size=5, clock=clock)
    await logger.log_query(Key("first.example"), "x")
    assert rotated_files(path) == []
    clock.now += 1
    await logger.log_query(Key("second.example"), "x")
    logger.close()
    rotated = rotated_files(path)
    assert len(rotated) == 1
    assert rotated[0].read_text() == "first.example\n"
    assert path.read_text() == "second.example\n"


@pytest.mark.asyncio
async def test_time_rotation(tmp_path):
    path = tmp_path / "queries.log"
    clock = FakeClock()
    logger = make_logger(path, rotation_interval="hourly", clock=clock)
    await logger.log_query(Key("first.example"), "x")
    clock.now += 3599
    await logger.log_query(Key("second.example"), "x")
    assert rotated_files(path) == []
    clock.now += 1
    await logger.log_query(Key("third.example"), "x")
    logger.close()
    rotated = rotated_files(path)
    assert len(rotated) == 1
    assert rotated[0].read_text() == "first.example\nsecond.example\n"
    assert path.read_text() == "third.example\n"


@pytest.mark.asyncio
async def test_never_interval_does_not_rotate(tmp_path):
    path = tmp_path / "queries.log"
    clock = FakeClock()
    logger = make_logger(path, rotation_interval="never", clock=clock)
    await logger.log_query(Key("first.example"), "x")
    clock.now += 10 * 2592000
    await logger.log_query(Key("second.example"), "x")
    logger.close()
    assert rotated_files(path) == []
    assert path.read_text() == "first.example\nsecond.example\n"


@pytest.mark.asyncio
async def test_compressed_rotation(tmp_path):
    path = tmp_path / "queries.log"
    clock = FakeClock()
    logger = make_logger(path, rotation_size=1, compression=True, clock=clock)
    await logger.log_query(Key("first.example"), "x")
    clock.now += 1
    await logger.log_query(Key("second.example"), "x")
    logger.close()
    rotated = rotated_files(path)
    assert [p.suffix for p in rotated] == [".gz"]
    with gzip.open(rotated[0], "rt") as handle:
        assert handle.read() == "first.example\n"


@pytest.mark.asyncio
async def test_rotation_count_limits_kept_files(tmp_path):
    path = tmp_path / "queries.log"
    clock = FakeClock()
    logger = make_logger(path, rotation_size=1, rotation_count=2, clock=clock)
    for index in range(6):
        clock.now += 1
        await logger.log_query(Key(f"q{index}.example"), "x")
    logger.close()
    assert len(rotated_files(path)) == 2
    assert path.read_text() == "q5.example\n"