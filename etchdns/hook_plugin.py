"""Sample query hook: refuses some queries and lets the rest through."""

from __future__ import annotations

import json
import logging

log = logging.getLogger(__name__)

CONTINUE = 0
REFUSE = -1

BLOCKED_NAME = "example.com"
BLOCKED_CLIENT_IP = "192.168.1.100"


def _field(data: dict, name: str, kind: type):
    if name not in data:
        raise ValueError(f"missing field `{name}`")
    value = data[name]
    if kind is int:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFFFF:
            raise ValueError(f"invalid value for `{name}`: expected u16")
    elif not isinstance(value, kind):
        raise ValueError(f"invalid type for `{name}`: expected {kind.__name__}")
    return value


def hook_client_query_received(payload: str) -> str:
    """Decide what to do with a client query described as JSON.

    The payload holds ``query_name``, ``qtype``, ``qclass`` and ``client_ip``.
    Returns ``"-1"`` to refuse the query and ``"0"`` to continue. Raises
    ``ValueError`` when the payload is malformed.
    """
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    query_name = _field(data, "query_name", str)
    qtype = _field(data, "qtype", int)
    qclass = _field(data, "qclass", int)
    client_ip = _field(data, "client_ip", str)

    log.info(
        "Received query for %s (type: %d, class: %d) from client IP %s",
        query_name,
        qtype,
        qclass,
        client_ip,
    )

    refuse = query_name == BLOCKED_NAME or client_ip == BLOCKED_CLIENT_IP
    return str(REFUSE if refuse else CONTINUE)