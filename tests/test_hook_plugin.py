import json

import pytest

from etchdns.hook_plugin import hook_client_query_received


def payload(query_name="www.example.net", qtype=1, qclass=1, client_ip="192.168.1.1"):
    return json.dumps(
        {"query_name": query_name, "qtype": qtype, "qclass": qclass, "client_ip": client_ip}
    )


def test_regular_query_continues():
    assert hook_client_query_received(payload()) == "0"


def test_blocked_name_is_refused():
    assert hook_client_query_received(payload(query_name="example.com")) == "-1"


def test_blocked_client_is_refused():
    assert hook_client_query_received(payload(client_ip="192.168.1.100")) == "-1"


def test_subdomain_of_blocked_name_continues():
    assert hook_client_query_received(payload(query_name="www.example.com")) == "0"


def test_extra_fields_are_ignored():
    data = json.loads(payload(query_name="example.com"))
    data["extra"] = True
    assert hook_client_query_received(json.dumps(data)) == "-1"


def test_invalid_json_raises():
    with pytest.raises(ValueError):
        hook_client_query_received("{not json")


@pytest.mark.parametrize("missing", ["query_name", "qtype", "qclass", "client_ip"])
def test_missing_field_raises(missing):
    data = json.loads(payload())
    del data[missing]
    with pytest.raises(ValueError, match=missing):
        hook_client_query_received(json.dumps(data))


@pytest.mark.parametrize("qtype", [-1, 65536, "1", True])
def test_invalid_qtype_raises(qtype):
    with pytest.raises(ValueError, match="qtype"):
        hook_client_query_received(payload(qtype=qtype))


def test_non_object_payload_raises():
    with pytest.raises(ValueError):
        hook_client_query_received("[1, 2, 3]")