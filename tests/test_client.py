import base64
from datetime import datetime, timedelta, timezone

import pytest
from loguru import logger

from src.synthetics_monitor.client import (
    DEFAULT_BASE_URL,
    SyntheticsClient,
    monitor_id_from_location,
    parse_timestamp,
)
from src.synthetics_monitor.errors import (
    InvalidArgument,
    NotFound,
    ParseError,
    ProtocolError,
    RemoteError,
    ScriptNotFound,
)
from src.synthetics_monitor.fingerprint import fingerprint
from src.synthetics_monitor.models import MonitorSpec, MonitorUpdate, ScriptLocation
from tests.conftest import API_KEY, FakeResponse, monitor_json

LOCATION = f"{DEFAULT_BASE_URL}/monitors/abc123"


def home_spec(**overrides):
    fields = dict(
        name="home",
        type="SIMPLE",
        frequency=5,
        uri="https://example.com",
        locations=["US_EAST_1"],
        status="ENABLED",
        sla_threshold=7.0,
    )
    fields.update(overrides)
    return MonitorSpec(**fields)


def home_update(**overrides):
    fields = dict(
        name="home",
        frequency=5,
        uri="https://example.com",
        locations=["US_EAST_1"],
        status="ENABLED",
        sla_threshold=9.0,
    )
    fields.update(overrides)
    return MonitorUpdate(**fields)


def test_client_requires_api_key():
    with pytest.raises(InvalidArgument):
        SyntheticsClient("")


def test_every_request_carries_api_key(client, session):
    session.add("GET", "/monitors/abc123", FakeResponse(200, monitor_json()))
    session.add("GET", "/monitors", FakeResponse(200, {"monitors": [], "count": 0}))

    client.get_monitor("abc123")
    client.list_monitors()

    assert all(call["headers"]["X-Api-Key"] == API_KEY for call in session.calls)


# Location header parsing

def test_monitor_id_from_location():
    assert monitor_id_from_location(LOCATION) == "abc123"


def test_monitor_id_from_location_custom_base():
    assert monitor_id_from_location("https://api.example.test/v3/monitors/xyz", "https://api.example.test/v3/") == "xyz"


@pytest.mark.parametrize("location", [
    None,
    "",
    f"{DEFAULT_BASE_URL}/monitors/",
    f"{DEFAULT_BASE_URL}/monitors",
    f"{DEFAULT_BASE_URL}/monitors/abc123/script",
    f"{DEFAULT_BASE_URL}/monitors/abc123?x=1",
    "https://synthetics.newrelic.com/synthetics/api/v2/monitors/abc123",
    "http://synthetics.newrelic.com/synthetics/api/v3/monitors/abc123",
    "https://evil.example.com/synthetics/api/v3/monitors/abc123",
    "/monitors/abc123",
    "abc123",
])
def test_monitor_id_from_malformed_location(location):
    with pytest.raises(ProtocolError):
        monitor_id_from_location(location)


# Timestamps

def test_parse_timestamp_with_millis_and_offset():
    parsed = parse_timestamp("2016-06-06T17:28:34.311+0000")
    assert parsed == datetime(2016, 6, 6, 17, 28, 34, 311000, tzinfo=timezone.utc)


def test_parse_timestamp_truncates_nanoseconds():
    parsed = parse_timestamp("2016-06-06T17:28:34.123456789-0700")
    assert parsed.microsecond == 123456
    assert parsed.utcoffset() == timedelta(hours=-7)


def test_parse_timestamp_without_fraction():
    assert parse_timestamp("2016-06-06T17:28:34+0100").second == 34


@pytest.mark.parametrize("raw", [None, "", 1465234114, 1465234114.5, "yesterday", "2016-06-06 17:28:34+0000", "2016-06-06T17:28:34.311", "2016-13-06T17:28:34+0000"])
def test_parse_timestamp_malformed(raw):
    with pytest.raises(ParseError):
        parse_timestamp(raw)


# List

def test_list_monitors(client, session):
    session.add("GET", "/monitors", FakeResponse(200, {
        "monitors": [monitor_json("a"), monitor_json("b", name="other", options={"verifySSL": False})],
        "count": 2,
    }))

    result = client.list_monitors()

    assert [monitor.id for monitor in result.monitors] == ["a", "b"]
    assert result.count == 2
    assert result.monitors[0].created_at == datetime(2016, 6, 6, 17, 28, 34, 311000, tzinfo=timezone.utc)
    assert result.monitors[0].modified_at.utcoffset() == timedelta(hours=-7)
    assert result.monitors[1].verify_ssl is False
    assert session.calls[0]["params"] is None


def test_list_monitors_sends_paging_only_when_set(client, session):
    session.add("GET", "/monitors", FakeResponse(200, {"monitors": [], "count": 0}))

    client.list_monitors(offset=20, limit=10)
    client.list_monitors(offset=0, limit=10)

    assert session.calls[0]["params"] == {"offset": 20, "limit": 10}
    assert session.calls[1]["params"] == {"limit": 10}


def test_list_monitors_bad_timestamp(client, session):
    session.add("GET", "/monitors", FakeResponse(200, {"monitors": [monitor_json(createdAt="not a time")], "count": 1}))

    with pytest.raises(ParseError) as exc:
        client.list_monitors()
    assert exc.value.monitor_id == "abc123"
    assert exc.value.operation == "list_monitors"


def test_list_monitors_undecodable_body(client, session):
    session.add("GET", "/monitors", FakeResponse(200, text="<html>oops</html>"))

    with pytest.raises(ProtocolError):
        client.list_monitors()


def test_list_monitors_remote_error(client, session):
    session.add("GET", "/monitors", FakeResponse(403, text="forbidden"))

    with pytest.raises(RemoteError) as exc:
        client.list_monitors()
    assert exc.value.status == 403
    assert exc.value.body == "forbidden"


# Get

def test_get_monitor(client, session):
    session.add("GET", "/monitors/abc123", FakeResponse(200, monitor_json(options={"validationString": "ok", "verifySSL": True})))

    monitor = client.get_monitor("abc123")

    assert monitor.id == "abc123"
    assert monitor.frequency == 5
    assert monitor.locations == ["US_EAST_1"]
    assert monitor.validation_string == "ok"
    assert monitor.verify_ssl is True
    assert monitor.bypass_head_request is None
    assert monitor.treat_redirect_as_failure is None


def test_get_monitor_empty_id(client, session):
    with pytest.raises(InvalidArgument):
        client.get_monitor("")
    assert session.calls == []


def test_get_monitor_not_found(client, session):
    session.add("GET", "/monitors/missing", FakeResponse(404, text="not found"))

    with pytest.raises(NotFound) as exc:
        client.get_monitor("missing")
    assert exc.value.monitor_id == "missing"


def test_get_monitor_remote_error(client, session):
    session.add("GET", "/monitors/abc123", FakeResponse(500, text="boom"))

    with pytest.raises(RemoteError) as exc:
        client.get_monitor("abc123")
    assert exc.value.status == 500
    assert not isinstance(exc.value, NotFound)


def test_get_monitor_structurally_invalid(client, session):
    session.add("GET", "/monitors/abc123", FakeResponse(200, {"id": "abc123"}))

    with pytest.raises(ProtocolError):
        client.get_monitor("abc123")


# Create

def test_create_monitor(client, session):
    session.add("POST", "/monitors", FakeResponse(201, headers={"Location": LOCATION}))
    session.add("GET", "/monitors/abc123", FakeResponse(200, monitor_json()))

    monitor = client.create_monitor(home_spec())

    assert monitor.id == "abc123"
    body = session.calls_to("POST", "/monitors")[0]["json"]
    assert body == {
        "name": "home",
        "type": "SIMPLE",
        "frequency": 5,
        "uri": "https://example.com",
        "locations": ["US_EAST_1"],
        "status": "ENABLED",
        "slaThreshold": 7.0,
        "options": {},
    }
    assert session.calls_to("GET", "/monitors/abc123")


def test_create_monitor_sends_explicit_false_options(client, session):
    session.add("POST", "/monitors", FakeResponse(201, headers={"Location": LOCATION}))
    session.add("GET", "/monitors/abc123", FakeResponse(200, monitor_json()))

    client.create_monitor(home_spec(verify_ssl=False, validation_string=""))

    body = session.calls_to("POST", "/monitors")[0]["json"]
    assert body["options"] == {"verifySSL": False, "validationString": ""}


@pytest.mark.parametrize("headers", [{}, {"Location": ""}, {"Location": "https://example.com/other/abc123"}])
def test_create_monitor_bad_location(client, session, headers):
    session.add("POST", "/monitors", FakeResponse(201, headers=headers))

    with pytest.raises(ProtocolError):
        client.create_monitor(home_spec())
    assert not session.calls_to("GET", "/monitors/abc123")


def test_create_monitor_rejected(client, session):
    session.add("POST", "/monitors", FakeResponse(400, text="bad frequency"))

    with pytest.raises(RemoteError) as exc:
        client.create_monitor(home_spec())
    assert exc.value.status == 400


def test_create_monitor_requires_created_status(client, session):
    session.add("POST", "/monitors", FakeResponse(200, headers={"Location": LOCATION}))

    with pytest.raises(RemoteError):
        client.create_monitor(home_spec())


@pytest.mark.parametrize("overrides", [
    {"frequency": 7},
    {"status": "PAUSED"},
    {"type": "PING"},
    {"locations": []},
    {"name": ""},
])
def test_create_monitor_invalid_spec(client, session, overrides):
    with pytest.raises(InvalidArgument):
        client.create_monitor(home_spec(**overrides))
    assert session.calls == []


# Update

def test_update_monitor_omits_unset_options_and_type(client, session):
    session.add("PUT", "/monitors/abc123", FakeResponse(204))
    session.add("GET", "/monitors/abc123", FakeResponse(200, monitor_json(slaThreshold=9.0)))

    monitor = client.update_monitor("abc123", home_update(treat_redirect_as_failure=False))

    body = session.calls_to("PUT", "/monitors/abc123")[0]["json"]
    assert "type" not in body
    assert body["slaThreshold"] == 9.0
    assert body["options"] == {"treatRedirectAsFailure": False}
    assert monitor.sla_threshold == 9.0


def test_update_monitor_not_found(client, session):
    session.add("PUT", "/monitors/abc123", FakeResponse(404))

    with pytest.raises(NotFound):
        client.update_monitor("abc123", home_update())


def test_update_monitor_remote_error(client, session):
    session.add("PUT", "/monitors/abc123", FakeResponse(429, text="slow down"))

    with pytest.raises(RemoteError) as exc:
        client.update_monitor("abc123", home_update())
    assert exc.value.status == 429


def test_update_monitor_empty_id(client):
    with pytest.raises(InvalidArgument):
        client.update_monitor("", home_update())


# Delete

def test_delete_monitor(client, session):
    session.add("DELETE", "/monitors/abc123", FakeResponse(204))

    client.delete_monitor("abc123")

    assert session.calls_to("DELETE", "/monitors/abc123")


def test_delete_missing_monitor_is_an_error(client, session):
    session.add("DELETE", "/monitors/gone", FakeResponse(404, text="not found"))

    with pytest.raises(RemoteError) as exc:
        client.delete_monitor("gone")
    assert exc.value.status == 404


# Script

def test_get_monitor_script_returns_fingerprint(client, session):
    encoded = base64.b64encode(b"console.log(1)").decode()
    session.add("GET", "/monitors/abc123/script", FakeResponse(200, {"scriptText": encoded}))

    assert client.get_monitor_script("abc123") == fingerprint("console.log(1)")


def test_get_monitor_script_not_found(client, session):
    session.add("GET", "/monitors/abc123/script", FakeResponse(404))

    with pytest.raises(ScriptNotFound):
        client.get_monitor_script("abc123")


def test_get_monitor_script_bad_body(client, session):
    session.add("GET", "/monitors/abc123/script", FakeResponse(200, {"scriptText": "***not base64***"}))

    with pytest.raises(ProtocolError):
        client.get_monitor_script("abc123")


def test_get_monitor_script_remote_error(client, session):
    session.add("GET", "/monitors/abc123/script", FakeResponse(500, text="boom"))

    with pytest.raises(RemoteError):
        client.get_monitor_script("abc123")


def test_update_monitor_script(client, session):
    session.add("PUT", "/monitors/abc123/script", FakeResponse(204))

    client.update_monitor_script("abc123", "console.log(1)", [ScriptLocation("private-1", "secret")])

    body = session.calls_to("PUT", "/monitors/abc123/script")[0]["json"]
    assert base64.b64decode(body["scriptText"]) == b"console.log(1)"
    assert body["scriptLocations"] == [{"name": "private-1", "hmac": "secret"}]


def test_update_monitor_script_without_locations(client, session):
    session.add("PUT", "/monitors/abc123/script", FakeResponse(204))

    client.update_monitor_script("abc123", "console.log(1)")

    assert "scriptLocations" not in session.calls_to("PUT", "/monitors/abc123/script")[0]["json"]


def test_update_monitor_script_rejected(client, session):
    session.add("PUT", "/monitors/abc123/script", FakeResponse(400, text="invalid script"))

    with pytest.raises(RemoteError):
        client.update_monitor_script("abc123", "console.log(1)")


def test_list_monitors_numeric_timestamp(client, session):
    session.add("GET", "/monitors", FakeResponse(200, {"monitors": [monitor_json(createdAt=1465234114)], "count": 1}))

    with pytest.raises(ParseError):
        client.list_monitors()


@pytest.mark.parametrize("count", ["many", [1], {"n": 1}])
def test_list_monitors_invalid_count(client, session, count):
    session.add("GET", "/monitors", FakeResponse(200, {"monitors": [], "count": count}))

    with pytest.raises(ProtocolError):
        client.list_monitors()


def test_update_monitor_script_missing_monitor(client, session):
    session.add("PUT", "/monitors/gone/script", FakeResponse(404, text="not found"))

    with pytest.raises(RemoteError) as exc:
        client.update_monitor_script("gone", "console.log(1)")
    assert exc.value.status == 404
    assert exc.value.body == "not found"


def test_script_body_is_not_logged(client, session):
    encoded = base64.b64encode(b"console.log('secret')").decode()
    session.add("GET", "/monitors/abc123/script", FakeResponse(200, {"scriptText": encoded}))
    session.add("GET", "/monitors/abc123", FakeResponse(200, monitor_json()))
    messages = []
    sink_id = logger.add(messages.append, level="TRACE")
    try:
        client.get_monitor_script("abc123")
        client.get_monitor("abc123")
    finally:
        logger.remove(sink_id)

    assert messages
    assert not any(encoded in message for message in messages)
    assert any('"name": "home"' in message for message in messages)
