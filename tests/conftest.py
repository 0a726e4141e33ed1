import json

import pytest

from src.synthetics_monitor.client import DEFAULT_BASE_URL, SyntheticsClient

API_KEY = "test-api-key"


class FakeResponse:
    def __init__(self, status_code: int, body=None, headers=None, text=None):
        self.status_code = status_code
        self.headers = headers or {}
        if text is not None:
            self.text = text
        elif body is not None:
            self.text = json.dumps(body)
        else:
            self.text = ""

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Records requests and answers them from a queue per (method, path)."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL):
        self.base_url = base_url
        self.routes = {}
        self.calls = []

    def add(self, method: str, path: str, response: FakeResponse):
        self.routes.setdefault((method, path), []).append(response)

    def request(self, method, url, headers=None, params=None, json=None):
        path = url[len(self.base_url):]
        self.calls.append({"method": method, "path": path, "headers": headers or {}, "params": params, "json": json})
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"unexpected request: {method} {path}")
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def calls_to(self, method: str, path: str):
        return [call for call in self.calls if call["method"] == method and call["path"] == path]


def monitor_json(monitor_id="abc123", **overrides):
    data = {
        "id": monitor_id,
        "name": "home",
        "type": "SIMPLE",
        "frequency": 5,
        "uri": "https://example.com",
        "locations": ["US_EAST_1"],
        "status": "ENABLED",
        "slaThreshold": 7.0,
        "options": {},
        "userId": 42,
        "apiVersion": "0.2.0",
        "createdAt": "2016-06-06T17:28:34.311+0000",
        "modifiedAt": "2016-06-07T09:01:02.5-0700",
    }
    data.update(overrides)
    return data


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(session):
    return SyntheticsClient(API_KEY, session=session)
