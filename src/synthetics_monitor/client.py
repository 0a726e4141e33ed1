import base64
import binascii
import re
from datetime import datetime
from typing import Dict, List, Optional, Any

import requests
from loguru import logger

from src.synthetics_monitor.errors import (
    InvalidArgument,
    NotFound,
    ParseError,
    ProtocolError,
    RemoteError,
    ScriptNotFound,
)
from src.synthetics_monitor.fingerprint import fingerprint
from src.synthetics_monitor.models import (
    FREQUENCIES,
    ExtendedMonitor,
    Monitor,
    MonitorList,
    MonitorSpec,
    MonitorStatus,
    MonitorType,
    MonitorUpdate,
    ScriptLocation,
)

DEFAULT_BASE_URL = "https://synthetics.newrelic.com/synthetics/api/v3"

# 2016-06-06T17:28:34.311+0000, fraction optional and up to nanoseconds
_TIMESTAMP = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d{1,9}))?(?P<offset>[+-]\d{4}|Z)$"
)


def parse_timestamp(raw: str) -> datetime:
    """Parse an API timestamp into an aware datetime.

    Raises:
        ParseError: If ``raw`` does not match the API's timestamp format
    """
    if not isinstance(raw, str):
        raise ParseError(f"could not parse timestamp: {raw!r}")

    match = _TIMESTAMP.match(raw)
    if not match:
        raise ParseError(f"could not parse timestamp: {raw}")

    fraction = (match.group("fraction") or "0")[:6].ljust(6, "0")
    offset = match.group("offset")
    if offset == "Z":
        offset = "+0000"
    try:
        return datetime.strptime(f"{match.group('base')}.{fraction}{offset}", "%Y-%m-%dT%H:%M:%S.%f%z")
    except ValueError as e:
        raise ParseError(f"could not parse timestamp: {raw}: {e}")


def monitor_id_from_location(location: Optional[str], base_url: str = DEFAULT_BASE_URL) -> str:
    """Extract the id of a newly created monitor from a ``Location`` header.

    The header must be exactly ``<base_url>/monitors/<id>``.

    Raises:
        ProtocolError: If the header is missing or has another shape
    """
    pattern = re.compile(rf"^{re.escape(base_url.rstrip('/'))}/monitors/([^/?#\s]+)$")
    match = pattern.match(location or "")
    if not match:
        raise ProtocolError(f"could not find an ID for monitor in location header: {location!r}")
    return match.group(1)


class SyntheticsClient:
    """Client for the Synthetics monitor REST API.

    Args:
        api_key: Admin API key sent as ``X-Api-Key`` on every request
        session: Transport used to perform requests; anything with a
            ``requests.Session``-compatible ``request`` method
        base_url: API base endpoint

    Raises:
        InvalidArgument: If no API key is provided
    """

    def __init__(self, api_key: str, session=None, base_url: str = DEFAULT_BASE_URL):
        if not api_key:
            raise InvalidArgument("synthetics api key not provided")
        self._api_key = api_key
        self._session = session if session is not None else requests.Session()
        self._base_url = base_url.rstrip("/")

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, body: Optional[Dict[str, Any]] = None):
        headers = {"X-Api-Key": self._api_key}
        kwargs = {}
        if params:
            kwargs["params"] = params
        if body is not None:
            headers["Content-Type"] = "application/json"
            kwargs["json"] = body

        response = self._session.request(method, f"{self._base_url}{path}", headers=headers, **kwargs)
        if path.endswith("/script"):
            logger.trace(f"{method} {path} response: {response.status_code}")
        else:
            logger.trace(f"{method} {path} response: {response.status_code} - {response.text}")
        return response

    @staticmethod
    def _decode(response, operation: str, monitor_id: Optional[str] = None) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"could not parse JSON response: {e}", operation, monitor_id)

    @staticmethod
    def _require_id(monitor_id: str, operation: str):
        if not monitor_id:
            raise InvalidArgument(f"invalid id provided: {monitor_id!r}", operation)

    def list_monitors(self, offset: int = 0, limit: int = 0) -> MonitorList:
        """Fetch one page of monitors in the account."""
        operation = "list_monitors"
        params = {}
        if offset > 0:
            params["offset"] = offset
        if limit > 0:
            params["limit"] = limit

        response = self._request("GET", "/monitors", params=params)
        if response.status_code != 200:
            logger.error(f"Failed to list monitors: {response.status_code} - {response.text}")
            raise RemoteError(response.status_code, response.text, operation)

        data = self._decode(response, operation)
        if not isinstance(data, dict) or not isinstance(data.get("monitors"), list):
            raise ProtocolError("response does not contain a monitors list", operation)

        monitors = []
        for raw in data["monitors"]:
            monitor = self._extended_monitor(raw, operation)
            monitors.append(monitor)

        try:
            count = int(data.get("count") or len(monitors))
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"invalid monitor count: {e}", operation)

        return MonitorList(monitors=monitors, count=count)

    def _extended_monitor(self, raw: Any, operation: str) -> ExtendedMonitor:
        monitor_id = raw.get("id") if isinstance(raw, dict) else None
        try:
            monitor = ExtendedMonitor.from_dict(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"could not parse monitor: {e}", operation, monitor_id)

        try:
            monitor.created_at = parse_timestamp(raw.get("createdAt"))
            monitor.modified_at = parse_timestamp(raw.get("modifiedAt"))
        except ParseError as e:
            raise ParseError(e.message, operation, monitor_id)
        return monitor

    def get_monitor(self, monitor_id: str) -> Monitor:
        """Fetch a single monitor.

        Raises:
            InvalidArgument: If ``monitor_id`` is empty
            NotFound: If the monitor does not exist
            RemoteError: For any other non-success status
        """
        operation = "get_monitor"
        self._require_id(monitor_id, operation)

        response = self._request("GET", f"/monitors/{monitor_id}")
        if response.status_code == 404:
            raise NotFound("could not find monitor", operation, monitor_id)
        if response.status_code != 200:
            logger.error(f"Failed to get monitor {monitor_id}: {response.status_code} - {response.text}")
            raise RemoteError(response.status_code, response.text, operation, monitor_id)

        data = self._decode(response, operation, monitor_id)
        try:
            return Monitor.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"could not parse monitor: {e}", operation, monitor_id)

    def create_monitor(self, spec: MonitorSpec) -> Monitor:
        """Create a monitor and return it as stored by the API.

        The id comes from the ``Location`` header of the 201 response; the
        monitor itself is fetched with a follow-up GET.
        """
        operation = "create_monitor"
        validate_spec(spec, operation)

        logger.info(f"Creating monitor: {spec.name}")
        response = self._request("POST", "/monitors", body=spec.to_dict())
        if response.status_code != 201:
            logger.error(f"Failed to create monitor {spec.name}: {response.status_code} - {response.text}")
            raise RemoteError(response.status_code, response.text, operation)

        try:
            monitor_id = monitor_id_from_location(response.headers.get("Location"), self._base_url)
        except ProtocolError as e:
            raise ProtocolError(e.message, operation)

        logger.info(f"Successfully created monitor {spec.name} with ID {monitor_id}")
        return self.get_monitor(monitor_id)

    def update_monitor(self, monitor_id: str, update: MonitorUpdate) -> Monitor:
        """Update a monitor and return its refreshed representation.

        Optional attributes left as ``None`` on ``update`` are not sent.
        """
        operation = "update_monitor"
        self._require_id(monitor_id, operation)
        validate_spec(update, operation)

        logger.info(f"Updating monitor {monitor_id}")
        response = self._request("PUT", f"/monitors/{monitor_id}", body=update.to_dict())
        if response.status_code == 404:
            raise NotFound("could not find monitor", operation, monitor_id)
        if not 200 <= response.status_code < 300:
            logger.error(f"Failed to update monitor {monitor_id}: {response.status_code} - {response.text}")
            raise RemoteError(response.status_code, response.text, operation, monitor_id)

        logger.info(f"Successfully updated monitor {monitor_id}")
        return self.get_monitor(monitor_id)

    def delete_monitor(self, monitor_id: str) -> None:
        """Delete a monitor. A monitor that is already gone is an error."""
        operation = "delete_monitor"
        self._require_id(monitor_id, operation)

        logger.info(f"Deleting monitor {monitor_id}")
        response = self._request("DELETE", f"/monitors/{monitor_id}")
        if not 200 <= response.status_code < 300:
            logger.error(f"Failed to delete monitor {monitor_id}: {response.status_code} - {response.text}")
            raise RemoteError(response.status_code, response.text, operation, monitor_id)

        logger.info(f"Successfully deleted monitor {monitor_id}")

    def get_monitor_script(self, monitor_id: str) -> str:
        """Return the fingerprint of the script attached to a monitor.

        Raises:
            ScriptNotFound: If the monitor has no script
        """
        operation = "get_monitor_script"
        self._require_id(monitor_id, operation)

        response = self._request("GET", f"/monitors/{monitor_id}/script")
        if response.status_code == 404:
            raise ScriptNotFound("monitor has no script", operation, monitor_id)
        if response.status_code != 200:
            logger.error(f"Failed to get script for monitor {monitor_id}: {response.status_code} - {response.text}")
            raise RemoteError(response.status_code, response.text, operation, monitor_id)

        data = self._decode(response, operation, monitor_id)
        if not isinstance(data, dict) or not isinstance(data.get("scriptText"), str):
            raise ProtocolError("response does not contain scriptText", operation, monitor_id)
        try:
            script = base64.b64decode(data["scriptText"], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ProtocolError(f"could not decode scriptText: {e}", operation, monitor_id)

        return fingerprint(script)

    def update_monitor_script(self, monitor_id: str, script: str, script_locations: Optional[List[ScriptLocation]] = None) -> None:
        """Replace the script attached to a monitor."""
        operation = "update_monitor_script"
        self._require_id(monitor_id, operation)

        body = {"scriptText": base64.b64encode(script.encode("utf-8")).decode("ascii")}
        if script_locations:
            body["scriptLocations"] = [location.to_dict() for location in script_locations]

        logger.info(f"Updating script for monitor {monitor_id}")
        response = self._request("PUT", f"/monitors/{monitor_id}/script", body=body)
        if not 200 <= response.status_code < 300:
            logger.error(f"Failed to update script for monitor {monitor_id}: {response.status_code} - {response.text}")
            raise RemoteError(response.status_code, response.text, operation, monitor_id)

        logger.info(f"Successfully updated script for monitor {monitor_id}")


def validate_spec(spec, operation: str = "create_monitor"):
    """Reject monitor arguments the API would refuse.

    ``type`` is only checked on a MonitorSpec, the one shape that carries it.

    Raises:
        InvalidArgument: On the first invalid field
    """
    if not spec.name:
        raise InvalidArgument("name is required", operation)
    if isinstance(spec, MonitorSpec) and spec.type not in MonitorType.ALL:
        raise InvalidArgument(f"invalid monitor type: {spec.type}", operation)
    if spec.frequency not in FREQUENCIES:
        raise InvalidArgument(f"invalid frequency: {spec.frequency}, must be one of {FREQUENCIES}", operation)
    if spec.status not in MonitorStatus.ALL:
        raise InvalidArgument(f"invalid status: {spec.status}", operation)
    if not spec.locations:
        raise InvalidArgument("at least one location is required", operation)
