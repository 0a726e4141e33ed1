from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Any


class MonitorType:
    """Monitor type constants"""
    SIMPLE = "SIMPLE"
    BROWSER = "BROWSER"
    SCRIPT_API = "SCRIPT_API"
    SCRIPT_BROWSER = "SCRIPT_BROWSER"

    ALL = (SIMPLE, BROWSER, SCRIPT_API, SCRIPT_BROWSER)


class MonitorStatus:
    """Monitor status constants"""
    ENABLED = "ENABLED"
    MUTED = "MUTED"
    DISABLED = "DISABLED"

    ALL = (ENABLED, MUTED, DISABLED)


# Check intervals in minutes accepted by the API
FREQUENCIES = (1, 5, 10, 15, 30, 60, 360, 720, 1440)

# Wire names of the optional monitor attributes, keyed by their Python name
OPTION_KEYS = {
    "validation_string": "validationString",
    "verify_ssl": "verifySSL",
    "bypass_head_request": "bypassHEADRequest",
    "treat_redirect_as_failure": "treatRedirectAsFailure",
}

REQUIRED_FIELDS = ("name", "frequency", "uri", "locations", "status", "sla_threshold")


@dataclass(frozen=True)
class ScriptLocation:
    """A private location allowed to run a script, with its shared secret."""
    name: str
    hmac: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "hmac": self.hmac}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptLocation":
        return cls(name=data.get("name") or "", hmac=data.get("hmac") or "")


@dataclass
class _MonitorFields:
    name: str
    frequency: int
    uri: str
    locations: List[str]
    status: str
    sla_threshold: float

    # None means "not set"; False / "" are explicit values
    validation_string: Optional[str] = None
    verify_ssl: Optional[bool] = None
    bypass_head_request: Optional[bool] = None
    treat_redirect_as_failure: Optional[bool] = None

    def options(self) -> Dict[str, Any]:
        """Only the optional attributes the caller explicitly set."""
        opts = {}
        for attr, key in OPTION_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                opts[key] = value
        return opts

    def _body(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "frequency": self.frequency,
            "uri": self.uri,
            "locations": list(self.locations),
            "status": self.status,
            "slaThreshold": self.sla_threshold,
            "options": self.options(),
        }


@dataclass
class MonitorSpec(_MonitorFields):
    """Arguments for creating a monitor. ``type`` can only be chosen here."""
    type: str = MonitorType.SIMPLE

    def to_dict(self) -> Dict[str, Any]:
        body = self._body()
        body["type"] = self.type
        return body


@dataclass
class MonitorUpdate(_MonitorFields):
    """Arguments for updating a monitor. ``type`` is fixed at creation and absent here."""

    def to_dict(self) -> Dict[str, Any]:
        return self._body()


def _options_from(data: Dict[str, Any]) -> Dict[str, Any]:
    options = data.get("options") or {}
    return {attr: options.get(key) for attr, key in OPTION_KEYS.items()}


@dataclass
class Monitor:
    """A monitor as returned by the API."""
    id: str
    name: str
    type: str
    frequency: int
    uri: str
    locations: List[str]
    status: str
    sla_threshold: float
    validation_string: Optional[str] = None
    verify_ssl: Optional[bool] = None
    bypass_head_request: Optional[bool] = None
    treat_redirect_as_failure: Optional[bool] = None
    user_id: Optional[int] = None
    api_version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Monitor":
        return cls(
            id=data["id"],
            name=data["name"],
            type=data["type"],
            frequency=int(data["frequency"]),
            uri=data.get("uri") or "",
            locations=list(data.get("locations") or []),
            status=data["status"],
            sla_threshold=float(data.get("slaThreshold") or 0),
            user_id=data.get("userId"),
            api_version=data.get("apiVersion"),
            **_options_from(data),
        )


@dataclass
class ExtendedMonitor(Monitor):
    """A monitor as listed by the API, including its timestamps."""
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


@dataclass
class MonitorList:
    monitors: List[ExtendedMonitor]
    count: int


@dataclass
class MonitorState:
    """Observed state of a monitor, in the same shape as the desired spec.

    ``script`` holds the fingerprint of the script, never its text.
    """
    id: str
    name: str
    type: str
    frequency: int
    uri: str
    locations: List[str]
    status: str
    sla_threshold: float
    validation_string: Optional[str] = None
    verify_ssl: Optional[bool] = None
    bypass_head_request: Optional[bool] = None
    treat_redirect_as_failure: Optional[bool] = None
    script: Optional[str] = None
    script_locations: Optional[List[ScriptLocation]] = None

    @classmethod
    def from_monitor(cls, monitor: Monitor, script: Optional[str] = None,
                     script_locations: Optional[List[ScriptLocation]] = None) -> "MonitorState":
        return cls(
            id=monitor.id,
            name=monitor.name,
            type=monitor.type,
            frequency=monitor.frequency,
            uri=monitor.uri,
            locations=list(monitor.locations),
            status=monitor.status,
            sla_threshold=monitor.sla_threshold,
            validation_string=monitor.validation_string,
            verify_ssl=monitor.verify_ssl,
            bypass_head_request=monitor.bypass_head_request,
            treat_redirect_as_failure=monitor.treat_redirect_as_failure,
            script=script,
            script_locations=script_locations,
        )
