import kubecrd
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class SyntheticsScriptLocation(kubecrd.KubeResourceBase):
    name: str = field(metadata={"description": "Name of the private location"})
    hmac: str = field(metadata={"description": "HMAC shared with the private location"})


@dataclass
class SyntheticsMonitor(kubecrd.KubeResourceBase):
    __group__ = "ops.veitosiander.de"
    __version__ = "v1"

    existing_secret: str = field(metadata={"description": "Name of the Kubernetes Secret containing the Synthetics API key under 'api-key'"})

    # Monitor config
    name: str = field(metadata={"description": "Monitor display name"})
    frequency: int = field(metadata={"description": "Check frequency in minutes (one of 1, 5, 10, 15, 30, 60, 360, 720, 1440)"})
    locations: List[str] = field(metadata={"description": "Locations to check from"})
    type: str = field(default="SIMPLE", metadata={"description": "Monitor type (one of SIMPLE, BROWSER, SCRIPT_API, SCRIPT_BROWSER). Cannot be changed after creation."})
    uri: str = field(default="", metadata={"description": "The URL to monitor"})
    status: str = field(default="ENABLED", metadata={"description": "Monitor status (one of ENABLED, MUTED, DISABLED)"})
    sla_threshold: float = field(default=7.0, metadata={"description": "SLA threshold in seconds"})

    # Optional settings, left to the API's defaults when unset
    validation_string: Optional[str] = field(default=None, metadata={"description": "Text the response must contain"})
    verify_ssl: Optional[bool] = field(default=None, metadata={"description": "Verify SSL certificates"})
    bypass_head_request: Optional[bool] = field(default=None, metadata={"description": "Skip the initial HEAD request"})
    treat_redirect_as_failure: Optional[bool] = field(default=None, metadata={"description": "Fail the check on redirects"})

    # Script
    script: Optional[str] = field(default=None, metadata={"description": "Script to execute for scripted monitors"})
    script_locations: List[SyntheticsScriptLocation] = field(default_factory=list, metadata={"description": "Private locations allowed to run the script"})

    adopt_existing: bool = field(default=False, metadata={"description": "Adopt an existing monitor with the same name instead of creating one"})

    # Status
    monitor_id: str = field(default="", metadata={"description": "Synthetics monitor ID"})
    script_sha256: str = field(default="", metadata={"description": "SHA-256 of the last script written"})
    is_installed: bool = field(default=False, metadata={"description": "Installation status"})
