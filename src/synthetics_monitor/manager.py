from typing import Any, Dict, Iterable, List, Optional, Set

from injector import singleton
from loguru import logger

from src.synthetics_monitor.client import SyntheticsClient
from src.synthetics_monitor.errors import NotFound, ScriptNotFound, ScriptUpdateError
from src.synthetics_monitor.fingerprint import fingerprint, script_changed
from src.synthetics_monitor.models import (
    OPTION_KEYS,
    REQUIRED_FIELDS,
    ExtendedMonitor,
    MonitorSpec,
    MonitorState,
    MonitorStatus,
    MonitorType,
    MonitorUpdate,
    ScriptLocation,
)

# Fields of the desired spec that map onto the remote monitor
MONITOR_FIELDS = ("type",) + REQUIRED_FIELDS + tuple(OPTION_KEYS) + ("script", "script_locations")


def changed_fields(diff: Iterable) -> Set[str]:
    """Translate a kopf diff into the set of changed top-level spec fields.

    Each diff entry is ``(op, path, old, new)`` where ``path`` is a tuple such
    as ``("spec", "sla_threshold")``. When the whole spec is replaced, the
    fields whose values differ between old and new are reported.
    """
    fields = set()
    for _op, path, old, new in diff:
        path = tuple(path or ())
        if path and path[0] == "spec":
            path = path[1:]
        if path:
            fields.add(path[0])
        else:
            old = old if isinstance(old, dict) else {}
            new = new if isinstance(new, dict) else {}
            fields.update(key for key in set(old) | set(new) if old.get(key) != new.get(key))
    return {name for name in fields if name in MONITOR_FIELDS}


def script_locations_from(spec: Dict[str, Any]) -> List[ScriptLocation]:
    return [ScriptLocation.from_dict(location) for location in spec.get("script_locations") or []]


@singleton
class MonitorManagement:
    def __init__(self):
        pass

    def build_create_args(self, spec: Dict[str, Any]) -> MonitorSpec:
        """Transform a desired spec into create arguments.

        Optional attributes missing from ``spec`` stay unset so the API keeps
        its defaults.
        """
        args = MonitorSpec(
            name=spec.get("name"),
            type=spec.get("type", MonitorType.SIMPLE),
            frequency=int(spec.get("frequency", 0)),
            uri=spec.get("uri") or "",
            locations=list(spec.get("locations") or []),
            status=spec.get("status", MonitorStatus.ENABLED),
            sla_threshold=float(spec.get("sla_threshold") or 0),
        )
        for attr in OPTION_KEYS:
            if spec.get(attr) is not None:
                setattr(args, attr, spec[attr])

        logger.debug(f"Built create args: {args}")
        return args

    def build_update_args(self, spec: Dict[str, Any], changed: Iterable[str]) -> MonitorUpdate:
        """Transform a desired spec into update arguments.

        Required fields are always sent. An optional attribute is sent only when
        it is in ``changed`` and still set in ``spec``.
        """
        changed = set(changed)
        args = MonitorUpdate(
            name=spec.get("name"),
            frequency=int(spec.get("frequency", 0)),
            uri=spec.get("uri") or "",
            locations=list(spec.get("locations") or []),
            status=spec.get("status", MonitorStatus.ENABLED),
            sla_threshold=float(spec.get("sla_threshold") or 0),
        )
        for attr in OPTION_KEYS:
            if attr in changed and spec.get(attr) is not None:
                setattr(args, attr, spec[attr])

        logger.debug(f"Built update args: {args}")
        return args

    def update_script(self, client: SyntheticsClient, monitor_id: str, spec: Dict[str, Any], operation: str = "update_script") -> str:
        """Write the spec's script to the monitor and return its fingerprint.

        Raises:
            ScriptUpdateError: If the API rejects the script
        """
        script = spec["script"]
        try:
            client.update_monitor_script(monitor_id, script, script_locations_from(spec))
        except Exception as e:
            logger.error(f"Failed to update script for monitor {monitor_id}: {e}")
            raise ScriptUpdateError(monitor_id, e, operation)
        return fingerprint(script)

    def create(self, client: SyntheticsClient, spec: Dict[str, Any]) -> MonitorState:
        """Create the monitor described by ``spec``, then attach its script.

        Raises:
            ScriptUpdateError: If the monitor was created but its script was not
                saved; ``monitor_id`` on the error names the new monitor
        """
        monitor = client.create_monitor(self.build_create_args(spec))
        logger.info(f"Created monitor {monitor.name} with ID {monitor.id}")

        script_hash = None
        script_locations = None
        if spec.get("script") is not None:
            script_hash = self.update_script(client, monitor.id, spec, operation="create")
            script_locations = script_locations_from(spec)

        return MonitorState.from_monitor(monitor, script_hash, script_locations)

    def read(self, client: SyntheticsClient, monitor_id: str, script_locations: Optional[List[ScriptLocation]] = None) -> MonitorState:
        """Fetch the observed state of a monitor.

        Script locations cannot be read back, so the last known ones are passed
        in and kept while the monitor still has a script.
        """
        monitor = client.get_monitor(monitor_id)

        try:
            script_hash = client.get_monitor_script(monitor_id)
        except ScriptNotFound:
            logger.debug(f"Monitor {monitor_id} has no script")
            script_hash = None
            script_locations = None

        return MonitorState.from_monitor(monitor, script_hash, script_locations)

    def update(self, client: SyntheticsClient, monitor_id: str, spec: Dict[str, Any], changed: Iterable[str]) -> MonitorState:
        """Push ``spec`` to an existing monitor.

        ``changed`` names the spec fields that differ from the last applied
        state. The script is rewritten only when it or its locations changed,
        and only after the monitor itself was updated.
        """
        changed = set(changed)
        monitor = client.update_monitor(monitor_id, self.build_update_args(spec, changed))
        logger.info(f"Updated monitor {monitor_id}")

        script = spec.get("script")
        script_hash = fingerprint(script) if script is not None else None
        script_locations = script_locations_from(spec) if script is not None else None

        if changed & {"script", "script_locations"}:
            if script is not None:
                script_hash = self.update_script(client, monitor_id, spec, operation="update")
            else:
                logger.warning(f"Script removed from spec of monitor {monitor_id}; the remote script is left in place")

        return MonitorState.from_monitor(monitor, script_hash, script_locations)

    def delete(self, client: SyntheticsClient, monitor_id: str) -> None:
        """Delete a monitor. Fails if the monitor is already gone."""
        client.delete_monitor(monitor_id)
        logger.info(f"Deleted monitor {monitor_id}")

    def exists(self, client: SyntheticsClient, monitor_id: str) -> bool:
        try:
            client.get_monitor(monitor_id)
        except NotFound:
            logger.info(f"Monitor {monitor_id} does not exist")
            return False
        return True

    def find_by_name(self, client: SyntheticsClient, name: str, page_size: int = 100) -> Optional[ExtendedMonitor]:
        """Page through all monitors and return the first one named ``name``."""
        offset = 0
        while True:
            page = client.list_monitors(offset=offset, limit=page_size)
            for monitor in page.monitors:
                if monitor.name == name:
                    return monitor
            offset += len(page.monitors)
            if not page.monitors or offset >= page.count:
                logger.info(f"Monitor with name {name} not found")
                return None

    def detect_drift(self, state: MonitorState, spec: Dict[str, Any]) -> Set[str]:
        """Return the spec fields whose remote value differs from ``spec``.

        Optional attributes only count when ``spec`` sets them.
        """
        drift = set()
        desired = self.build_create_args(spec)
        for attr in REQUIRED_FIELDS:
            if getattr(state, attr) != getattr(desired, attr):
                drift.add(attr)
        for attr in OPTION_KEYS:
            value = spec.get(attr)
            if value is not None and getattr(state, attr) != value:
                drift.add(attr)

        script = spec.get("script")
        if script is not None and script_changed(script, state.script):
            drift.add("script")

        if drift:
            logger.info(f"Monitor {state.id} drifted on fields: {sorted(drift)}")
        return drift
