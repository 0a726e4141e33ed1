from contextlib import contextmanager
from injector import Injector
from kubernetes.client import ApiClient
from loguru import logger
import kopf
import kr8s
import base64

from src.lock_manager import LockManager
from src.synthetics_monitor.client import SyntheticsClient
from src.synthetics_monitor.crd import SyntheticsMonitor
from src.synthetics_monitor.errors import InvalidArgument, ScriptUpdateError
from src.synthetics_monitor.manager import MONITOR_FIELDS, MonitorManagement, changed_fields, script_locations_from
from src.synthetics_monitor.models import MonitorState
from src.synthetics_monitor.module import SyntheticsClientFactory, SyntheticsSettings

injector: Injector = None
api: ApiClient = None

RESOURCE = "SyntheticsMonitor.ops.veitosiander.de"
RECONCILE_INTERVAL = SyntheticsSettings.from_env().reconcile_interval


def get_api_key_from_secret(secret_name: str, secret_namespace: str) -> str:
    """Retrieve the Synthetics API key from a Kubernetes Secret."""
    try:
        secrets = list(kr8s.get("secrets", secret_name, namespace=secret_namespace))
        if not secrets:
            raise ValueError(f"Secret {secret_name} not found in namespace {secret_namespace}")

        secret = secrets[0]
        api_key_b64 = secret.data.get('api-key')
        if not api_key_b64:
            raise ValueError(f"Secret {secret_name} does not contain 'api-key' key")

        return base64.b64decode(api_key_b64).decode('utf-8')
    except Exception as e:
        logger.error(f"Failed to retrieve API key from secret {secret_namespace}/{secret_name}: {e}")
        raise


def get_client(spec, namespace) -> SyntheticsClient:
    api_key = get_api_key_from_secret(spec['existing_secret'], namespace)
    return injector.get(SyntheticsClientFactory).for_api_key(api_key)


def patch_resource(name: str, namespace: str, fields: dict):
    cr = list(kr8s.get(RESOURCE, name, namespace=namespace))[0]
    cr.patch({"spec": fields})
    logger.info(f"SyntheticsMonitor {namespace}/{name} patched with {fields}")


def record_state(name: str, namespace: str, state: MonitorState):
    patch_resource(name, namespace, {
        "monitor_id": state.id,
        "script_sha256": state.script or "",
        "is_installed": True,
    })


@contextmanager
def resource_lock(name: str, namespace: str, blocking: bool = True):
    lock_manager = injector.get(LockManager)
    with lock_manager.acquire_lock(f"synthetics-monitor:{namespace}/{name}", blocking=blocking) as acquired:
        yield acquired


def register_handlers(inj: Injector):
    global injector, api
    injector = inj
    api = inj.get(ApiClient)
    logger.info("Registering SyntheticsMonitor handlers...")
    SyntheticsMonitor.install(api, exist_ok=True)


@kopf.on.create("ops.veitosiander.de", "v1", "SyntheticsMonitor")
def create_fn(spec, name, namespace, **kwargs):
    monitor_management = injector.get(MonitorManagement)
    logger.info(f"Creating SyntheticsMonitor resource: {namespace}/{name}")

    with resource_lock(name, namespace) as acquired:
        if not acquired:
            raise kopf.TemporaryError(f"SyntheticsMonitor {namespace}/{name} is locked", delay=10)

        try:
            client = get_client(spec, namespace)

            monitor_id = spec.get('monitor_id')
            if monitor_id:
                # A previous attempt created the monitor but failed on its script
                logger.info(f"Monitor {monitor_id} already created, retrying script step only")
                script_hash = ""
                if spec.get('script') is not None:
                    script_hash = monitor_management.update_script(client, monitor_id, spec, operation="create")
                patch_resource(name, namespace, {"script_sha256": script_hash, "is_installed": True})
                return {"status": "created", "monitor_id": monitor_id}

            if spec.get('adopt_existing'):
                existing = monitor_management.find_by_name(client, spec['name'])
                if existing:
                    if existing.type != spec.get('type', 'SIMPLE'):
                        raise kopf.PermanentError(
                            f"Existing monitor '{spec['name']}' has type {existing.type}, expected {spec.get('type', 'SIMPLE')}"
                        )
                    logger.info(f"Adopting existing monitor '{spec['name']}' with ID {existing.id}")
                    state = monitor_management.update(client, existing.id, spec, MONITOR_FIELDS)
                    record_state(name, namespace, state)
                    return {"status": "adopted", "monitor_id": state.id}

            state = monitor_management.create(client, spec)
            record_state(name, namespace, state)
            logger.info(f"SyntheticsMonitor {namespace}/{name} created with monitor_id: {state.id}")
            return {"status": "created", "monitor_id": state.id}

        except kopf.PermanentError:
            raise
        except ScriptUpdateError as e:
            logger.error(f"Monitor {e.monitor_id} created for {namespace}/{name} but its script failed: {e}")
            patch_resource(name, namespace, {"monitor_id": e.monitor_id, "is_installed": False})
            raise kopf.TemporaryError(f"Failed to update monitor script: {e}", delay=30)
        except InvalidArgument as e:
            logger.error(f"Invalid SyntheticsMonitor {namespace}/{name}: {e}")
            raise kopf.PermanentError(f"Invalid monitor: {e}")
        except Exception as e:
            logger.error(f"Failed to create monitor for {namespace}/{name}: {e}")
            raise kopf.TemporaryError(f"Failed to create monitor: {e}", delay=30)


@kopf.on.update("ops.veitosiander.de", "v1", "SyntheticsMonitor")
def update_fn(spec, name, namespace, diff, **kwargs):
    monitor_management = injector.get(MonitorManagement)

    changed = changed_fields(diff)
    if not changed:
        logger.debug(f"No monitor fields changed for {namespace}/{name}, skipping update.")
        return

    if "type" in changed:
        raise kopf.PermanentError(
            f"Monitor type of {namespace}/{name} cannot be changed; delete and recreate the resource"
        )

    monitor_id = spec.get('monitor_id')
    if not monitor_id:
        logger.warning(f"No monitor_id for {namespace}/{name}, skipping update.")
        return

    logger.info(f"Updating SyntheticsMonitor resource: {namespace}/{name}, changed: {sorted(changed)}")
    with resource_lock(name, namespace) as acquired:
        if not acquired:
            raise kopf.TemporaryError(f"SyntheticsMonitor {namespace}/{name} is locked", delay=10)

        try:
            client = get_client(spec, namespace)
            state = monitor_management.update(client, monitor_id, spec, changed)
            record_state(name, namespace, state)
            logger.info(f"Successfully updated monitor with ID {monitor_id}")
            return {"status": "updated"}
        except InvalidArgument as e:
            logger.error(f"Invalid SyntheticsMonitor {namespace}/{name}: {e}")
            raise kopf.PermanentError(f"Invalid monitor: {e}")
        except Exception as e:
            logger.error(f"Failed to update monitor for {namespace}/{name}: {e}")
            raise kopf.TemporaryError(f"Failed to update monitor: {e}", delay=30)


@kopf.on.delete("ops.veitosiander.de", "v1", "SyntheticsMonitor")
def delete_fn(spec, name, namespace, **kwargs):
    monitor_management = injector.get(MonitorManagement)
    logger.info(f"Deleting SyntheticsMonitor resource: {namespace}/{name}")

    monitor_id = spec.get('monitor_id')
    if not monitor_id:
        logger.info(f"No monitor_id for {namespace}/{name}, nothing to delete.")
        return

    with resource_lock(name, namespace) as acquired:
        if not acquired:
            raise kopf.TemporaryError(f"SyntheticsMonitor {namespace}/{name} is locked", delay=10)

        try:
            client = get_client(spec, namespace)
            if not monitor_management.exists(client, monitor_id):
                logger.info(f"Monitor {monitor_id} is already gone, nothing to delete.")
                return
            monitor_management.delete(client, monitor_id)
            logger.info(f"SyntheticsMonitor {namespace}/{name} deleted successfully.")
        except Exception as e:
            logger.error(f"Failed to delete monitor {monitor_id} for {namespace}/{name}: {e}")
            raise kopf.TemporaryError(f"Failed to delete monitor: {e}", delay=30)


@kopf.on.timer("ops.veitosiander.de", "v1", "SyntheticsMonitor", interval=RECONCILE_INTERVAL)
def reconcile_fn(spec, name, namespace, **kwargs):
    if not spec.get('is_installed', False):
        logger.warning(f"Monitor not installed for {namespace}/{name}, skipping reconciliation.")
        return

    monitor_management = injector.get(MonitorManagement)
    monitor_id = spec['monitor_id']

    with resource_lock(name, namespace, blocking=False) as acquired:
        if not acquired:
            logger.info(f"SyntheticsMonitor {namespace}/{name} is busy, skipping reconciliation.")
            return

        try:
            client = get_client(spec, namespace)
            if not monitor_management.exists(client, monitor_id):
                logger.warning(f"Monitor {monitor_id} does not exist. Recreating...")
                try:
                    state = monitor_management.create(client, spec)
                except ScriptUpdateError as e:
                    # Keep the new id so the next run only retries the script
                    logger.error(f"Monitor {e.monitor_id} recreated for {namespace}/{name} but its script failed: {e}")
                    patch_resource(name, namespace, {"monitor_id": e.monitor_id, "script_sha256": ""})
                    return
                record_state(name, namespace, state)
                logger.info(f"Recreated monitor for {namespace}/{name} with ID {state.id}")
                return

            state = monitor_management.read(client, monitor_id, script_locations_from(spec))
            if state.type != spec.get('type', 'SIMPLE'):
                logger.error(f"Monitor {monitor_id} has type {state.type}, expected {spec.get('type', 'SIMPLE')}; recreate the resource")

            drift = monitor_management.detect_drift(state, spec)
            if not drift:
                logger.debug(f"Monitor {monitor_id} is in sync")
                return

            logger.warning(f"Monitor {monitor_id} drifted on {sorted(drift)}. Reconciling...")
            if drift == {"script"}:
                script_hash = monitor_management.update_script(client, monitor_id, spec)
                patch_resource(name, namespace, {"script_sha256": script_hash})
                return

            state = monitor_management.update(client, monitor_id, spec, drift)
            record_state(name, namespace, state)
        except Exception as e:
            logger.error(f"Failed to reconcile monitor {monitor_id} for {namespace}/{name}: {e}")
