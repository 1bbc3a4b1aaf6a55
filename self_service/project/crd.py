"""
CRD & Webhook Lifecycle

Installs the operator's own resources: the Project CRD and the admission
webhook bundle that hangs off it.

A CRD reinstall is destructive (deleting the CRD deletes every Project and,
through ownership, every project namespace), so it is strictly serialized:
delete, observe the deletion, create, observe the creation.
"""

from typing import Any, Dict, List
import logging

from ..config import Settings
from ..errors import SelfServiceError, WebhookBundleError
from ..k8s.client import (
    CUSTOM_RESOURCE_DEFINITION,
    MUTATING_WEBHOOK_CONFIGURATION,
    SECRET,
    SERVICE,
    KubernetesClient,
)
from ..k8s.helpers import WebhookBundle, controller_of, create_webhook_resources, owner_reference
from .apply_manifests import create_or_update, ensure_owner_reference
from .model import project_crd
from .wait import WaitForState, WaitTiming, observe, start_waiting, wait_for_state

logger = logging.getLogger(__name__)


BUNDLE_KINDS = {
    "service": SERVICE,
    "secret": SECRET,
    "config": MUTATING_WEBHOOK_CONFIGURATION,
}


def _is_subset(desired: Any, live: Any) -> bool:
    # The API server adds defaults, so only fields we set are compared
    if isinstance(desired, dict):
        return isinstance(live, dict) and all(k in live and _is_subset(v, live[k]) for k, v in desired.items())
    if isinstance(desired, list):
        return isinstance(live, list) and len(desired) == len(live) and all(
            _is_subset(d, l) for d, l in zip(desired, live)
        )
    return desired == live


def crd_needs_reinstall(live: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    """True when the live CRD's spec differs from the desired one."""
    return not _is_subset(desired.get("spec") or {}, live.get("spec") or {})


async def ensure_crd(client: KubernetesClient, desired: Dict[str, Any], timing: WaitTiming) -> Dict[str, Any]:
    """
    Install ``desired``, deleting an existing CRD of the same name first.

    Returns:
        The created CRD
    """
    api = await client.api(*CUSTOM_RESOURCE_DEFINITION)
    name = desired["metadata"]["name"]

    if await api.get(name) is not None:
        logger.info(f"[CRD] Deleting existing CustomResourceDefinition {name}")
        deleted = start_waiting(api, name, WaitForState.DELETED, timing=timing)
        await observe(deleted, api.delete(name))
        logger.info(f"[CRD] CustomResourceDefinition {name} deleted")

    created = start_waiting(api, name, WaitForState.CREATED, timing=timing)
    crd = await observe(created, api.create(desired))
    logger.info(f"[CRD] ✅ Created CustomResourceDefinition {name}")

    # Served kinds changed
    client.invalidate_discovery()
    return crd


async def ensure_webhook_bundle(
    client: KubernetesClient,
    crd: Dict[str, Any],
    namespace: str,
    settings: Settings,
    timing: WaitTiming
) -> WebhookBundle:
    """
    Create or update the webhook Service, TLS Secret and MutatingWebhookConfiguration.

    Each resource is controlled by ``crd``. A resource still controlled by a
    previous CRD is being garbage collected; its deletion is awaited first.

    Raises:
        WebhookBundleError: Naming the resources already written and the one that failed
    """
    owner = owner_reference(crd)
    spec = crd["spec"]
    desired = create_webhook_resources(
        settings,
        namespace,
        group=spec["group"],
        versions=[v["name"] for v in spec["versions"] if v.get("served", True)],
        plural=spec["names"]["plural"]
    )

    written: List[str] = []
    applied: Dict[str, Dict[str, Any]] = {}

    for key, body in desired.items():
        label = f"{body['kind']} {body['metadata']['name']}"
        try:
            api = await client.api(*BUNDLE_KINDS[key], namespace=namespace)

            live = await api.get(body["metadata"]["name"])
            controller = controller_of(live) if live else None
            if controller is not None and controller.get("uid") != owner["uid"]:
                # Left over from a previous CRD and being garbage collected
                logger.info(f"[WEBHOOK] Waiting for stale {api.describe(body['metadata']['name'])} to be deleted")
                await wait_for_state(api, body["metadata"]["name"], WaitForState.DELETED, timing=timing)

            body["metadata"]["ownerReferences"] = [owner]
            obj = await create_or_update(api, body, settings.conflict_retry_attempts)
            applied[key] = await ensure_owner_reference(api, obj, owner, settings.conflict_retry_attempts)
        except SelfServiceError as e:
            logger.error(f"[WEBHOOK] Failed to write {label}: {e}")
            raise WebhookBundleError(label, written, e) from e
        written.append(label)

    logger.info(f"[WEBHOOK] ✅ Webhook bundle ready in namespace {namespace}")
    return WebhookBundle(**applied)


async def install_operator_resources(client: KubernetesClient, settings: Settings) -> WebhookBundle:
    """
    Bootstrap the CRD and webhook bundle on operator startup.

    The CRD is installed when missing and reinstalled according to
    ``settings.crd_reinstall``. With ``webhook_config_enabled`` off, the
    MutatingWebhookConfiguration is removed again after the bundle is written.
    """
    timing = WaitTiming.from_settings(settings)
    desired = project_crd()
    name = desired["metadata"]["name"]

    api = await client.api(*CUSTOM_RESOURCE_DEFINITION)
    live = await api.get(name)
    policy = settings.crd_reinstall

    if live is None:
        logger.info(f"[CRD] CustomResourceDefinition {name} not installed")
        crd = await ensure_crd(client, desired, timing)
    elif policy == "always" or (policy == "if-changed" and crd_needs_reinstall(live, desired)):
        logger.warning(f"[CRD] Reinstalling CustomResourceDefinition {name} (policy: {policy}); existing Projects are deleted")
        crd = await ensure_crd(client, desired, timing)
    else:
        logger.info(f"[CRD] CustomResourceDefinition {name} is up to date")
        crd = live

    bundle = await ensure_webhook_bundle(client, crd, settings.operator_namespace, settings, timing)

    if not settings.webhook_config_enabled:
        config_api = await client.api(*MUTATING_WEBHOOK_CONFIGURATION)
        config_name = bundle.config["metadata"]["name"]
        logger.info(f"[WEBHOOK] Admission webhook disabled, removing {config_api.describe(config_name)}")
        deleted = start_waiting(config_api, config_name, WaitForState.DELETED, timing=timing)
        await observe(deleted, config_api.delete(config_name))

    return bundle
