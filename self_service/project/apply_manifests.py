"""
Manifest Applier

Resolves where a rendered manifest lives in the REST API and writes it:
create, or on "already exists" merge-patch it under the live
resourceVersion, then make sure the object is controlled by its owner.
Ownership is the only deletion mechanism for project children, so nothing
here ever deletes.
"""

from typing import Any, Dict, List, Optional, Tuple
import copy
import logging

import yaml

from ..errors import AlreadyExistsError, ApplyError, ConflictError, TransportError, ValidationError
from ..k8s.client import KubernetesClient
from ..k8s.helpers import controller_of
from ..k8s.resources import ResourceApi, ResourceInfo
from ..retry_config import conflict_retrying
from .model import Project

logger = logging.getLogger(__name__)


# =============================================================================
# Parsing and Path Resolution
# =============================================================================

def parse_manifest(manifest: str) -> Dict[str, Any]:
    """
    Parse a single rendered YAML document.

    Raises:
        ValidationError: If the text is not a YAML mapping with apiVersion, kind and metadata.name
    """
    try:
        obj = yaml.safe_load(manifest)
    except yaml.YAMLError as e:
        raise ValidationError(f"manifest is not valid YAML: {e}\nManifest is: {manifest}") from e

    if not isinstance(obj, dict):
        raise ValidationError(f"manifest must be a YAML mapping\nManifest is: {manifest}")

    metadata = obj.get("metadata")
    missing = [
        field for field, value in (
            ("apiVersion", obj.get("apiVersion")),
            ("kind", obj.get("kind")),
            ("metadata.name", metadata.get("name") if isinstance(metadata, dict) else None),
        )
        if not value
    ]
    if missing:
        raise ValidationError(f"manifest is missing {', '.join(missing)}\nManifest is: {manifest}")

    return obj


def split_api_version(api_version: str) -> Tuple[str, str]:
    """Split apiVersion into (group, version); core kinds have an empty group."""
    parts = api_version.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2 and all(parts):
        return parts[0], parts[1]
    raise ValidationError(f"invalid apiVersion {api_version!r}")


def require_namespace(obj: Dict[str, Any], manifest: str) -> str:
    """Return metadata.namespace, rejecting (never defaulting) a missing one."""
    namespace = obj["metadata"].get("namespace")
    if not namespace:
        raise ValidationError(
            f"setting namespace is required: resource {obj['apiVersion']}/{obj['kind']} "
            f"with name '{obj['metadata']['name']}' has no namespace set ... "
            f"in most cases you want to set it to {{{{ __PROJECT_NAME__ }}}}\n"
            f"Manifest is: {manifest}"
        )
    return namespace


async def _resolve(client: KubernetesClient, manifest: str) -> Tuple[Dict[str, Any], ResourceInfo, str]:
    obj = parse_manifest(manifest)
    namespace = require_namespace(obj, manifest)
    split_api_version(obj["apiVersion"])
    info = await client.resource_info(obj["apiVersion"], obj["kind"])
    return obj, info, namespace


async def resource_path(client: KubernetesClient, manifest: str) -> str:
    """
    Resolve the REST path of a rendered manifest.

    Raises:
        ValidationError: Malformed manifest or missing metadata.namespace
        UnknownKindError: The API server does not serve the manifest's kind
    """
    obj, info, namespace = await _resolve(client, manifest)
    return info.path(obj["metadata"]["name"], namespace)


# =============================================================================
# Writing
# =============================================================================

def _merge_owner_references(live: List[Dict[str, Any]], desired: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    uids = {ref.get("uid") for ref in live}
    return list(live) + [ref for ref in desired if ref.get("uid") not in uids]


def _update_patch(live: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
    patch = copy.deepcopy(desired)
    metadata = patch.setdefault("metadata", {})
    live_metadata = live.get("metadata") or {}

    metadata["resourceVersion"] = live_metadata.get("resourceVersion")
    if metadata.get("ownerReferences"):
        # A merge patch replaces lists wholesale
        metadata["ownerReferences"] = _merge_owner_references(
            live_metadata.get("ownerReferences") or [],
            metadata["ownerReferences"]
        )
    return patch


async def create_or_update(api: ResourceApi, body: Dict[str, Any], attempts: int = 3) -> Dict[str, Any]:
    """
    Create ``body``, or merge-patch the live object when it already exists.

    The patch is guarded by the live resourceVersion, so fields the server
    filled in (a Pod's nodeName, a Service's clusterIP) are left alone. A
    patch that loses a resourceVersion race is retried with a fresh read.

    Raises:
        ConflictError: If every update attempt conflicted
        TransportError: On any other API failure
    """
    name = body["metadata"]["name"]
    target = api.describe(name)

    try:
        created = await api.create(body)
        logger.info(f"[APPLY] ✅ Created {target}")
        return created
    except AlreadyExistsError:
        logger.debug(f"[APPLY] {target} already exists, updating")

    async for attempt in conflict_retrying(attempts):
        with attempt:
            live = await api.get(name)
            if live is None:
                # Gone between create and get; AlreadyExistsError is a ConflictError and retries
                updated = await api.create(body)
            else:
                updated = await api.patch(name, _update_patch(live, body))

    logger.info(f"[APPLY] ✅ Updated {target}")
    return updated


async def ensure_owner_reference(
    api: ResourceApi,
    obj: Dict[str, Any],
    owner: Dict[str, Any],
    attempts: int = 3
) -> Dict[str, Any]:
    """
    Make ``owner`` the controller of ``obj``.

    Nothing is written when the owner already controls the object. The patch
    is guarded by resourceVersion; on a conflict the object is re-read.

    Raises:
        ApplyError: If a different controller owns the object
        ConflictError: If every patch attempt conflicted
    """
    name = obj["metadata"]["name"]
    target = api.describe(name)
    current: Optional[Dict[str, Any]] = obj

    async for attempt in conflict_retrying(attempts):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                current = await api.get(name)
                if current is None:
                    raise TransportError(f"{target} disappeared while setting its owner", status=404)

            controller = controller_of(current)
            if controller is not None:
                if controller.get("uid") == owner["uid"]:
                    return current
                raise ApplyError(
                    f"{target} is already controlled by {controller.get('kind')} {controller.get('name')}"
                )

            metadata = current.get("metadata") or {}
            references = [ref for ref in metadata.get("ownerReferences") or [] if ref.get("uid") != owner["uid"]]
            patched = await api.patch(name, {
                "metadata": {
                    "ownerReferences": references + [owner],
                    "resourceVersion": metadata.get("resourceVersion"),
                }
            })

    logger.info(f"[APPLY] Set owner {owner['kind']} {owner['name']} on {target}")
    return patched


async def apply_yaml_manifest(
    client: KubernetesClient,
    manifest: str,
    project: Project,
    attempts: int = 3
) -> Dict[str, Any]:
    """
    Apply one rendered manifest on behalf of ``project``.

    Args:
        client: Kubernetes client
        manifest: A single rendered YAML document
        project: Owning project (must have a uid)
        attempts: Attempts for resourceVersion conflicts

    Returns:
        The live object, controlled by the project

    Raises:
        ValidationError: Malformed manifest, missing namespace or project uid
        UnknownKindError: Kind not served by the API server
        ApplyError: Transport or conflict failure, or a foreign controller
    """
    owner = project.owner_reference()
    obj, info, namespace = await _resolve(client, manifest)
    name = obj["metadata"]["name"]

    try:
        api = await client.api(obj["apiVersion"], obj["kind"], namespace=namespace)
        applied = await create_or_update(api, obj, attempts)
        return await ensure_owner_reference(api, applied, owner, attempts)
    except (TransportError, ConflictError) as e:
        raise ApplyError(
            f"applying {info.path(name, namespace)} for project {project.name} failed: {e}\nManifest is: {manifest}"
        ) from e
