"""
Kubernetes Client for the Self-Service Operator

Owns the API connection and answers two questions for the rest of the
operator: which REST resource serves a given (apiVersion, kind), and how to
talk to it. A client value is created once at startup and passed explicitly
to every component; there is no module-level instance.
"""

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from typing import Dict, Optional, Tuple
from urllib3.exceptions import HTTPError
import asyncio
import logging

from ..config import Settings
from ..errors import TransportError, UnknownKindError
from .resources import DynamicResourceApi, ResourceApi, ResourceInfo, translate_api_exception

logger = logging.getLogger(__name__)


# Kinds the operator itself works with: (apiVersion, kind)
NAMESPACE = ("v1", "Namespace")
SERVICE = ("v1", "Service")
SECRET = ("v1", "Secret")
CUSTOM_RESOURCE_DEFINITION = ("apiextensions.k8s.io/v1", "CustomResourceDefinition")
MUTATING_WEBHOOK_CONFIGURATION = ("admissionregistration.k8s.io/v1", "MutatingWebhookConfiguration")


def load_configuration(settings: Settings) -> client.Configuration:
    """Load in-cluster or kubeconfig credentials into a private Configuration."""
    configuration = client.Configuration()
    try:
        # Try in-cluster config first (for production)
        config.load_incluster_config(client_configuration=configuration)
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            # Fall back to kubeconfig (for development)
            config.load_kube_config(
                config_file=settings.kubeconfig or None,
                context=settings.kube_context or None,
                client_configuration=configuration,
                persist_config=False
            )
            logger.info("Loaded kubeconfig for development")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes config: {e}")
            raise RuntimeError("Cannot load Kubernetes configuration") from e
    return configuration


class KubernetesClient:
    """
    Discovery plus per-kind ResourceApi factory over one ApiClient.

    Discovery results are cached by the dynamic client. ``resource_info``
    raises UnknownKindError for kinds the API server does not serve, which
    also covers CRDs that were installed after the cache was filled; call
    ``invalidate_discovery`` to pick those up.
    """

    def __init__(self, settings: Settings, api_client: Optional[client.ApiClient] = None):
        self.settings = settings
        self.api_client = api_client or client.ApiClient(load_configuration(settings))
        self._dynamic: Optional[DynamicClient] = None
        self._infos: Dict[Tuple[str, str], ResourceInfo] = {}

        logger.info(f"Kubernetes client initialized - Operator namespace: {settings.operator_namespace}")

    @property
    def dynamic(self) -> DynamicClient:
        # DynamicClient runs discovery on construction, so build it lazily
        if self._dynamic is None:
            self._dynamic = DynamicClient(self.api_client)
        return self._dynamic

    def _lookup(self, api_version: str, kind: str):
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError:
            # Refresh once: the kind may have been registered after the cache was built
            self.dynamic.resources.invalidate_cache()
            try:
                return self.dynamic.resources.get(api_version=api_version, kind=kind)
            except ResourceNotFoundError as e:
                raise UnknownKindError(api_version, kind) from e

    async def _resource(self, api_version: str, kind: str):
        try:
            return await asyncio.to_thread(self._lookup, api_version, kind)
        except ApiException as e:
            raise translate_api_exception(e, "discover") from e
        except (HTTPError, OSError) as e:
            raise TransportError(f"discover failed: {e}") from e

    async def resource_info(self, api_version: str, kind: str) -> ResourceInfo:
        """
        Resolve (apiVersion, kind) to its discovery entry.

        Raises:
            UnknownKindError: If the API server does not serve the kind
        """
        key = (api_version, kind)
        if key not in self._infos:
            resource = await self._resource(api_version, kind)
            self._infos[key] = ResourceInfo(
                group=resource.group or "",
                version=resource.api_version,
                kind=resource.kind,
                plural=resource.name,
                namespaced=resource.namespaced
            )
            logger.debug(f"[K8S] Discovered {api_version}/{kind} as {self._infos[key].plural}")
        return self._infos[key]

    async def api(self, api_version: str, kind: str, namespace: Optional[str] = None) -> ResourceApi:
        """Get the ResourceApi for a kind, bound to ``namespace`` when the kind is namespaced."""
        info = await self.resource_info(api_version, kind)
        resource = await self._resource(api_version, kind)
        return DynamicResourceApi(
            self.dynamic,
            resource,
            info,
            namespace=namespace,
            request_timeout=self.settings.request_timeout_seconds
        )

    def invalidate_discovery(self) -> None:
        self._infos.clear()
        if self._dynamic is not None:
            self._dynamic.resources.invalidate_cache()

    def close(self) -> None:
        self.api_client.close()
