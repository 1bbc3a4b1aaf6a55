"""
Kubernetes Access Layer

This module contains all Kubernetes API access used by the operator:
- KubernetesClient: Configuration loading, API discovery, per-kind API factory
- ResourceApi: Capability interface (list/get/watch/create/patch/delete)
- Helpers: Manifest builders for namespaces, the webhook bundle and TLS material

The client is created once at startup and passed explicitly to every
component that needs it.
"""

from .client import (
    KubernetesClient,
    load_configuration,
    NAMESPACE,
    SERVICE,
    SECRET,
    CUSTOM_RESOURCE_DEFINITION,
    MUTATING_WEBHOOK_CONFIGURATION,
)
from .helpers import (
    # Labels and ownership
    get_standard_labels,
    owner_reference,
    controller_of,
    # Manifests
    create_namespace_manifest,
    create_webhook_resources,
    generate_self_signed_certificate,
    WebhookBundle,
)
from .resources import (
    ResourceApi,
    ResourceInfo,
    ResourceList,
    WatchEvent,
    WatchEventType,
    DynamicResourceApi,
)

__all__ = [
    # Client
    "KubernetesClient",
    "load_configuration",
    "NAMESPACE",
    "SERVICE",
    "SECRET",
    "CUSTOM_RESOURCE_DEFINITION",
    "MUTATING_WEBHOOK_CONFIGURATION",
    # Helpers
    "get_standard_labels",
    "owner_reference",
    "controller_of",
    "create_namespace_manifest",
    "create_webhook_resources",
    "generate_self_signed_certificate",
    "WebhookBundle",
    # Capability interface
    "ResourceApi",
    "ResourceInfo",
    "ResourceList",
    "WatchEvent",
    "WatchEventType",
    "DynamicResourceApi",
]
