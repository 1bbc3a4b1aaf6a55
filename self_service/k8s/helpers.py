"""
Kubernetes Helpers for the Self-Service Operator

Manifest builders for everything the operator writes on its own behalf:
- Owner references and standard labels
- The per-project Namespace
- The admission webhook bundle (Service, TLS Secret, MutatingWebhookConfiguration)
- Self-signed TLS material for the webhook endpoint

Manifests are plain dicts in API form so they can go straight through the
dynamic client.
"""

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
import base64
import logging

from ..config import Settings

logger = logging.getLogger(__name__)


MANAGED_BY = "self-service-operator"


# =============================================================================
# Labels and Ownership
# =============================================================================

def get_standard_labels(component: str, project_name: Optional[str] = None) -> Dict[str, str]:
    """
    Get standard labels for operator-managed resources.

    Args:
        component: Component name (namespace, webhook)
        project_name: Owning project, if any

    Returns:
        Dict of labels
    """
    labels = {
        "app.kubernetes.io/managed-by": MANAGED_BY,
        "app.kubernetes.io/component": component,
    }

    if project_name:
        labels["selfservice.dev/project"] = project_name

    return labels


def owner_reference(owner: Dict[str, Any]) -> Dict[str, Any]:
    """Build a controller owner reference pointing at ``owner`` (an object in API form)."""
    metadata = owner.get("metadata") or {}
    return {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": metadata["name"],
        "uid": metadata["uid"],
        "controller": True,
        "blockOwnerDeletion": True,
    }


def controller_of(obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the controller owner reference of ``obj``, if it has one."""
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


# =============================================================================
# Namespace Manifest
# =============================================================================

def create_namespace_manifest(name: str, owner: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create the Namespace manifest for a project.

    The namespace carries the project as controller owner, so deleting the
    project lets the garbage collector remove the namespace and everything in it.
    """
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": name,
            "labels": get_standard_labels("namespace", project_name=name),
            "ownerReferences": [owner],
        },
    }


# =============================================================================
# TLS Material
# =============================================================================

def generate_self_signed_certificate(
    common_name: str,
    dns_names: List[str],
    validity_days: int = 365
) -> Tuple[bytes, bytes]:
    """
    Generate a self-signed serving certificate.

    The certificate is its own CA, so the same PEM goes into the Secret's
    ``ca.crt`` and the webhook's ``caBundle``.

    Returns:
        Tuple of (certificate PEM, private key PEM)
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)

    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=validity_days))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in dns_names]), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption()
    )
    return cert_pem, key_pem


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


# =============================================================================
# Admission Webhook Bundle
# =============================================================================

@dataclass
class WebhookBundle:
    """The three resources backing the admission webhook, always handled together."""

    service: Dict[str, Any]
    secret: Dict[str, Any]
    config: Dict[str, Any]

    def items(self) -> List[Tuple[str, Dict[str, Any]]]:
        return [("service", self.service), ("secret", self.secret), ("config", self.config)]


def create_webhook_resources(
    settings: Settings,
    namespace: str,
    group: str,
    versions: List[str],
    plural: str
) -> WebhookBundle:
    """
    Create the admission webhook bundle for a custom resource.

    Args:
        settings: Operator settings (service name, ports, path, cert validity)
        namespace: Namespace the webhook Service and Secret live in
        group: API group of the custom resource
        versions: Served versions of the custom resource
        plural: Plural resource name of the custom resource

    Returns:
        WebhookBundle with Service, TLS Secret and MutatingWebhookConfiguration
    """
    service_name = settings.webhook_service_name
    labels = get_standard_labels("webhook")

    dns_names = [
        service_name,
        f"{service_name}.{namespace}",
        f"{service_name}.{namespace}.svc",
        f"{service_name}.{namespace}.svc.cluster.local",
    ]
    cert_pem, key_pem = generate_self_signed_certificate(
        common_name=f"{service_name}.{namespace}.svc",
        dns_names=dns_names,
        validity_days=settings.webhook_cert_validity_days
    )

    service = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": service_name, "namespace": namespace, "labels": labels},
        "spec": {
            "selector": {"app.kubernetes.io/name": settings.operator_name},
            "ports": [
                {
                    "name": "https",
                    "protocol": "TCP",
                    "port": settings.webhook_port,
                    "targetPort": settings.webhook_target_port,
                }
            ],
        },
    }

    secret = {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "kubernetes.io/tls",
        "metadata": {"name": f"{service_name}-tls", "namespace": namespace, "labels": labels},
        "data": {
            "tls.crt": _b64(cert_pem),
            "tls.key": _b64(key_pem),
            "ca.crt": _b64(cert_pem),
        },
    }

    config = {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": "MutatingWebhookConfiguration",
        "metadata": {"name": f"{plural}.{group}", "labels": labels},
        "webhooks": [
            {
                "name": f"{plural}.{group}",
                "admissionReviewVersions": ["v1"],
                "clientConfig": {
                    "caBundle": _b64(cert_pem),
                    "service": {
                        "name": service_name,
                        "namespace": namespace,
                        "path": settings.webhook_path,
                        "port": settings.webhook_port,
                    },
                },
                "rules": [
                    {
                        "apiGroups": [group],
                        "apiVersions": versions,
                        "operations": ["CREATE", "UPDATE"],
                        "resources": [plural],
                        "scope": "Cluster",
                    }
                ],
                "failurePolicy": settings.webhook_failure_policy,
                "sideEffects": "None",
                "timeoutSeconds": 10,
            }
        ],
    }

    return WebhookBundle(service=service, secret=secret, config=config)
