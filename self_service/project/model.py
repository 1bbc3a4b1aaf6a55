"""
Project custom resource: schemas, identity and the CRD that serves it.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import pydantic
from pydantic import BaseModel, Field

from ..errors import ValidationError
from .render import render

PROJECT_GROUP = "selfservice.dev"
PROJECT_VERSION = "v1alpha1"
PROJECT_API_VERSION = f"{PROJECT_GROUP}/{PROJECT_VERSION}"
PROJECT_KIND = "Project"
PROJECT_PLURAL = "projects"
PROJECT_SHORT_NAMES = ["proj"]
PROJECT_CRD_NAME = f"{PROJECT_PLURAL}.{PROJECT_GROUP}"

# Placeholders bound when rendering a project's manifests
PROJECT_NAME_PLACEHOLDER = "__PROJECT_NAME__"
NAME_PLACEHOLDER = "__NAME__"


class ManifestTemplate(BaseModel):
    name: str  # Bound to {{ __NAME__ }}; also shows up in status and logs
    template: str  # Raw YAML, may hold several documents


class ProjectSpec(BaseModel):
    manifests: List[ManifestTemplate] = Field(default_factory=list)


class ProjectPhase(str, Enum):
    CREATING = "Creating"
    READY = "Ready"
    FAILED = "Failed"


class ErrorInfo(BaseModel):
    error_class: str = Field(alias="class")
    message: str

    class Config:
        populate_by_name = True


class ProjectStatus(BaseModel):
    phase: ProjectPhase = ProjectPhase.CREATING
    namespace: Optional[str] = None
    applied_manifests: List[str] = Field(default_factory=list, alias="appliedManifests")
    last_error: Optional[ErrorInfo] = Field(default=None, alias="lastError")
    observed_generation: Optional[int] = Field(default=None, alias="observedGeneration")

    class Config:
        populate_by_name = True
        use_enum_values = True

    def to_body(self) -> Dict[str, Any]:
        """Status in API form. ``lastError: None`` is kept so a merge patch clears it."""
        return self.model_dump(by_alias=True, mode="json")


class ProjectMetadata(BaseModel):
    name: str
    uid: Optional[str] = None
    generation: Optional[int] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")

    class Config:
        populate_by_name = True


class Project(BaseModel):
    """
    A cluster-scoped Project.

    The project name doubles as the name of its namespace. Everything the
    operator creates for a project carries a controller owner reference back
    to it, which requires the uid assigned by the API server.
    """

    api_version: str = Field(default=PROJECT_API_VERSION, alias="apiVersion")
    kind: str = PROJECT_KIND
    metadata: ProjectMetadata
    spec: ProjectSpec = Field(default_factory=ProjectSpec)
    status: Optional[ProjectStatus] = None

    class Config:
        populate_by_name = True

    @classmethod
    def new(cls, name: str, manifests: Optional[List[ManifestTemplate]] = None, uid: Optional[str] = None) -> "Project":
        return cls(metadata=ProjectMetadata(name=name, uid=uid), spec=ProjectSpec(manifests=manifests or []))

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> "Project":
        """
        Build a Project from an object in API form.

        Raises:
            ValidationError: If the object does not match the Project schema
        """
        try:
            return cls.model_validate(dict(body))
        except pydantic.ValidationError as e:
            name = (body.get("metadata") or {}).get("name", "<unnamed>")
            raise ValidationError(f"project {name} is malformed: {e}") from e

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.uid

    @property
    def phase(self) -> Optional[str]:
        return self.status.phase if self.status else None

    def owner_reference(self) -> Dict[str, Any]:
        """
        Controller owner reference pointing at this project.

        Raises:
            ValidationError: If the project has no uid yet
        """
        if not self.uid:
            raise ValidationError(f"project {self.name} has no uid and cannot own resources")
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def render(self, template: str, name: str) -> str:
        """Render a manifest template of this project."""
        return render(template, {PROJECT_NAME_PLACEHOLDER: self.name, NAME_PLACEHOLDER: name})


def project_crd() -> Dict[str, Any]:
    """CustomResourceDefinition serving the Project kind."""
    manifest_schema = {
        "type": "object",
        "required": ["name", "template"],
        "properties": {
            "name": {"type": "string", "minLength": 1},
            "template": {"type": "string"},
        },
    }

    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {
            "name": PROJECT_CRD_NAME,
            "labels": {"app.kubernetes.io/managed-by": "self-service-operator"},
        },
        "spec": {
            "group": PROJECT_GROUP,
            "scope": "Cluster",
            "names": {
                "kind": PROJECT_KIND,
                "listKind": f"{PROJECT_KIND}List",
                "plural": PROJECT_PLURAL,
                "singular": PROJECT_KIND.lower(),
                "shortNames": PROJECT_SHORT_NAMES,
            },
            "versions": [
                {
                    "name": PROJECT_VERSION,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "additionalPrinterColumns": [
                        {"name": "Phase", "type": "string", "jsonPath": ".status.phase"},
                        {"name": "Namespace", "type": "string", "jsonPath": ".status.namespace"},
                        {"name": "Age", "type": "date", "jsonPath": ".metadata.creationTimestamp"},
                    ],
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "properties": {
                                "spec": {
                                    "type": "object",
                                    "properties": {
                                        "manifests": {"type": "array", "items": manifest_schema},
                                    },
                                },
                                "status": {
                                    "type": "object",
                                    "x-kubernetes-preserve-unknown-fields": True,
                                },
                            },
                        }
                    },
                }
            ],
        },
    }
