"""
Project Reconciler

Drives a Project to its provisioned state: the project namespace exists and
is owned by the Project, and every manifest of the Project is rendered and
applied inside it in declared order.
"""

from typing import Any, Dict, List
import logging

from ..config import Settings
from ..errors import AlreadyExistsError, ApplyError, TransportError
from ..k8s.client import NAMESPACE, KubernetesClient
from ..k8s.helpers import controller_of, create_namespace_manifest
from .apply_manifests import apply_yaml_manifest
from .model import PROJECT_API_VERSION, PROJECT_KIND, ErrorInfo, Project, ProjectPhase, ProjectStatus
from .render import split_documents
from .wait import WaitForState, WaitTiming, observe, start_waiting

logger = logging.getLogger(__name__)


class ProjectReconciler:
    """
    Reconciles Project resources.

    Stateless apart from the client and settings, so one instance serves
    every Project; different Projects may be reconciled concurrently.
    """

    def __init__(self, client: KubernetesClient, settings: Settings):
        self.client = client
        self.settings = settings
        self.timing = WaitTiming.from_settings(settings)

    async def reconcile(self, project: Project) -> ProjectStatus:
        """
        Run one reconciliation pass.

        Projects that are not Ready yet are marked Creating and get their
        namespace first; Ready projects only have their manifests re-applied.

        Returns:
            Ready status listing the applied objects

        Raises:
            SelfServiceError: Any failure; see status_for_error
        """
        owner = project.owner_reference()

        if project.phase != ProjectPhase.READY:
            logger.info(f"[PROJECT] Provisioning project {project.name}")
            await self.report_phase(project, ProjectPhase.CREATING)
            await self.ensure_namespace(project, owner)

        applied = await self.apply_manifests(project)

        logger.info(f"[PROJECT] ✅ Project {project.name} ready ({len(applied)} objects)")
        return ProjectStatus(
            phase=ProjectPhase.READY,
            namespace=project.name,
            applied_manifests=applied,
            last_error=None,
            observed_generation=project.metadata.generation
        )

    async def report_phase(self, project: Project, phase: ProjectPhase) -> None:
        """Write ``phase`` to the Project's status subresource right away."""
        if project.phase == phase:
            return

        api = await self.client.api(PROJECT_API_VERSION, PROJECT_KIND)
        try:
            await api.patch_status(project.name, {"status": {"phase": phase.value}})
        except TransportError as e:
            if e.status != 404:
                raise
            # Deleted meanwhile; the delete handler takes over
            logger.debug(f"[PROJECT] Project {project.name} is gone, phase {phase.value} not recorded")

    async def ensure_namespace(self, project: Project, owner: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create the project namespace (owned by the project) and wait until it is observable.

        Raises:
            ApplyError: If a namespace of that name exists but is not controlled by the project
        """
        api = await self.client.api(*NAMESPACE)
        name = project.name

        namespace = await api.get(name)
        if namespace is None:
            created = start_waiting(api, name, WaitForState.CREATED, timing=self.timing)
            try:
                namespace = await observe(created, api.create(create_namespace_manifest(name, owner)))
                logger.info(f"[PROJECT] ✅ Created namespace {name}")
                return namespace
            except AlreadyExistsError:
                # Lost a race with another pass; fall through to the ownership check
                namespace = await api.get(name)
                if namespace is None:
                    raise

        # Only namespaces created for this project are ever owned by it
        controller = controller_of(namespace)
        if controller is None or controller.get("uid") != owner["uid"]:
            holder = f"{controller.get('kind')} {controller.get('name')}" if controller else "no controller"
            raise ApplyError(
                f"namespace {name} already exists and is not controlled by project {name} ({holder})"
            )
        return namespace

    async def apply_manifests(self, project: Project) -> List[str]:
        """Render and apply every manifest of the project, sequentially."""
        applied: List[str] = []
        for manifest in project.spec.manifests:
            rendered = project.render(manifest.template, manifest.name)
            for document in split_documents(rendered):
                obj = await apply_yaml_manifest(
                    self.client,
                    document,
                    project,
                    self.settings.conflict_retry_attempts
                )
                applied.append(f"{obj['kind']}/{obj['metadata']['name']}")
                logger.debug(f"[PROJECT] Applied {applied[-1]} from manifest {manifest.name}")
        return applied

    def status_for_error(self, project: Project, error: Exception) -> ProjectStatus:
        """Failed status recording the error class and message."""
        previous = project.status or ProjectStatus()
        return ProjectStatus(
            phase=ProjectPhase.FAILED,
            namespace=previous.namespace,
            applied_manifests=previous.applied_manifests,
            last_error=ErrorInfo(error_class=type(error).__name__, message=str(error)),
            observed_generation=project.metadata.generation
        )

    async def on_delete(self, project: Project) -> None:
        # Children are owned by the project; the garbage collector removes them
        logger.info(f"[PROJECT] Project {project.name} deleted, namespace {project.name} is garbage collected")
