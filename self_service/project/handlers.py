"""
kopf handlers for Project resources.

Handlers stay thin: they build a Project from the event body, hand it to the
ProjectReconciler and translate the outcome into a status patch and kopf's
retry semantics. Permanent errors stop retries until the Project changes;
everything else is retried after ``reconcile_retry_delay_seconds``.
"""

from typing import Any
import logging

import kopf

from ..config import get_settings
from ..errors import PERMANENT_ERRORS, SelfServiceError
from ..k8s.client import KubernetesClient
from .crd import install_operator_resources
from .model import PROJECT_GROUP, PROJECT_PLURAL, PROJECT_VERSION, Project
from .reconciler import ProjectReconciler

logger = logging.getLogger(__name__)


@kopf.on.startup()
async def on_startup(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs: Any) -> None:
    """Create the client, install the CRD and webhook bundle, build the reconciler."""
    app_settings = get_settings()

    settings.posting.level = logging.getLevelName(app_settings.log_level.upper())

    try:
        client = KubernetesClient(app_settings)
    except RuntimeError as e:
        raise kopf.PermanentError(str(e)) from e

    try:
        await install_operator_resources(client, app_settings)
    except BaseException:
        # kopf retries startup with a fresh client
        client.close()
        raise

    memo.client = client
    memo.reconciler = ProjectReconciler(client, app_settings)
    logger.info("[PROJECT] Operator started")


@kopf.on.cleanup()
async def on_cleanup(memo: kopf.Memo, **kwargs: Any) -> None:
    client = memo.get("client")
    if client is not None:
        client.close()
    logger.info("[PROJECT] Operator stopped")


async def reconcile_project(body: kopf.Body, patch: kopf.Patch, memo: kopf.Memo) -> None:
    """Reconcile one Project and write its status into ``patch``."""
    reconciler: ProjectReconciler = memo.reconciler
    project = None
    try:
        project = Project.from_body(body)
        status = await reconciler.reconcile(project)
    except SelfServiceError as e:
        if project is None:
            patch.status["phase"] = "Failed"
            patch.status["lastError"] = {"class": type(e).__name__, "message": str(e)}
        else:
            patch.status.update(reconciler.status_for_error(project, e).to_body())

        if isinstance(e, PERMANENT_ERRORS):
            logger.error(f"[PROJECT] Project {body['metadata']['name']} failed permanently: {e}")
            raise kopf.PermanentError(str(e)) from e
        logger.warning(f"[PROJECT] Project {body['metadata']['name']} failed, retrying: {e}")
        raise kopf.TemporaryError(str(e), delay=reconciler.settings.reconcile_retry_delay_seconds) from e

    patch.status.update(status.to_body())


@kopf.on.create(PROJECT_GROUP, PROJECT_VERSION, PROJECT_PLURAL)
@kopf.on.update(PROJECT_GROUP, PROJECT_VERSION, PROJECT_PLURAL, field="spec")
@kopf.on.resume(PROJECT_GROUP, PROJECT_VERSION, PROJECT_PLURAL)
async def on_project_changed(body: kopf.Body, patch: kopf.Patch, memo: kopf.Memo, **kwargs: Any) -> None:
    await reconcile_project(body, patch, memo)


@kopf.on.delete(PROJECT_GROUP, PROJECT_VERSION, PROJECT_PLURAL, optional=True)
async def on_project_deleted(body: kopf.Body, memo: kopf.Memo, **kwargs: Any) -> None:
    reconciler: ProjectReconciler = memo.reconciler
    await reconciler.on_delete(Project.from_body(body))
