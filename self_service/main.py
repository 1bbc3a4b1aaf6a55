"""
Operator entry point.

Importing ``self_service.project.handlers`` registers the kopf handlers;
``main`` configures logging and runs kopf against the whole cluster.
"""

import logging

import kopf

from .config import get_settings
from .project import handlers  # noqa: F401

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main() -> None:
    logger.info(f"Starting {settings.operator_name} (namespace: {settings.operator_namespace})")
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
