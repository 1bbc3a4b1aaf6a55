"""
Test configuration and fixtures for pytest.

Fixtures include: operator settings with fast waiter timings, an in-memory
fake cluster and client, and sample Projects.
"""

import sys
import os
from pathlib import Path
import pytest

# Add the repository root and this directory to sys.path
tests_dir = Path(__file__).parent
sys.path.insert(0, str(tests_dir.parent))
sys.path.insert(0, str(tests_dir))

from self_service.config import Settings
from self_service.project.model import ManifestTemplate, Project
from self_service.project.wait import WaitTiming
from fakes import FakeCluster, FakeKubernetesClient


def pytest_configure(config):
    """
    Pytest hook called before test collection.
    Sets up test environment variables and registers custom markers.
    """
    os.environ.setdefault("OPERATOR_NAMESPACE", "self-service-system")

    # Import and clear settings cache after env vars are set
    from self_service.config import get_settings
    get_settings.cache_clear()

    # Register custom markers
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "kubernetes: mark test as requiring a Kubernetes cluster")


@pytest.fixture
def settings():
    """Settings with waiter timings short enough for unit tests."""
    return Settings(
        _env_file=None,
        operator_namespace="self-service-system",
        wait_timeout_seconds=2.0,
        watch_timeout_seconds=1,
        list_retry_interval_seconds=0.01,
        empty_watch_backoff_seconds=0.01,
        settle_delay_seconds=0.0,
        webhook_cert_validity_days=1,
    )


@pytest.fixture
def timing(settings):
    return WaitTiming.from_settings(settings)


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def fake_client(cluster):
    return FakeKubernetesClient(cluster)


POD_TEMPLATE = """\
apiVersion: v1
kind: Pod
metadata:
  name: {{ __NAME__ }}
  namespace: {{ __PROJECT_NAME__ }}
spec:
  containers:
    - name: main
      image: nginx:1.25
"""

CONFIGMAP_TEMPLATE = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: {{__NAME__}}
  namespace: {{__PROJECT_NAME__}}
data:
  project: "{{ __PROJECT_NAME__ }}"
"""


@pytest.fixture
def project():
    """A Project as the API server returns it: named, with a uid and no status yet."""
    return Project.new(
        "team-a",
        manifests=[
            ManifestTemplate(name="web", template=POD_TEMPLATE),
            ManifestTemplate(name="settings", template=CONFIGMAP_TEMPLATE),
        ],
        uid="0b6f3c1e-6f1c-4a1e-9d5e-3a2f1c9e7b11",
    )
