"""Shared pytest fixtures for work-agent tests."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from fakes import FakeMapper  # noqa: E402
from workorder.registry import TypedKindRegistry  # noqa: E402

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
T1 = datetime(2026, 1, 1, 12, 5, 0, tzinfo=timezone.utc)


@pytest.fixture
def mapper():
    """Mapper resolving the kinds used in tests."""
    return FakeMapper()


@pytest.fixture
def registry():
    """Default typed-kind registry (Secret typed, Deployment dynamic)."""
    return TypedKindRegistry()


@pytest.fixture
def clock():
    """Controllable clock returning T0 until advanced."""
    class Clock:
        def __init__(self):
            self.now = T0

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def config_dir(tmp_path):
    """Directory holding an agent config file."""
    (tmp_path / 'config.yaml').write_text("""
namespace: cluster1
spoke_kubeconfig: /tmp/spoke.kubeconfig
request_timeout: 15
status_update_retries: 3
typed_kinds:
  - group: ''
    kind: Secret
    api: CoreV1Api
    resource: secret
  - group: rbac.authorization.k8s.io
    kind: ClusterRole
    api: RbacAuthorizationV1Api
    resource: cluster_role
    namespaced: false
""")
    return tmp_path
