"""Registry of kinds applied through strongly-typed client bindings.

Kinds found here are applied in typed mode (replace by delete+create);
every other kind falls back to the dynamic client. The registry is built
from configuration so deployments can extend or narrow the typed set.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypedBinding:
    """Binding of a (group, kind) to a typed Kubernetes API.

    Attributes:
        group: API group ('' for core)
        kind: Object kind
        api: Name of the kubernetes.client API class (e.g. CoreV1Api)
        resource: Snake-case method stem (e.g. 'secret', 'cluster_role')
        namespaced: Whether API methods take a namespace
        version: API version the typed client speaks
    """
    group: str
    kind: str
    api: str
    resource: str
    namespaced: bool = True
    version: str = 'v1'

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    def method(self, verb: str) -> str:
        """API method name for a verb (read/create/replace/delete)."""
        if self.namespaced:
            return f'{verb}_namespaced_{self.resource}'
        return f'{verb}_{self.resource}'

    @classmethod
    def from_dict(cls, data: dict) -> 'TypedBinding':
        return cls(
            group=data.get('group', '') or '',
            kind=data['kind'],
            api=data['api'],
            resource=data['resource'],
            namespaced=bool(data.get('namespaced', True)),
            version=data.get('version', 'v1'),
        )


# Namespace and Service are not listed: recreating a Namespace deletes its
# contents and recreating a Service reallocates its cluster IP.
DEFAULT_TYPED_KINDS = (
    TypedBinding('', 'ServiceAccount', 'CoreV1Api', 'service_account'),
    TypedBinding('', 'ConfigMap', 'CoreV1Api', 'config_map'),
    TypedBinding('', 'Secret', 'CoreV1Api', 'secret'),
    TypedBinding('rbac.authorization.k8s.io', 'ClusterRole',
                 'RbacAuthorizationV1Api', 'cluster_role', namespaced=False),
    TypedBinding('rbac.authorization.k8s.io', 'ClusterRoleBinding',
                 'RbacAuthorizationV1Api', 'cluster_role_binding', namespaced=False),
    TypedBinding('rbac.authorization.k8s.io', 'Role', 'RbacAuthorizationV1Api', 'role'),
    TypedBinding('rbac.authorization.k8s.io', 'RoleBinding',
                 'RbacAuthorizationV1Api', 'role_binding'),
)


class TypedKindRegistry:
    """Lookup of typed bindings by (group, kind)."""

    def __init__(self, bindings: Iterable[TypedBinding] = DEFAULT_TYPED_KINDS):
        self._bindings: dict[tuple[str, str], TypedBinding] = {}
        for binding in bindings:
            self._bindings[(binding.group, binding.kind)] = binding
        logger.debug(f"Typed kinds: {', '.join(sorted(k for _, k in self._bindings))}")

    def lookup(self, group: str, kind: str) -> Optional[TypedBinding]:
        return self._bindings.get((group or '', kind))

    def __contains__(self, key: tuple[str, str]) -> bool:
        group, kind = key
        return self.lookup(group, kind) is not None

    def __len__(self) -> int:
        return len(self._bindings)
