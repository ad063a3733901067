"""Collaborator interfaces and their Kubernetes implementations.

The reconciler only talks to these protocols:

- WorkStore: reads WorkOrders and writes them back (metadata and status)
- TypedClient: get/create/update/delete for kinds in the typed registry
- DynamicClient: get/create/update/delete for any (group, version, resource)
- ResourceMapper: resolves (group, kind) to a plural resource name

The Kubernetes* classes adapt the official `kubernetes` client library to
those protocols. Every API call carries the configured request timeout.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from kubernetes import client, dynamic
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import exceptions as dynamic_exceptions

from workorder.registry import TypedBinding, TypedKindRegistry
from workorder.types import WorkOrder

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """A cluster API call failed."""


class NotFoundError(ClientError):
    """Requested object or resource type does not exist."""


class ConflictError(ClientError):
    """Write was rejected because the object changed underneath us."""


@dataclass(frozen=True)
class GroupVersionResource:
    group: str
    version: str
    resource: str

    def __str__(self) -> str:
        if self.group:
            return f'{self.resource}.{self.version}.{self.group}'
        return f'{self.resource}.{self.version}'


@runtime_checkable
class WorkStore(Protocol):
    """Storage for WorkOrders."""

    def get(self, namespace: str, name: str) -> WorkOrder:
        """Fetch a WorkOrder. Raises NotFoundError if absent."""

    def update(self, work: WorkOrder) -> WorkOrder:
        """Write metadata/spec changes (finalizers). Raises ConflictError."""

    def update_status(self, work: WorkOrder) -> WorkOrder:
        """Write the status subresource. Raises ConflictError."""


@runtime_checkable
class TypedClient(Protocol):
    """Client bound to the schemas of registered built-in kinds."""

    def get(self, group: str, kind: str, namespace: str, name: str) -> dict:
        """Fetch a live object. Raises NotFoundError if absent."""

    def create(self, group: str, kind: str, namespace: str, obj: dict) -> dict:
        """Create an object."""

    def update(self, group: str, kind: str, namespace: str, obj: dict) -> dict:
        """Replace an object."""

    def delete(self, group: str, kind: str, namespace: str, name: str) -> None:
        """Delete an object. Raises NotFoundError if absent."""


@runtime_checkable
class DynamicClient(Protocol):
    """Schema-less client addressing objects by group/version/resource."""

    def get(self, gvr: GroupVersionResource, namespace: str, name: str) -> dict:
        """Fetch a live object. Raises NotFoundError if absent."""

    def create(self, gvr: GroupVersionResource, namespace: str, obj: dict) -> dict:
        """Create an object."""

    def update(self, gvr: GroupVersionResource, namespace: str, obj: dict) -> dict:
        """Replace an object; obj must carry metadata.resourceVersion."""

    def delete(self, gvr: GroupVersionResource, namespace: str, name: str) -> None:
        """Delete an object. Raises NotFoundError if absent."""


@runtime_checkable
class ResourceMapper(Protocol):
    """Resolves a kind to its plural resource name."""

    def map(self, group: str, kind: str, version: str = '') -> str:
        """Return the resource name. Raises NotFoundError on a miss."""


def translate_api_exception(e: ApiException) -> ClientError:
    """Map an ApiException to the collaborator error taxonomy."""
    message = f"{e.status} {e.reason}".strip()
    if e.status == 404:
        return NotFoundError(message)
    if e.status == 409:
        return ConflictError(message)
    return ClientError(message)


class KubernetesWorkStore:
    """WorkStore backed by a namespaced custom resource."""

    def __init__(
        self,
        api_client: client.ApiClient,
        group: str,
        version: str,
        plural: str,
        request_timeout: Optional[float] = None,
    ):
        self._api = client.CustomObjectsApi(api_client)
        self.group = group
        self.version = version
        self.plural = plural
        self.request_timeout = request_timeout

    def _call(self, method: str, **kwargs: Any) -> WorkOrder:
        try:
            data = getattr(self._api, method)(
                self.group, self.version, plural=self.plural,
                _request_timeout=self.request_timeout, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e) from e
        try:
            return WorkOrder.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ClientError(f"Malformed WorkOrder from {method}: {e}") from e

    def get(self, namespace: str, name: str) -> WorkOrder:
        return self._call('get_namespaced_custom_object', namespace=namespace, name=name)

    def update(self, work: WorkOrder) -> WorkOrder:
        logger.debug(f"Updating WorkOrder {work.key}")
        return self._call(
            'replace_namespaced_custom_object',
            namespace=work.namespace, name=work.name, body=work.to_dict())

    def update_status(self, work: WorkOrder) -> WorkOrder:
        logger.debug(f"Updating status of WorkOrder {work.key}")
        return self._call(
            'replace_namespaced_custom_object_status',
            namespace=work.namespace, name=work.name, body=work.to_dict())


class KubernetesTypedClient:
    """TypedClient calling the generated per-kind API methods.

    Methods are resolved from the registry binding, e.g. a Secret binding
    calls CoreV1Api.read_namespaced_secret / create_namespaced_secret.
    Returned model objects are serialized back to plain dicts.
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        registry: TypedKindRegistry,
        request_timeout: Optional[float] = None,
    ):
        self._api_client = api_client
        self._registry = registry
        self._apis: dict[str, Any] = {}
        self.request_timeout = request_timeout

    def _binding(self, group: str, kind: str) -> TypedBinding:
        binding = self._registry.lookup(group, kind)
        if binding is None:
            raise ClientError(f"No typed binding for kind {kind!r} in group {group!r}")
        return binding

    def _api(self, binding: TypedBinding) -> Any:
        if binding.api not in self._apis:
            self._apis[binding.api] = getattr(client, binding.api)(self._api_client)
        return self._apis[binding.api]

    def _invoke(self, binding: TypedBinding, verb: str, namespace: str, **kwargs: Any) -> Any:
        method = getattr(self._api(binding), binding.method(verb))
        if binding.namespaced:
            kwargs['namespace'] = namespace
        try:
            return method(_request_timeout=self.request_timeout, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e) from e

    def _to_dict(self, binding: TypedBinding, model: Any) -> dict:
        data = self._api_client.sanitize_for_serialization(model)
        # read_* responses do not always populate TypeMeta
        if not data.get('kind'):
            data['kind'] = binding.kind
        if not data.get('apiVersion'):
            data['apiVersion'] = binding.api_version
        return data

    def get(self, group: str, kind: str, namespace: str, name: str) -> dict:
        binding = self._binding(group, kind)
        return self._to_dict(binding, self._invoke(binding, 'read', namespace, name=name))

    def create(self, group: str, kind: str, namespace: str, obj: dict) -> dict:
        binding = self._binding(group, kind)
        return self._to_dict(binding, self._invoke(binding, 'create', namespace, body=obj))

    def update(self, group: str, kind: str, namespace: str, obj: dict) -> dict:
        binding = self._binding(group, kind)
        name = obj['metadata']['name']
        return self._to_dict(
            binding, self._invoke(binding, 'replace', namespace, name=name, body=obj))

    def delete(self, group: str, kind: str, namespace: str, name: str) -> None:
        binding = self._binding(group, kind)
        self._invoke(binding, 'delete', namespace, name=name)


class KubernetesDynamicClient:
    """DynamicClient over kubernetes.dynamic with discovery-backed resources."""

    def __init__(self, dynamic_client: dynamic.DynamicClient, request_timeout: Optional[float] = None):
        self._client = dynamic_client
        self.request_timeout = request_timeout

    def _resource(self, gvr: GroupVersionResource) -> Any:
        try:
            return self._client.resources.get(
                group=gvr.group, api_version=gvr.version, name=gvr.resource)
        except dynamic_exceptions.ResourceNotFoundError as e:
            raise NotFoundError(f"Resource type {gvr} not found") from e

    def _call(self, gvr: GroupVersionResource, verb: str, **kwargs: Any) -> Any:
        resource = self._resource(gvr)
        if resource.namespaced and not kwargs.get('namespace'):
            raise ClientError(f"Namespace required for namespaced resource {gvr}")
        if not resource.namespaced:
            kwargs.pop('namespace', None)
        try:
            return getattr(resource, verb)(_request_timeout=self.request_timeout, **kwargs)
        except dynamic_exceptions.NotFoundError as e:
            raise NotFoundError(f"{gvr} {kwargs.get('name', '')} not found") from e
        except dynamic_exceptions.ConflictError as e:
            raise ConflictError(str(e.summary())) from e
        except dynamic_exceptions.DynamicApiError as e:
            raise ClientError(str(e.summary())) from e

    def get(self, gvr: GroupVersionResource, namespace: str, name: str) -> dict:
        return self._call(gvr, 'get', name=name, namespace=namespace).to_dict()

    def create(self, gvr: GroupVersionResource, namespace: str, obj: dict) -> dict:
        return self._call(gvr, 'create', body=obj, namespace=namespace).to_dict()

    def update(self, gvr: GroupVersionResource, namespace: str, obj: dict) -> dict:
        return self._call(gvr, 'replace', body=obj, namespace=namespace).to_dict()

    def delete(self, gvr: GroupVersionResource, namespace: str, name: str) -> None:
        self._call(gvr, 'delete', name=name, namespace=namespace)


class DiscoveryMapper:
    """ResourceMapper using the API server's discovery documents."""

    def __init__(self, dynamic_client: dynamic.DynamicClient):
        self._client = dynamic_client

    def map(self, group: str, kind: str, version: str = '') -> str:
        query: dict[str, str] = {'group': group, 'kind': kind}
        if version:
            query['api_version'] = version
        try:
            resource = self._client.resources.get(**query)
        except dynamic_exceptions.ResourceNotFoundError as e:
            raise NotFoundError(f"No resource for kind {kind!r} in group {group!r}") from e
        except dynamic_exceptions.ResourceNotUniqueError:
            # Several versions serve the kind; the plural name is shared
            resource = self._client.resources.search(**query)[0]
        return resource.name
