"""Apply desired objects to the target cluster.

Two variants share one interface:

- TypedApplier: kinds with a typed client binding. A drifted live object is
  deleted and recreated, since built-in kinds often carry immutable fields
  that reject in-place updates.
- DynamicApplier: any other kind, through the schema-less client. A drifted
  live object is replaced in place, carrying over the live resourceVersion
  so the write is a checked replace rather than a blind overwrite.

ResourceApplier picks the variant once per object from the typed-kind
registry. Client errors propagate to the caller, which attributes them to
the manifest being applied.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from workorder.clients import (
    DynamicClient,
    GroupVersionResource,
    NotFoundError,
    ResourceMapper,
    TypedClient,
)
from workorder.diff import deep_equal, is_equivalent
from workorder.registry import TypedKindRegistry
from workorder.types import split_api_version

logger = logging.getLogger(__name__)

ACTION_CREATED = 'created'
ACTION_UPDATED = 'updated'
ACTION_RECREATED = 'recreated'
ACTION_UNCHANGED = 'unchanged'

# Populated by the API server on every live object
SERVER_METADATA_FIELDS = (
    'uid',
    'resourceVersion',
    'generation',
    'creationTimestamp',
    'managedFields',
    'selfLink',
)

# Stands for the object's own name in SERVER_DEFAULTS
OBJECT_NAME = object()

# Fields the API server fills in when a manifest leaves them out, keyed by
# (group, kind). A live field is ignored only when the desired object omits
# it and the live value is the server default.
SERVER_DEFAULTS = {
    ('', 'Secret'): (
        (('type',), 'Opaque'),
    ),
    ('', 'Namespace'): (
        (('metadata', 'labels', 'kubernetes.io/metadata.name'), OBJECT_NAME),
        (('spec', 'finalizers'), ['kubernetes']),
    ),
}

_MISSING = object()


@dataclass
class ApplyResult:
    """Outcome of applying one object.

    Attributes:
        action: One of created, updated, recreated, unchanged
        mode: 'typed' or 'dynamic'
        obj: Object returned by the last write, or the live object if unchanged
    """
    action: str
    mode: str
    obj: Optional[dict] = None

    @property
    def mutated(self) -> bool:
        return self.action != ACTION_UNCHANGED


def _identity(obj: dict) -> tuple[str, str, str, str, str]:
    group, version = split_api_version(obj.get('apiVersion', ''))
    metadata = obj.get('metadata') or {}
    return group, version, obj.get('kind', ''), metadata.get('namespace', '') or '', metadata['name']


def _lookup(obj: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(obj, dict) or key not in obj:
            return _MISSING
        obj = obj[key]
    return obj


def _drop_default(obj: dict, desired: dict, path: tuple[str, ...], default: Any) -> None:
    """Remove obj's field at path if desired omits it and it holds default.

    Parent mappings left empty are removed too, unless desired has them.
    """
    if _lookup(desired, path) is not _MISSING:
        return
    if default is OBJECT_NAME:
        default = (obj.get('metadata') or {}).get('name')
    if not deep_equal(_lookup(obj, path), default):
        return
    del _lookup(obj, path[:-1])[path[-1]]
    for depth in range(len(path) - 1, 0, -1):
        parent = path[:depth]
        if _lookup(obj, parent) != {} or _lookup(desired, parent) is not _MISSING:
            break
        del _lookup(obj, parent[:-1])[parent[-1]]


def comparable(live: dict, desired: Optional[dict] = None) -> dict:
    """Copy of a live object without server-populated fields.

    Server metadata is always removed. With desired given, server defaults
    for its kind that desired does not set are removed as well.
    """
    obj = copy.deepcopy(live)
    metadata = obj.get('metadata')
    if isinstance(metadata, dict):
        for key in SERVER_METADATA_FIELDS:
            metadata.pop(key, None)
    if desired is not None:
        group, _ = split_api_version(desired.get('apiVersion', ''))
        for path, default in SERVER_DEFAULTS.get((group, desired.get('kind', '')), ()):
            _drop_default(obj, desired, path, default)
    return obj


class Applier(Protocol):
    mode: str

    def apply(self, obj: dict) -> ApplyResult:
        """Converge the live object toward obj."""

    def delete(self, obj: dict) -> bool:
        """Delete the live object for obj. Returns False if already absent."""


class TypedApplier:
    """Applies registered built-in kinds: create, no-op or delete+create."""

    mode = 'typed'

    def __init__(self, client: TypedClient):
        self.client = client

    def apply(self, obj: dict) -> ApplyResult:
        group, _, kind, namespace, name = _identity(obj)
        try:
            live = self.client.get(group, kind, namespace, name)
        except NotFoundError:
            created = self.client.create(group, kind, namespace, obj)
            return ApplyResult(ACTION_CREATED, self.mode, created)

        if is_equivalent(obj, comparable(live, obj)):
            return ApplyResult(ACTION_UNCHANGED, self.mode, live)

        logger.debug(f"{kind} {namespace}/{name} drifted, replacing")
        try:
            self.client.delete(group, kind, namespace, name)
        except NotFoundError:
            logger.debug(f"{kind} {namespace}/{name} vanished before delete")
        created = self.client.create(group, kind, namespace, obj)
        return ApplyResult(ACTION_RECREATED, self.mode, created)

    def delete(self, obj: dict) -> bool:
        group, _, kind, namespace, name = _identity(obj)
        try:
            self.client.delete(group, kind, namespace, name)
        except NotFoundError:
            return False
        return True


class DynamicApplier:
    """Applies arbitrary kinds: create, no-op or update-in-place."""

    mode = 'dynamic'

    def __init__(self, client: DynamicClient, mapper: ResourceMapper):
        self.client = client
        self.mapper = mapper

    def _gvr(self, group: str, version: str, kind: str) -> GroupVersionResource:
        return GroupVersionResource(group, version, self.mapper.map(group, kind, version))

    def apply(self, obj: dict) -> ApplyResult:
        group, version, kind, namespace, name = _identity(obj)
        gvr = self._gvr(group, version, kind)
        try:
            live = self.client.get(gvr, namespace, name)
        except NotFoundError:
            created = self.client.create(gvr, namespace, obj)
            return ApplyResult(ACTION_CREATED, self.mode, created)

        if is_equivalent(obj, comparable(live, obj)):
            return ApplyResult(ACTION_UNCHANGED, self.mode, live)

        desired = copy.deepcopy(obj)
        resource_version = (live.get('metadata') or {}).get('resourceVersion')
        if resource_version:
            desired['metadata']['resourceVersion'] = resource_version
        updated = self.client.update(gvr, namespace, desired)
        return ApplyResult(ACTION_UPDATED, self.mode, updated)

    def delete(self, obj: dict) -> bool:
        group, version, kind, namespace, name = _identity(obj)
        try:
            self.client.delete(self._gvr(group, version, kind), namespace, name)
        except NotFoundError:
            return False
        return True


class ResourceApplier:
    """Routes each object to the typed or dynamic variant.

    Attributes:
        registry: Kinds handled in typed mode
        typed: Variant for registered kinds
        dynamic: Variant for everything else
    """

    def __init__(self, registry: TypedKindRegistry, typed: Applier, dynamic: Applier):
        self.registry = registry
        self.typed = typed
        self.dynamic = dynamic

    @classmethod
    def from_clients(
        cls,
        registry: TypedKindRegistry,
        typed_client: TypedClient,
        dynamic_client: DynamicClient,
        mapper: ResourceMapper,
    ) -> 'ResourceApplier':
        return cls(registry, TypedApplier(typed_client), DynamicApplier(dynamic_client, mapper))

    def select(self, obj: dict) -> Applier:
        group, _ = split_api_version(obj.get('apiVersion', ''))
        if self.registry.lookup(group, obj.get('kind', '')) is not None:
            return self.typed
        return self.dynamic

    def apply(self, obj: dict) -> ApplyResult:
        applier = self.select(obj)
        result = applier.apply(obj)
        _, _, kind, namespace, name = _identity(obj)
        if result.mutated:
            logger.info(f"{kind} {namespace}/{name} {result.action} ({applier.mode})")
        else:
            logger.debug(f"{kind} {namespace}/{name} unchanged ({applier.mode})")
        return result

    def delete(self, obj: dict) -> bool:
        applier = self.select(obj)
        deleted = applier.delete(obj)
        _, _, kind, namespace, name = _identity(obj)
        if deleted:
            logger.info(f"{kind} {namespace}/{name} deleted ({applier.mode})")
        else:
            logger.debug(f"{kind} {namespace}/{name} already absent")
        return deleted
