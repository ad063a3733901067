"""Data model for WorkOrders and their status.

WorkOrders are stored as Kubernetes-style custom objects with camelCase
keys. These dataclasses mirror the fields the reconciler reads and writes;
anything else on the stored object is carried through untouched in `raw`.
"""

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import yaml

# Condition status values
CONDITION_TRUE = 'True'
CONDITION_FALSE = 'False'
CONDITION_UNKNOWN = 'Unknown'

# Condition types
MANIFEST_APPLIED = 'ManifestApplied'
WORK_APPLIED = 'Applied'

TIME_FORMAT = '%Y-%m-%dT%H:%M:%SZ'
_RFC3339 = re.compile(
    r'^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})?$')


class ManifestDecodeError(Exception):
    """Manifest payload could not be decoded into an object."""


def utcnow() -> datetime:
    """Current time truncated to whole seconds (the stored precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime(TIME_FORMAT)


def parse_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Accepts 'Z' or a numeric offset and fractional seconds of any length;
    a timestamp without an offset is taken as UTC.
    """
    if not value:
        return None
    match = _RFC3339.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid RFC 3339 timestamp: {value!r}")
    date, clock, fraction, offset = match.groups()
    micros = (fraction or '').ljust(6, '0')[:6]
    if not offset or offset in ('Z', 'z'):
        offset = '+00:00'
    return datetime.fromisoformat(f'{date}T{clock}.{micros}{offset}').astimezone(timezone.utc)


def split_api_version(api_version: str) -> tuple[str, str]:
    """Split 'apps/v1' into ('apps', 'v1'); core 'v1' yields ('', 'v1')."""
    if '/' in api_version:
        group, version = api_version.split('/', 1)
        return group, version
    return '', api_version


def decode_manifest(raw: Any) -> dict:
    """Decode a raw manifest payload into a generic object.

    Accepts an already-structured mapping or a JSON/YAML document as str or
    bytes. The result is a deep copy so callers may mutate it freely.

    Raises:
        ManifestDecodeError: If the payload is not a single object with
            apiVersion, kind and metadata.name
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8')
    if isinstance(raw, str):
        try:
            raw = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ManifestDecodeError(f"Invalid manifest payload: {e}") from e

    if not isinstance(raw, dict):
        raise ManifestDecodeError(
            f"Manifest must be an object, got {type(raw).__name__}")

    obj = copy.deepcopy(raw)
    for key in ('apiVersion', 'kind'):
        if not isinstance(obj.get(key), str) or not obj[key]:
            raise ManifestDecodeError(f"Manifest is missing '{key}'")
    metadata = obj.get('metadata')
    if not isinstance(metadata, dict) or not metadata.get('name'):
        raise ManifestDecodeError("Manifest is missing 'metadata.name'")
    return obj


@dataclass
class StatusCondition:
    """A single observed condition.

    Attributes:
        type: Condition type (e.g. ManifestApplied, Applied)
        status: 'True', 'False' or 'Unknown'
        reason: CamelCase machine-readable reason
        message: Human-readable detail
        last_transition_time: When status last changed for this type
    """
    type: str
    status: str = CONDITION_UNKNOWN
    reason: str = ''
    message: str = ''
    last_transition_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'type': self.type,
            'status': self.status,
            'reason': self.reason,
            'message': self.message,
        }
        if self.last_transition_time is not None:
            d['lastTransitionTime'] = format_time(self.last_transition_time)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'StatusCondition':
        return cls(
            type=data['type'],
            status=data.get('status', CONDITION_UNKNOWN),
            reason=data.get('reason', ''),
            message=data.get('message', ''),
            last_transition_time=parse_time(data.get('lastTransitionTime')),
        )


@dataclass
class ManifestResourceMeta:
    """Identity of a manifest's target object, joined to spec.manifests by ordinal."""
    ordinal: int = 0
    group: str = ''
    version: str = ''
    kind: str = ''
    resource: str = ''
    namespace: str = ''
    name: str = ''

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'ordinal': self.ordinal}
        for key in ('group', 'version', 'kind', 'resource', 'namespace', 'name'):
            value = getattr(self, key)
            if value:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'ManifestResourceMeta':
        return cls(
            ordinal=data.get('ordinal', 0),
            group=data.get('group', ''),
            version=data.get('version', ''),
            kind=data.get('kind', ''),
            resource=data.get('resource', ''),
            namespace=data.get('namespace', ''),
            name=data.get('name', ''),
        )


@dataclass
class ManifestCondition:
    """Per-manifest status entry."""
    resource_meta: ManifestResourceMeta
    conditions: list[StatusCondition] = field(default_factory=list)

    def get_condition(self, condition_type: str) -> Optional[StatusCondition]:
        for cond in self.conditions:
            if cond.type == condition_type:
                return cond
        return None

    def to_dict(self) -> dict:
        return {
            'resourceMeta': self.resource_meta.to_dict(),
            'conditions': [c.to_dict() for c in self.conditions],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ManifestCondition':
        return cls(
            resource_meta=ManifestResourceMeta.from_dict(data.get('resourceMeta', {})),
            conditions=[StatusCondition.from_dict(c) for c in data.get('conditions') or []],
        )


@dataclass
class WorkOrderStatus:
    """Aggregate status: manifests is index-aligned with spec.manifests."""
    manifests: list[ManifestCondition] = field(default_factory=list)
    conditions: list[StatusCondition] = field(default_factory=list)

    def get_condition(self, condition_type: str) -> Optional[StatusCondition]:
        for cond in self.conditions:
            if cond.type == condition_type:
                return cond
        return None

    def to_dict(self) -> dict:
        return {
            'manifests': [m.to_dict() for m in self.manifests],
            'conditions': [c.to_dict() for c in self.conditions],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'WorkOrderStatus':
        data = data or {}
        return cls(
            manifests=[ManifestCondition.from_dict(m) for m in data.get('manifests') or []],
            conditions=[StatusCondition.from_dict(c) for c in data.get('conditions') or []],
        )


@dataclass
class WorkOrder:
    """The reconciled unit: an ordered bundle of manifests plus status.

    Attributes:
        name: WorkOrder name
        namespace: Namespace the WorkOrder lives in
        manifests: Raw manifest payloads in declared order
        finalizers: Tokens blocking physical deletion
        deletion_timestamp: Set once deletion has been requested
        resource_version: Store version used for optimistic concurrency
        status: Last written status
        raw: The full stored object, preserved across round trips
    """
    name: str
    namespace: str = ''
    manifests: list[Any] = field(default_factory=list)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None
    resource_version: str = ''
    status: WorkOrderStatus = field(default_factory=WorkOrderStatus)
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def key(self) -> str:
        return f'{self.namespace}/{self.name}' if self.namespace else self.name

    @property
    def is_terminating(self) -> bool:
        return self.deletion_timestamp is not None

    def to_dict(self) -> dict:
        d = copy.deepcopy(self.raw)
        metadata = d.setdefault('metadata', {})
        metadata['name'] = self.name
        if self.namespace:
            metadata['namespace'] = self.namespace
        if self.finalizers:
            metadata['finalizers'] = list(self.finalizers)
        else:
            metadata.pop('finalizers', None)
        if self.deletion_timestamp is not None:
            metadata['deletionTimestamp'] = format_time(self.deletion_timestamp)
        if self.resource_version:
            metadata['resourceVersion'] = self.resource_version
        d.setdefault('spec', {})['manifests'] = copy.deepcopy(self.manifests)
        d['status'] = self.status.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'WorkOrder':
        metadata = data.get('metadata') or {}
        spec = data.get('spec') or {}
        return cls(
            name=metadata['name'],
            namespace=metadata.get('namespace', ''),
            manifests=list(spec.get('manifests') or []),
            finalizers=list(metadata.get('finalizers') or []),
            deletion_timestamp=parse_time(metadata.get('deletionTimestamp')),
            resource_version=str(metadata.get('resourceVersion') or ''),
            status=WorkOrderStatus.from_dict(data.get('status')),
            raw=copy.deepcopy(data),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class WorkOrderSyncError(Exception):
    """One or more manifests of a WorkOrder failed to converge.

    Attributes:
        key: namespace/name of the WorkOrder
        failures: Error message per manifest ordinal
        phase: 'apply' or 'cleanup'
    """

    def __init__(self, key: str, failures: dict[int, str], phase: str = 'apply'):
        self.key = key
        self.failures = dict(failures)
        self.phase = phase
        detail = '; '.join(f'[{ordinal}] {msg}' for ordinal, msg in sorted(self.failures.items()))
        super().__init__(
            f"WorkOrder {key}: {phase} failed for {len(self.failures)} manifest(s): {detail}")
