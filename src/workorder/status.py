"""Per-manifest identity, conditions, and the aggregate work condition.

Condition lists are never mutated in place: set_condition returns a new
list, keeping an entry's lastTransitionTime when its status is unchanged so
repeated reconciliations of a steady state leave timestamps alone.
"""

import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Optional

from workorder.clients import ClientError, ResourceMapper
from workorder.types import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    MANIFEST_APPLIED,
    WORK_APPLIED,
    ManifestCondition,
    ManifestResourceMeta,
    StatusCondition,
    split_api_version,
    utcnow,
)

logger = logging.getLogger(__name__)

REASON_MANIFEST_COMPLETE = 'AppliedManifestComplete'
MESSAGE_MANIFEST_COMPLETE = 'Apply manifest complete'
REASON_MANIFEST_FAILED = 'AppliedManifestFailed'

REASON_WORK_COMPLETE = 'AppliedWorkOrderComplete'
MESSAGE_WORK_COMPLETE = 'Apply work order complete'
REASON_WORK_FAILED = 'AppliedWorkOrderFailed'
MESSAGE_WORK_FAILED = 'Failed to apply work order'


def _object_identity(obj: Any) -> tuple[str, str, str, str]:
    """Return (apiVersion, kind, namespace, name) of a generic or typed object."""
    if isinstance(obj, Mapping):
        metadata = obj.get('metadata') or {}
        return (
            obj.get('apiVersion') or '',
            obj.get('kind') or '',
            metadata.get('namespace') or '',
            metadata.get('name') or '',
        )
    # kubernetes.client models (V1Secret, ...) expose snake_case attributes
    metadata = getattr(obj, 'metadata', None)
    return (
        getattr(obj, 'api_version', None) or '',
        getattr(obj, 'kind', None) or '',
        getattr(metadata, 'namespace', None) or '',
        getattr(metadata, 'name', None) or '',
    )


def build_resource_meta(
    ordinal: int,
    obj: Any,
    mapper: Optional[ResourceMapper] = None,
) -> ManifestResourceMeta:
    """Build the identity of a manifest's object.

    Args:
        ordinal: Position of the manifest in spec.manifests
        obj: Generic dict, kubernetes client model, or None when the
            manifest could not be decoded
        mapper: Optional mapper used to fill in the plural resource name

    Returns:
        ManifestResourceMeta stamped with ordinal. A None object yields an
        otherwise empty identity; a mapper miss leaves resource empty.
    """
    if obj is None:
        return ManifestResourceMeta(ordinal=ordinal)

    api_version, kind, namespace, name = _object_identity(obj)
    group, version = split_api_version(api_version)
    meta = ManifestResourceMeta(
        ordinal=ordinal,
        group=group,
        version=version,
        kind=kind,
        namespace=namespace,
        name=name,
    )
    if mapper is not None and kind:
        try:
            meta.resource = mapper.map(group, kind, version)
        except ClientError as e:
            logger.debug(f"No resource mapping for {kind} in group {group!r}: {e}")
    return meta


def manifest_applied_condition(error: Optional[BaseException] = None) -> StatusCondition:
    """ManifestApplied condition for one apply outcome."""
    if error is None:
        return StatusCondition(
            type=MANIFEST_APPLIED,
            status=CONDITION_TRUE,
            reason=REASON_MANIFEST_COMPLETE,
            message=MESSAGE_MANIFEST_COMPLETE,
        )
    return StatusCondition(
        type=MANIFEST_APPLIED,
        status=CONDITION_FALSE,
        reason=REASON_MANIFEST_FAILED,
        message=str(error) or type(error).__name__,
    )


def set_condition(
    conditions: Iterable[StatusCondition],
    new: StatusCondition,
    now: Optional[datetime] = None,
) -> list[StatusCondition]:
    """Merge a condition into a list, returning a new list.

    An existing entry of the same type keeps its lastTransitionTime when the
    status is unchanged; otherwise the time is set to now. Reason and message
    always take the new values.
    """
    now = now or utcnow()
    merged: list[StatusCondition] = []
    found = False
    for cond in conditions:
        if cond.type != new.type:
            merged.append(replace(cond))
            continue
        found = True
        if cond.status == new.status and cond.last_transition_time is not None:
            merged.append(replace(new, last_transition_time=cond.last_transition_time))
        else:
            merged.append(replace(new, last_transition_time=now))
    if not found:
        merged.append(replace(new, last_transition_time=now))
    return merged


def find_manifest_condition(
    ordinal: int, manifest_conditions: Iterable[ManifestCondition],
) -> Optional[ManifestCondition]:
    for cond in manifest_conditions:
        if cond.resource_meta.ordinal == ordinal:
            return cond
    return None


def build_manifest_condition(
    ordinal: int,
    obj: Any,
    error: Optional[BaseException],
    previous: Iterable[ManifestCondition] = (),
    mapper: Optional[ResourceMapper] = None,
    now: Optional[datetime] = None,
) -> ManifestCondition:
    """Build the status entry for one manifest.

    Conditions recorded for the same ordinal on the previous pass are carried
    over so an unchanged ManifestApplied keeps its transition time.
    """
    existing = find_manifest_condition(ordinal, previous)
    conditions = existing.conditions if existing is not None else []
    return ManifestCondition(
        resource_meta=build_resource_meta(ordinal, obj, mapper),
        conditions=set_condition(conditions, manifest_applied_condition(error), now),
    )


def all_in_condition(
    condition_type: str, manifest_conditions: Iterable[ManifestCondition],
) -> tuple[bool, bool]:
    """Check whether every manifest carrying condition_type has it True.

    Manifests without a condition of that type are skipped.

    Returns:
        (all_true, any_exists)
    """
    all_true = True
    exists = False
    for manifest in manifest_conditions:
        for cond in manifest.conditions:
            if cond.type != condition_type:
                continue
            exists = True
            if cond.status != CONDITION_TRUE:
                all_true = False
    return all_true and exists, exists


def fold_status(
    manifest_conditions: list[ManifestCondition],
    previous: Iterable[StatusCondition],
    now: Optional[datetime] = None,
) -> list[StatusCondition]:
    """Compute work-level conditions from per-manifest conditions.

    Applied is True only when every manifest carries a True ManifestApplied;
    a False or missing entry makes it False. With no manifests the previous
    conditions are returned unchanged.
    """
    previous = list(previous)
    if not manifest_conditions:
        return [replace(c) for c in previous]

    all_true, exists = all_in_condition(MANIFEST_APPLIED, manifest_conditions)
    every_manifest = all(m.get_condition(MANIFEST_APPLIED) is not None for m in manifest_conditions)
    if all_true and exists and every_manifest:
        cond = StatusCondition(
            type=WORK_APPLIED,
            status=CONDITION_TRUE,
            reason=REASON_WORK_COMPLETE,
            message=MESSAGE_WORK_COMPLETE,
        )
    else:
        cond = StatusCondition(
            type=WORK_APPLIED,
            status=CONDITION_FALSE,
            reason=REASON_WORK_FAILED,
            message=MESSAGE_WORK_FAILED,
        )
    return set_condition(previous, cond, now)
