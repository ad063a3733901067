"""Finalizer-gated WorkOrder lifecycle.

A WorkOrder is either ACTIVE (no deletion marker: manifests are applied and
the finalizer is kept present) or TERMINATING (deletion marker set: applied
objects are cleaned up, then the finalizer is released so the store can
finish deleting the WorkOrder). The deletion marker is the only transition.
"""

import logging
from dataclasses import replace

from workorder.applier import ResourceApplier
from workorder.clients import WorkStore
from workorder.types import ManifestDecodeError, WorkOrder, WorkOrderSyncError, decode_manifest

logger = logging.getLogger(__name__)

ACTIVE = 'active'
TERMINATING = 'terminating'

DEFAULT_FINALIZER = 'work.homestak.dev/cleanup'


def lifecycle_state(work: WorkOrder) -> str:
    return TERMINATING if work.is_terminating else ACTIVE


class FinalizerManager:
    """Adds and releases the cleanup finalizer on WorkOrders."""

    def __init__(self, store: WorkStore, applier: ResourceApplier, finalizer: str = DEFAULT_FINALIZER):
        self.store = store
        self.applier = applier
        self.finalizer = finalizer

    def has_finalizer(self, work: WorkOrder) -> bool:
        return self.finalizer in work.finalizers

    def ensure(self, work: WorkOrder) -> WorkOrder:
        """Make sure the finalizer is present, persisting it if added.

        Returns:
            The WorkOrder as stored (unchanged input if already present)
        """
        if self.has_finalizer(work):
            return work
        logger.debug(f"Adding finalizer {self.finalizer} to WorkOrder {work.key}")
        return self.store.update(replace(work, finalizers=work.finalizers + [self.finalizer]))

    def teardown(self, work: WorkOrder) -> None:
        """Delete applied objects, then release the finalizer.

        Manifests are removed in reverse declared order. Every manifest is
        attempted even after a failure; if any deletion failed the finalizer
        is kept so the next invocation retries.

        Raises:
            WorkOrderSyncError: If any manifest's object could not be deleted
        """
        if not self.has_finalizer(work):
            logger.debug(f"WorkOrder {work.key} is terminating without our finalizer")
            return

        logger.info(f"Cleaning up {len(work.manifests)} manifest(s) of WorkOrder {work.key}")
        failures: dict[int, str] = {}
        for ordinal in reversed(range(len(work.manifests))):
            try:
                obj = decode_manifest(work.manifests[ordinal])
            except ManifestDecodeError as e:
                logger.warning(f"Skipping cleanup of manifest {ordinal}: {e}")
                continue
            try:
                self.applier.delete(obj)
            except Exception as e:
                logger.error(f"Cleanup failed for manifest {ordinal} of {work.key}: {e}")
                failures[ordinal] = str(e) or type(e).__name__

        if failures:
            raise WorkOrderSyncError(work.key, failures, phase='cleanup')

        remaining = [f for f in work.finalizers if f != self.finalizer]
        self.store.update(replace(work, finalizers=remaining))
        logger.info(f"Released finalizer on WorkOrder {work.key}")
