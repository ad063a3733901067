"""Top-level WorkOrder reconciliation.

One call to WorkOrderController.sync() converges one WorkOrder:

1. Fetch it; an absent WorkOrder is already deleted and needs nothing.
2. If it is terminating, hand over to the finalizer teardown.
3. Otherwise ensure the finalizer, then apply every manifest in declared
   order. A failing manifest is recorded and the pass moves on.
4. Write one status update holding a condition per manifest (index-aligned
   with spec.manifests) and the aggregate Applied condition.
5. Raise WorkOrderSyncError if any manifest failed, so the caller requeues
   with backoff.

The controller keeps no state between calls; the caller serializes calls
for the same WorkOrder.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from workorder.applier import ResourceApplier
from workorder.clients import ConflictError, NotFoundError, ResourceMapper, WorkStore
from workorder.finalizer import DEFAULT_FINALIZER, TERMINATING, FinalizerManager, lifecycle_state
from workorder.status import build_manifest_condition, fold_status
from workorder.types import (
    ManifestCondition,
    WorkOrder,
    WorkOrderStatus,
    WorkOrderSyncError,
    decode_manifest,
    utcnow,
)

logger = logging.getLogger(__name__)


class WorkOrderController:
    """Reconciles WorkOrders against the target cluster.

    Attributes:
        store: WorkOrder storage
        applier: Applies manifests through typed or dynamic clients
        mapper: Optional resource mapper used to fill status identities
        finalizers: Lifecycle gate for apply vs. cleanup
        status_update_retries: Attempts for the status write on conflict
    """

    def __init__(
        self,
        store: WorkStore,
        applier: ResourceApplier,
        mapper: Optional[ResourceMapper] = None,
        finalizer: str = DEFAULT_FINALIZER,
        status_update_retries: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.applier = applier
        self.mapper = mapper
        self.finalizers = FinalizerManager(store, applier, finalizer)
        self.status_update_retries = max(1, status_update_retries)
        self.clock = clock

    def sync(self, namespace: str, name: str) -> Optional[WorkOrder]:
        """Reconcile one WorkOrder.

        Returns:
            The WorkOrder with its written status, or None when it was absent
            or terminating

        Raises:
            WorkOrderSyncError: If any manifest failed to apply or clean up
            ClientError: If the status or finalizer write failed
        """
        try:
            work = self.store.get(namespace, name)
        except NotFoundError:
            logger.debug(f"WorkOrder {namespace}/{name} not found, nothing to do")
            return None

        if lifecycle_state(work) == TERMINATING:
            self.finalizers.teardown(work)
            return None

        work = self.finalizers.ensure(work)

        now = self.clock()
        manifest_conditions, failures = self._apply_manifests(work, now)
        updated = self._write_status(work, manifest_conditions, now)

        if failures:
            raise WorkOrderSyncError(work.key, failures)
        logger.info(f"WorkOrder {work.key}: applied {len(manifest_conditions)} manifest(s)")
        return updated

    def _apply_manifests(
        self, work: WorkOrder, now: datetime,
    ) -> tuple[list[ManifestCondition], dict[int, str]]:
        """Apply each manifest in order, capturing per-manifest failures."""
        manifest_conditions: list[ManifestCondition] = []
        failures: dict[int, str] = {}

        for ordinal, raw in enumerate(work.manifests):
            obj = None
            error: Optional[Exception] = None
            try:
                obj = decode_manifest(raw)
                self.applier.apply(obj)
            except Exception as e:
                error = e
                failures[ordinal] = str(e) or type(e).__name__
                logger.error(f"WorkOrder {work.key}: manifest {ordinal} failed: {failures[ordinal]}")

            manifest_conditions.append(build_manifest_condition(
                ordinal, obj, error,
                previous=work.status.manifests,
                mapper=self.mapper,
                now=now,
            ))

        return manifest_conditions, failures

    def _write_status(
        self,
        work: WorkOrder,
        manifest_conditions: list[ManifestCondition],
        now: datetime,
    ) -> WorkOrder:
        """Persist the status, refetching and retrying on write conflicts.

        A retry only rewrites the same conditions while the refetched
        WorkOrder still declares the manifests that were applied and is not
        terminating. Otherwise the conflict is raised so the caller requeues
        a fresh pass.
        """
        applied_manifests = work.manifests
        attempt = 1
        while True:
            status = WorkOrderStatus(
                manifests=manifest_conditions,
                conditions=fold_status(manifest_conditions, work.status.conditions, now),
            )
            try:
                return self.store.update_status(replace(work, status=status))
            except ConflictError:
                if attempt >= self.status_update_retries:
                    raise
                logger.debug(f"Status conflict on WorkOrder {work.key}, retrying ({attempt})")
                attempt += 1
                work = self.store.get(work.namespace, work.name)
                if work.is_terminating or work.manifests != applied_manifests:
                    raise ConflictError(
                        f"WorkOrder {work.key} changed during reconcile, status not written") from None
