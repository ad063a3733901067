"""WorkOrder reconciliation against a target cluster.

Applies the ordered manifests of a WorkOrder to the target cluster, records
per-manifest and aggregate conditions on the WorkOrder status, and drives
cleanup of applied objects through a finalizer when the WorkOrder is deleted.
"""
