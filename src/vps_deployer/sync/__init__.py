"""Rebuild the system of record from the live host."""

from .discovery import HostDiscovery, partition_by_owner
from .importer import ProjectImporter
from .models import (
    DiscoveredProject,
    DiscoveryResult,
    ImportResult,
    ReconcileItem,
    ReconcileResult,
    RecordRef,
    SyncComparison,
    SyncResult,
)
from .reconciler import reconcile_projects, status_from_supervisor
from .service import SyncService

__all__ = [
    "DiscoveredProject",
    "DiscoveryResult",
    "HostDiscovery",
    "ImportResult",
    "ProjectImporter",
    "ReconcileItem",
    "ReconcileResult",
    "RecordRef",
    "SyncComparison",
    "SyncResult",
    "SyncService",
    "partition_by_owner",
    "reconcile_projects",
    "status_from_supervisor",
]
