"""Pure comparison of discovered projects against recorded projects."""

from __future__ import annotations

from typing import Iterable, List

from ..process.supervisor import ERRORED, ONLINE, STOPPED
from ..store.models import Project, ProjectStatus
from .models import DiscoveredProject, RecordRef, ReconcileItem, SyncComparison


def status_from_supervisor(pm2_status: str) -> ProjectStatus:
    if pm2_status == ONLINE:
        return ProjectStatus.ACTIVE
    if pm2_status == STOPPED:
        return ProjectStatus.STOPPED
    if pm2_status == ERRORED:
        return ProjectStatus.FAILED
    # absent from the supervisor
    return ProjectStatus.STOPPED


def reconcile_projects(
    candidates: Iterable[DiscoveredProject],
    recorded: Iterable[Project],
    on_host: Iterable[DiscoveredProject],
) -> SyncComparison:
    """
    Classify projects into to-import, to-reconcile, orphaned and in-sync.

    ``candidates`` are the discovered projects the caller may import,
    ``recorded`` is every project in the system of record (subdomains are
    global), and ``on_host`` is everything discovered regardless of owner,
    used to decide whether a record is orphaned.
    """
    by_subdomain = {p.subdomain: p for p in recorded}
    live = {p.subdomain for p in on_host}
    comparison = SyncComparison()

    for discovered in candidates:
        record = by_subdomain.get(discovered.subdomain)
        if record is None:
            comparison.to_import.append(discovered)
            continue
        suggested = status_from_supervisor(discovered.pm2_status)
        if record.status != suggested:
            comparison.to_reconcile.append(
                ReconcileItem(
                    discovered=discovered,
                    project_id=record.id,
                    recorded_status=record.status,
                    suggested_status=suggested,
                )
            )
        else:
            comparison.in_sync.append(RecordRef(id=record.id, subdomain=record.subdomain))

    orphaned: List[RecordRef] = [
        RecordRef(id=p.id, subdomain=p.subdomain, name=p.name, status=p.status)
        for p in by_subdomain.values()
        if p.subdomain not in live
    ]
    comparison.orphaned = orphaned
    return comparison
