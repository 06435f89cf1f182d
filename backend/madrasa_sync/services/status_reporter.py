"""
Agrégation en lecture seule de la file pour l'interface (compteurs par statut).
Aucun effet de bord, aucun cache : recalculé à chaque appel.
"""

from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

from madrasa_sync.schemas.mutation import MutationRecord, SyncStatus
from madrasa_sync.schemas.status import SyncStatusReport


def build_status_report(
    entries: Iterable[MutationRecord],
    is_online: bool,
    sync_in_progress: bool = False,
    last_sync_at: Optional[datetime] = None,
) -> SyncStatusReport:
    counts = Counter(e.status for e in entries)
    return SyncStatusReport(
        is_online=is_online,
        sync_in_progress=sync_in_progress,
        pending=counts[SyncStatus.PENDING],
        synced=counts[SyncStatus.SYNCED],
        failed=counts[SyncStatus.ERROR],
        conflicts=counts[SyncStatus.CONFLICT],
        total=sum(counts.values()),
        last_sync_at=last_sync_at,
    )
