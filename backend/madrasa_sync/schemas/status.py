"""
Schémas Pydantic exposés à l'interface : état agrégé et rapport de passe de synchronisation.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class SyncTrigger(str, Enum):
    RECONNECT = "reconnect"
    TIMER = "timer"
    MANUAL = "manual"
    SUBMIT = "submit"


class SyncStatusReport(BaseModel):
    is_online: bool
    sync_in_progress: bool
    pending: int
    synced: int
    failed: int
    conflicts: int
    total: int
    last_sync_at: Optional[datetime] = None


class SyncPassReport(BaseModel):
    """Bilan d'une passe de synchronisation (drain pass)."""
    trigger: SyncTrigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    attempted: int = 0
    synced_count: int = 0
    conflict_count: int = 0
    retried_count: int = 0    # Échecs transitoires, restent pending
    failed_count: int = 0     # Passés en error pendant cette passe
    pruned_count: int = 0
    skipped: bool = False     # Hors-ligne : aucune tentative
    coalesced: bool = False   # Une passe était déjà en cours
    errors: List[str] = []
