"""
Schémas Pydantic des verrous de saisie (une présence par séance et par jour).
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from madrasa_sync.schemas.descriptors import RecordType


class AttendanceLock(BaseModel):
    key: str
    record_type: RecordType
    locked_at: datetime
    expires_at: datetime  # Minuit local du lendemain de la date de la séance

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at


class LockCheckRequest(BaseModel):
    record_type: RecordType
    descriptor: Dict[str, Any]


class LockStatusResponse(BaseModel):
    key: str
    locked: bool
    expires_at: Optional[datetime] = None
    time_remaining_seconds: Optional[int] = None
