"""
Schémas Pydantic des échanges avec le Remote Record Store et des cas de conflit.

Le serveur renvoie ses champs en camelCase (writtenAt, deviceId…) : les modèles
distants acceptent les deux formes via un alias_generator.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from madrasa_sync.schemas.descriptors import RecordType


class Resolution(str, Enum):
    USE_LOCAL = "use_local"
    USE_REMOTE = "use_remote"
    MERGE = "merge"


class RemoteRecord(BaseModel):
    """Dernière version connue côté serveur pour une clé naturelle."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    device_id: str
    recorded_at: datetime               # Horodatage client de l'appareil auteur
    written_at: Optional[datetime] = None  # Horodatage serveur
    payload: Dict[str, Any]
    version: int = 1


class DeliveryReceipt(BaseModel):
    """Accusé de réception d'une création distante."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    written_at: datetime
    device_id: str


class ConflictSide(BaseModel):
    device_id: str
    timestamp: datetime
    payload: Dict[str, Any]


class ConflictCase(BaseModel):
    """
    Conflit entre une mutation locale et une écriture distante d'un autre appareil.
    Toujours résolu : resolution n'est jamais vide, merged_payload présent si et seulement si merge.
    """
    mutation_id: str
    record_type: RecordType
    natural_key: str
    local_record: ConflictSide
    remote_record: ConflictSide
    resolution: Resolution
    rule: str   # time_separated, student_merge, fallback
    merged_payload: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def merged_payload_only_for_merge(self) -> "ConflictCase":
        if (self.resolution == Resolution.MERGE) != (self.merged_payload is not None):
            raise ValueError("merged_payload doit être présent uniquement pour une résolution merge.")
        return self
