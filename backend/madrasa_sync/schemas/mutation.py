"""
Schémas Pydantic des mutations en attente de synchronisation.

Une MutationRecord = une modification locale destinée au Remote Record Store.
Elle est sérialisée en JSON dans le stockage local (file persistée en un seul bloc).
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError, model_validator

from madrasa_sync.schemas.descriptors import RecordType, parse_descriptor


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"
    ERROR = "error"


# Statuts encore « actifs » : présents dans la rotation de synchronisation
ACTIVE_STATUSES = frozenset({SyncStatus.PENDING, SyncStatus.CONFLICT})


def make_mutation_id(record_type: RecordType, device_id: str, created_at: datetime) -> str:
    """Identifiant dérivé de type + appareil + horodatage (suffixe aléatoire court anti-collision)."""
    millis = int(created_at.timestamp() * 1000)
    return f"{RecordType(record_type).value}_{device_id}_{millis}_{uuid.uuid4().hex[:6]}"


class MutationRecord(BaseModel):
    id: str
    record_type: RecordType
    payload: Dict[str, Any]
    created_at: datetime           # Horloge locale de l'appareil
    device_id: str
    origin_descriptor: Dict[str, Any]  # Clé naturelle, forme JSON du descripteur
    status: SyncStatus = SyncStatus.PENDING
    retry_count: int = 0
    version: int = 1
    synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None  # Backoff après un échec transitoire

    @classmethod
    def build(
        cls,
        record_type: RecordType,
        descriptor: BaseModel,
        payload: Dict[str, Any],
        device_id: str,
        created_at: datetime,
    ) -> "MutationRecord":
        return cls(
            id=make_mutation_id(record_type, device_id, created_at),
            record_type=record_type,
            payload=payload,
            created_at=created_at,
            device_id=device_id,
            origin_descriptor=descriptor.model_dump(mode="json"),
        )

    def descriptor(self) -> BaseModel:
        return parse_descriptor(self.record_type, self.origin_descriptor)

    @property
    def natural_key(self) -> str:
        return self.descriptor().canonical_key()

    def targets_same_record(self, other: "MutationRecord") -> bool:
        """Même (record_type, clé naturelle, appareil) : critère de remplacement sur place."""
        return (
            self.record_type == other.record_type
            and self.device_id == other.device_id
            and self.natural_key == other.natural_key
        )


class QueueSnapshot(BaseModel):
    """Forme persistée de la file complète."""
    entries: List[MutationRecord]


class SubmitRequest(BaseModel):
    """Corps de la requête de saisie envoyée par l'interface locale."""
    record_type: RecordType
    descriptor: Dict[str, Any]
    payload: Dict[str, Any]

    @model_validator(mode="after")
    def descriptor_matches_type(self) -> "SubmitRequest":
        try:
            parse_descriptor(self.record_type, self.descriptor)
        except ValidationError as e:
            raise ValueError(f"Clé naturelle invalide pour {self.record_type.value} : {e.errors()}")
        return self


class SubmitResult(BaseModel):
    """Résultat d'une saisie locale (écriture optimiste + mise en file)."""
    mutation: MutationRecord
    persisted: bool         # False = mode dégradé, la mutation ne survivra pas à un rechargement
    online: bool


class RecordKeyRequest(BaseModel):
    """Désigne un enregistrement par son type et sa clé naturelle."""
    record_type: RecordType
    descriptor: Dict[str, Any]


class RecordSnapshot(BaseModel):
    """Dernier état connu d'un enregistrement, écrit localement de façon optimiste."""
    record_type: RecordType
    descriptor: Dict[str, Any]
    payload: Dict[str, Any]
    device_id: str
    recorded_at: datetime
    mutation_id: Optional[str] = None
