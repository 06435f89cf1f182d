"""
Résolution de conflits entre une mutation locale et l'écriture distante d'un autre appareil.

Règles appliquées dans l'ordre, la première qui s'applique l'emporte :
1. Pas de divergence  : enregistrement distant absent ou écrit par le même appareil → None
2. Éditions espacées  : écart > fenêtre (5 min par défaut) → la plus récente gagne
3. Listes d'élèves    : les deux payloads portent une liste `students` → fusion par élève,
                        la saisie la plus récente l'emporte pour un élève présent des deux côtés
4. Repli              : use_local (l'action de l'enseignant présent n'est jamais écartée)

Déterministe et total : aucun hasard, aucune horloge murale, aucun cas laissé en suspens.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from madrasa_sync.schemas.conflict import ConflictCase, ConflictSide, RemoteRecord, Resolution
from madrasa_sync.schemas.mutation import MutationRecord

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(minutes=5)


def _as_utc(value: datetime) -> datetime:
    # Horodatages sans fuseau : considérés en UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _student_id(entry: Dict[str, Any]) -> Any:
    return entry.get("student_id", entry.get("id"))


def _has_student_list(payload: Dict[str, Any]) -> bool:
    return isinstance(payload.get("students"), list)


def merge_student_payloads(
    local_payload: Dict[str, Any],
    local_timestamp: datetime,
    local_device: str,
    remote_payload: Dict[str, Any],
    remote_timestamp: datetime,
    remote_device: str,
) -> Dict[str, Any]:
    """
    Union des listes d'élèves par identifiant.

    Ordre : élèves locaux d'abord, puis élèves uniquement distants dans l'ordre distant.
    Élève des deux côtés : l'entrée distante ne remplace la locale que si elle est
    strictement plus récente (égalité → local).
    """
    local_ts = _as_utc(local_timestamp)
    remote_ts = _as_utc(remote_timestamp)

    merged: List[Dict[str, Any]] = [dict(s) for s in local_payload["students"]]
    positions = {
        _student_id(s): i for i, s in enumerate(merged) if _student_id(s) is not None
    }

    for remote_student in remote_payload["students"]:
        sid = _student_id(remote_student)
        if sid is None or sid not in positions:
            if sid is not None:
                positions[sid] = len(merged)
            merged.append(dict(remote_student))
        elif remote_ts > local_ts:
            merged[positions[sid]] = dict(remote_student)

    metadata = dict(local_payload.get("metadata") or {})
    metadata.update({
        "merged_from": [local_device, remote_device],
        "merged_at": max(local_ts, remote_ts).isoformat(),
        "conflict_resolved": True,
    })

    result = dict(local_payload)
    result["students"] = merged
    result["metadata"] = metadata
    return result


class ConflictResolver:
    def __init__(self, window: timedelta = DEFAULT_WINDOW):
        self.window = window

    def resolve(
        self,
        mutation: MutationRecord,
        remote: Optional[RemoteRecord],
    ) -> Optional[ConflictCase]:
        """Retourne le ConflictCase résolu, ou None s'il n'y a pas de conflit (livraison telle quelle)."""
        if remote is None or remote.device_id == mutation.device_id:
            return None

        local_ts = _as_utc(mutation.created_at)
        remote_ts = _as_utc(remote.recorded_at)
        merged_payload = None

        if abs(local_ts - remote_ts) > self.window:
            resolution = Resolution.USE_LOCAL if local_ts > remote_ts else Resolution.USE_REMOTE
            rule = "time_separated"
        elif _has_student_list(mutation.payload) and _has_student_list(remote.payload):
            resolution = Resolution.MERGE
            rule = "student_merge"
            merged_payload = merge_student_payloads(
                mutation.payload, local_ts, mutation.device_id,
                remote.payload, remote_ts, remote.device_id,
            )
        else:
            resolution = Resolution.USE_LOCAL
            rule = "fallback"

        logger.debug(
            "Conflit %s sur %s : %s (règle %s)",
            mutation.id, mutation.natural_key, resolution.value, rule,
        )

        return ConflictCase(
            mutation_id=mutation.id,
            record_type=mutation.record_type,
            natural_key=mutation.natural_key,
            local_record=ConflictSide(
                device_id=mutation.device_id, timestamp=local_ts, payload=mutation.payload,
            ),
            remote_record=ConflictSide(
                device_id=remote.device_id, timestamp=remote_ts, payload=remote.payload,
            ),
            resolution=resolution,
            rule=rule,
            merged_payload=merged_payload,
        )
