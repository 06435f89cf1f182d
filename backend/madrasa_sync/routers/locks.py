"""
Router des verrous de saisie (une présence par séance et par jour).
Consulté par l'interface avant d'ouvrir l'écran de saisie.
"""

import datetime as dt
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from madrasa_sync.bootstrap import get_engine
from madrasa_sync.schemas.descriptors import LOCKABLE_TYPES, parse_descriptor
from madrasa_sync.schemas.lock import LockCheckRequest, LockStatusResponse
from madrasa_sync.services.sync_engine import SyncEngine

router = APIRouter(prefix="/api/locks", tags=["Verrous de saisie"])


@router.post(
    "/check",
    response_model=LockStatusResponse,
    summary="Vérifier si une séance est verrouillée",
)
def check_lock(data: LockCheckRequest, engine: SyncEngine = Depends(get_engine)):
    """
    Indique si une séance (présence ou prière) a déjà été saisie aujourd'hui sur cet appareil.

    Retourne 400 pour un type non verrouillable, 422 si la clé naturelle est invalide.
    """
    if data.record_type not in LOCKABLE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Le type {data.record_type.value} n'est pas soumis au verrou de saisie.",
        )
    try:
        descriptor = parse_descriptor(data.record_type, data.descriptor)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    lock = engine.locks.lock_info(descriptor)
    if lock is None:
        return LockStatusResponse(key=descriptor.canonical_key(), locked=False)

    remaining = engine.locks.time_remaining(descriptor)
    return LockStatusResponse(
        key=lock.key,
        locked=True,
        expires_at=lock.expires_at,
        time_remaining_seconds=int(remaining.total_seconds()) if remaining is not None else None,
    )


@router.get(
    "/prayers",
    response_model=Dict[str, bool],
    summary="Prières déjà saisies pour une section",
)
def locked_prayers(section: str, date: dt.date, engine: SyncEngine = Depends(get_engine)):
    """Carte prière → verrouillée, pour griser les prières déjà saisies sur cet appareil."""
    return engine.locks.locked_prayers(section, date)
