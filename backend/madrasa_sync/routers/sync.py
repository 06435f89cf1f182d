"""
Router de la synchronisation offline → online.
Saisie locale, état de la file, synchronisation forcée et relance des échecs.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from madrasa_sync.bootstrap import get_engine
from madrasa_sync.exceptions import RecordLockedError
from madrasa_sync.schemas.conflict import ConflictCase
from madrasa_sync.schemas.descriptors import parse_descriptor
from madrasa_sync.schemas.mutation import (
    MutationRecord,
    RecordKeyRequest,
    RecordSnapshot,
    SubmitRequest,
    SubmitResult,
    SyncStatus,
)
from madrasa_sync.schemas.status import SyncPassReport, SyncStatusReport
from madrasa_sync.services.sync_engine import SyncEngine

router = APIRouter(prefix="/api/sync", tags=["Synchronisation offline"])


@router.post(
    "/mutations",
    response_model=SubmitResult,
    status_code=201,
    summary="Enregistrer une saisie (écriture locale + mise en file)",
)
def submit_mutation(data: SubmitRequest, engine: SyncEngine = Depends(get_engine)):
    """
    Enregistre localement une saisie de l'interface puis la met en file de synchronisation.

    - Présence / namaz : la séance est verrouillée jusqu'à minuit le lendemain
    - En ligne : livraison immédiate tentée ; hors-ligne : la mutation attend en file

    Retourne 409 si la séance est déjà verrouillée, 422 si la clé naturelle est invalide.
    """
    try:
        return engine.submit(data.record_type, data.descriptor, data.payload)
    except RecordLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get(
    "/mutations",
    response_model=List[MutationRecord],
    summary="Lister les mutations de la file",
)
def list_mutations(status: Optional[SyncStatus] = None, engine: SyncEngine = Depends(get_engine)):
    """Retourne les entrées de la file dans l'ordre d'insertion, filtrées par statut si fourni."""
    entries = engine.queue.all()
    if status is not None:
        entries = [e for e in entries if e.status == status]
    return entries


@router.post(
    "/mutations/{mutation_id}/retry",
    response_model=MutationRecord,
    summary="Relancer une mutation en erreur",
)
def retry_mutation(mutation_id: str, engine: SyncEngine = Depends(get_engine)):
    """
    Remet une mutation en erreur dans la rotation automatique (compteur de tentatives à zéro).

    Retourne 404 si la mutation est introuvable, 400 si elle n'est pas en erreur.
    """
    try:
        return engine.retry_failed(mutation_id)
    except ValueError as e:
        msg = str(e)
        if "introuvable" in msg:
            raise HTTPException(status_code=404, detail=msg)
        raise HTTPException(status_code=400, detail=msg)


@router.post(
    "/force",
    response_model=SyncPassReport,
    summary="Forcer une synchronisation",
)
def force_sync(engine: SyncEngine = Depends(get_engine)):
    """
    Lance une passe manuelle (backoff ignoré).
    Sans danger pendant une passe en cours : la demande est fusionnée (coalesced=true).
    """
    return engine.force_sync()


@router.get(
    "/status",
    response_model=SyncStatusReport,
    summary="État de la synchronisation",
)
def sync_status(engine: SyncEngine = Depends(get_engine)):
    """Compteurs pending / synced / failed / conflicts, état réseau et dernière synchronisation."""
    return engine.status()


@router.get(
    "/conflicts",
    response_model=List[ConflictCase],
    summary="Journal des conflits résolus",
)
def conflict_history(engine: SyncEngine = Depends(get_engine)):
    return engine.conflict_history()


@router.post(
    "/snapshots/lookup",
    response_model=RecordSnapshot,
    summary="Dernier état local d'un enregistrement",
)
def lookup_snapshot(data: RecordKeyRequest, engine: SyncEngine = Depends(get_engine)):
    """
    Retourne l'instantané local (saisie optimiste, version fusionnée ou distante adoptée).

    Retourne 404 si aucun instantané n'est conservé, 422 si la clé naturelle est invalide.
    """
    try:
        parse_descriptor(data.record_type, data.descriptor)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    snapshot = engine.get_snapshot(data.record_type, data.descriptor)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Aucun instantané local pour cet enregistrement.")
    return snapshot
