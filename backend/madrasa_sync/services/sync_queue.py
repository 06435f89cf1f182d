"""
File de synchronisation : zone d'attente durable et ordonnée des mutations locales.

Règles :
- Une seule entrée active (pending/conflict) par (type, clé naturelle, appareil) :
  une nouvelle saisie sur la même cible remplace l'entrée sur place (version + 1)
- La file complète est persistée à chaque modification (un seul bloc JSON)
- Un échec d'écriture locale n'est pas fatal : warning + mode dégradé (file en mémoire)
- Une file persistée illisible est fatale (QueueCorruptedError) : l'appelant réinitialise
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import ValidationError

from madrasa_sync.exceptions import QueueCorruptedError, StorageError
from madrasa_sync.schemas.mutation import (
    ACTIVE_STATUSES,
    MutationRecord,
    QueueSnapshot,
    SyncStatus,
)
from madrasa_sync.storage.base import LocalStore

logger = logging.getLogger(__name__)

QUEUE_KEY = "sync_queue"


def reset_persisted_queue(store: LocalStore) -> None:
    """Efface la file persistée (récupération après QueueCorruptedError)."""
    store.delete(QUEUE_KEY)
    logger.warning("File de synchronisation persistée effacée.")


class SyncQueue:
    def __init__(
        self,
        store: LocalStore,
        retry_ceiling: int = 3,
        retention: timedelta = timedelta(hours=24),
        backoff_seconds: int = 30,
    ):
        self._store = store
        self.retry_ceiling = retry_ceiling
        self.retention = retention
        self.backoff_seconds = backoff_seconds
        self._entries: List[MutationRecord] = []
        self._lock = threading.RLock()
        self.persisted = True
        self.last_storage_error: Optional[str] = None
        self.load()

    # ------------------------------------------------------------
    # Persistance
    # ------------------------------------------------------------

    def load(self) -> None:
        """Relit la file depuis le stockage local. Lève QueueCorruptedError si illisible."""
        with self._lock:
            try:
                raw = self._store.get(QUEUE_KEY)
            except StorageError as exc:
                raise QueueCorruptedError(f"Lecture de la file impossible : {exc}") from exc
            if raw is None:
                self._entries = []
                return
            try:
                self._entries = QueueSnapshot.model_validate_json(raw).entries
            except ValidationError as exc:
                raise QueueCorruptedError(f"File de synchronisation corrompue : {exc}") from exc
            logger.debug("File rechargée : %d entrées", len(self._entries))

    def _persist(self) -> bool:
        data = QueueSnapshot(entries=self._entries).model_dump_json().encode("utf-8")
        try:
            self._store.set(QUEUE_KEY, data)
        except StorageError as exc:
            # Mode dégradé accepté : la file reste en mémoire pour la session courante
            logger.warning("Persistance de la file impossible, conservée en mémoire : %s", exc)
            self.persisted = False
            self.last_storage_error = str(exc)
            return False
        self.persisted = True
        self.last_storage_error = None
        return True

    # ------------------------------------------------------------
    # Opérations
    # ------------------------------------------------------------

    def enqueue(self, mutation: MutationRecord) -> MutationRecord:
        """
        Ajoute une mutation, ou remplace sur place l'entrée active de même cible.

        En cas de remplacement : même id et même position dans la file,
        version incrémentée, compteur de tentatives remis à zéro.
        """
        with self._lock:
            for index, existing in enumerate(self._entries):
                if existing.status in ACTIVE_STATUSES and existing.targets_same_record(mutation):
                    replacement = mutation.model_copy(update={
                        "id": existing.id,
                        "version": existing.version + 1,
                        "status": SyncStatus.PENDING,
                        "retry_count": 0,
                        "last_error": None,
                        "next_attempt_at": None,
                        "synced_at": None,
                    })
                    self._entries[index] = replacement
                    logger.debug(
                        "Mutation %s remplacée sur place (version %d)",
                        existing.id, replacement.version,
                    )
                    self._persist()
                    return replacement

            self._entries.append(mutation)
            logger.debug("Mutation %s ajoutée (%s)", mutation.id, mutation.record_type.value)
            self._persist()
            return mutation

    def dequeue_synced(self, now: Optional[datetime] = None) -> int:
        """Supprime les entrées synced plus anciennes que la fenêtre de rétention. Retourne le nombre supprimé."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.retention
        with self._lock:
            kept = [
                e for e in self._entries
                if not (e.status == SyncStatus.SYNCED and (e.synced_at or e.created_at) < cutoff)
            ]
            removed = len(self._entries) - len(kept)
            if removed:
                self._entries = kept
                self._persist()
                logger.info("%d mutations synchronisées purgées de la file", removed)
            return removed

    def list_pending(self) -> List[MutationRecord]:
        """Entrées pending ou conflict, dans l'ordre d'insertion (ordre de rejeu FIFO)."""
        with self._lock:
            return [e for e in self._entries if e.status in ACTIVE_STATUSES]

    def mark_status(
        self,
        mutation_id: str,
        status: SyncStatus,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Optional[MutationRecord]:
        """
        Transition de statut idempotente.

        Le passage en error n'est autorisé qu'une fois le plafond de tentatives atteint.
        Si expected_version est fourni et que l'entrée a été remplacée entre-temps
        (nouvelle saisie), la transition est ignorée et None est retourné.
        """
        status = SyncStatus(status)
        with self._lock:
            entry = self._require(mutation_id)
            if expected_version is not None and entry.version != expected_version:
                logger.debug(
                    "Mutation %s remplacée (v%d → v%d), transition %s ignorée",
                    mutation_id, expected_version, entry.version, status.value,
                )
                return None
            if entry.status == status:
                return entry
            if status == SyncStatus.ERROR and entry.retry_count < self.retry_ceiling:
                raise ValueError(
                    f"Passage en erreur refusé : {entry.retry_count}/{self.retry_ceiling} tentatives."
                )

            entry.status = status
            if status == SyncStatus.SYNCED:
                entry.synced_at = now or datetime.now(timezone.utc)
                entry.last_error = None
                entry.next_attempt_at = None
            self._persist()
            return entry

    def record_failure(
        self,
        mutation_id: str,
        message: str,
        permanent: bool = False,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Optional[MutationRecord]:
        """
        Enregistre un échec de livraison.

        - Transitoire : retry_count + 1, backoff exponentiel, l'entrée reste active
        - Permanent (4xx) : retry_count porté au plafond, passage immédiat en error
        - Plafond atteint : passage en error, sortie de la rotation automatique
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            entry = self._require(mutation_id)
            if expected_version is not None and entry.version != expected_version:
                return None

            entry.retry_count += 1
            entry.last_error = message
            if permanent:
                entry.retry_count = max(entry.retry_count, self.retry_ceiling)

            if entry.retry_count >= self.retry_ceiling:
                entry.status = SyncStatus.ERROR
                entry.next_attempt_at = None
                logger.warning(
                    "Mutation %s en erreur après %d tentatives : %s",
                    entry.id, entry.retry_count, message,
                )
            else:
                delay = self.backoff_seconds * (2 ** (entry.retry_count - 1))
                entry.next_attempt_at = now + timedelta(seconds=delay)
            self._persist()
            return entry

    def requeue(self, mutation_id: str) -> MutationRecord:
        """Relance manuelle d'une entrée en erreur : pending, compteur remis à zéro."""
        with self._lock:
            entry = self._require(mutation_id)
            if entry.status != SyncStatus.ERROR:
                raise ValueError(f"La mutation {mutation_id} n'est pas en erreur.")
            for other in self._entries:
                if other is not entry and other.status in ACTIVE_STATUSES and other.targets_same_record(entry):
                    raise ValueError(
                        f"Une modification plus récente de la même cible est déjà en attente ({other.id})."
                    )
            entry.status = SyncStatus.PENDING
            entry.retry_count = 0
            entry.last_error = None
            entry.next_attempt_at = None
            self._persist()
            logger.info("Mutation %s relancée manuellement", mutation_id)
            return entry

    def is_due(self, entry: MutationRecord, now: datetime) -> bool:
        return entry.next_attempt_at is None or entry.next_attempt_at <= now

    def get(self, mutation_id: str) -> Optional[MutationRecord]:
        with self._lock:
            return next((e for e in self._entries if e.id == mutation_id), None)

    def all(self) -> List[MutationRecord]:
        with self._lock:
            return list(self._entries)

    def reset(self) -> None:
        with self._lock:
            self._entries = []
            self._persist()

    def _require(self, mutation_id: str) -> MutationRecord:
        entry = self.get(mutation_id)
        if entry is None:
            raise ValueError(f"Mutation {mutation_id} introuvable.")
        return entry
