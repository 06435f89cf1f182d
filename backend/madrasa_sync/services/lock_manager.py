"""
Verrous de saisie : une présence par séance (classe/période) et par jour, sans aller-retour serveur.

Le verrou est local et consultatif : il empêche la double saisie depuis le même appareil,
pas deux enseignants sur deux appareils (ce cas relève du ConflictResolver).
Expiration au minuit local suivant la date de la séance ; un verrou expiré est
considéré absent et supprimé paresseusement à la lecture suivante.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Optional

from pydantic import BaseModel, ValidationError

from madrasa_sync.schemas.descriptors import VALID_PRAYERS, NamazDescriptor
from madrasa_sync.schemas.lock import AttendanceLock
from madrasa_sync.storage.base import LocalStore
from madrasa_sync.storage.index import CollectionIndex

logger = logging.getLogger(__name__)

LOCKS_COLLECTION = "locks"


def next_local_midnight(day: date) -> datetime:
    """Minuit local strictement après `day` (heure murale, sans fuseau)."""
    return datetime.combine(day + timedelta(days=1), time.min)


class AttendanceLockManager:
    def __init__(self, store: LocalStore, clock: Callable[[], datetime] = datetime.now):
        self._index = CollectionIndex(store)
        self._clock = clock

    def _storage_key(self, descriptor: BaseModel) -> str:
        return f"lock/{descriptor.record_type.value}/{descriptor.canonical_key()}"

    def _read(self, storage_key: str) -> Optional[AttendanceLock]:
        raw = self._index.get(storage_key)
        if raw is None:
            return None
        try:
            return AttendanceLock.model_validate_json(raw)
        except ValidationError:
            logger.warning("Verrou illisible supprimé : %s", storage_key)
            self._index.remove(LOCKS_COLLECTION, storage_key)
            return None

    def lock(self, descriptor: BaseModel) -> AttendanceLock:
        """
        Verrouille la séance jusqu'au minuit suivant sa date.
        Reverrouiller une séance déjà verrouillée conserve l'horodatage de la première saisie.
        """
        now = self._clock()
        current = self.lock_info(descriptor)
        lock = AttendanceLock(
            key=descriptor.canonical_key(),
            record_type=descriptor.record_type,
            locked_at=current.locked_at if current else now,
            expires_at=next_local_midnight(descriptor.date),
        )
        self._index.put(
            LOCKS_COLLECTION,
            self._storage_key(descriptor),
            lock.model_dump_json().encode("utf-8"),
        )
        logger.info("Séance verrouillée jusqu'au %s : %s", lock.expires_at.isoformat(), lock.key)
        return lock

    def lock_info(self, descriptor: BaseModel) -> Optional[AttendanceLock]:
        """Verrou actif pour ce descripteur, ou None (absent ou expiré)."""
        storage_key = self._storage_key(descriptor)
        lock = self._read(storage_key)
        if lock is None:
            return None
        if not lock.is_active(self._clock()):
            self._index.remove(LOCKS_COLLECTION, storage_key)
            logger.debug("Verrou expiré supprimé : %s", lock.key)
            return None
        return lock

    def is_locked(self, descriptor: BaseModel) -> bool:
        return self.lock_info(descriptor) is not None

    def time_remaining(self, descriptor: BaseModel) -> Optional[timedelta]:
        """Durée avant déverrouillage : affichage uniquement."""
        lock = self.lock_info(descriptor)
        if lock is None:
            return None
        return lock.expires_at - self._clock()

    def purge_expired(self) -> int:
        """Supprime tous les verrous expirés (appelé au démarrage). Retourne le nombre supprimé."""
        now = self._clock()
        removed = 0
        for storage_key in self._index.members(LOCKS_COLLECTION):
            lock = self._read(storage_key)
            if lock is None:
                removed += 1
                continue
            if not lock.is_active(now):
                self._index.remove(LOCKS_COLLECTION, storage_key)
                removed += 1
        if removed:
            logger.info("%d verrous expirés supprimés", removed)
        return removed

    def locked_prayers(self, section: str, day: date) -> Dict[str, bool]:
        """Carte prière → verrouillée, pour les indicateurs de la saisie namaz."""
        return {
            prayer: self.is_locked(NamazDescriptor(section=section, date=day, prayer=prayer))
            for prayer in VALID_PRAYERS
        }
