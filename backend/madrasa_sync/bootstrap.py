"""
Assemblage du moteur de synchronisation au démarrage de l'application.

L'identité de l'appareil est lue une seule fois ici puis passée au constructeur.
"""

import logging

from fastapi import Request

from madrasa_sync.config import settings
from madrasa_sync.database import SessionLocal, init_db
from madrasa_sync.exceptions import QueueCorruptedError
from madrasa_sync.services.device_identity import get_or_create_device_id
from madrasa_sync.services.remote_client import HttpRemoteClient
from madrasa_sync.services.sync_engine import SyncEngine
from madrasa_sync.services.sync_queue import reset_persisted_queue
from madrasa_sync.storage.sql_store import SqlStore

logger = logging.getLogger(__name__)


def build_engine() -> SyncEngine:
    """Crée le moteur à partir de la configuration. Réinitialise la file si elle est corrompue."""
    init_db()
    store = SqlStore(SessionLocal)
    device_id = get_or_create_device_id(store)
    remote = HttpRemoteClient(settings.REMOTE_BASE_URL, timeout=settings.REMOTE_TIMEOUT_SECONDS)

    try:
        return SyncEngine(store, remote, device_id, settings=settings)
    except QueueCorruptedError as exc:
        logger.error("File de synchronisation corrompue, réinitialisation de l'état local : %s", exc)
        reset_persisted_queue(store)
        return SyncEngine(store, remote, device_id, settings=settings)


def get_engine(request: Request) -> SyncEngine:
    """Dépendance FastAPI : fournit le moteur créé au démarrage."""
    return request.app.state.sync_engine
