"""
Identité stable de l'appareil.
Générée une seule fois au premier démarrage puis persistée dans le stockage local.
"""

import logging
import secrets
import string
import time

from madrasa_sync.storage.base import LocalStore

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"
_ALPHABET = string.ascii_lowercase + string.digits


def get_or_create_device_id(store: LocalStore) -> str:
    """Retourne l'identifiant persisté, ou en crée un (device_<epoch_ms>_<9 caractères>)."""
    raw = store.get(DEVICE_ID_KEY)
    if raw:
        return raw.decode("utf-8")

    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    device_id = f"device_{int(time.time() * 1000)}_{suffix}"
    store.set(DEVICE_ID_KEY, device_id.encode("utf-8"))
    logger.info("Nouvel identifiant d'appareil créé : %s", device_id)
    return device_id
