"""
Canal de notification vers l'interface : événements « fire-and-forget ».
Un abonné en échec est journalisé et n'interrompt ni les autres abonnés ni le moteur.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

SYNC_COMPLETED = "sync_completed"
NETWORK_STATUS_CHANGED = "network_status_changed"
CONFLICT_RESOLVED = "conflict_resolved"
MUTATION_FAILED = "mutation_failed"

Listener = Callable[[Dict[str, Any]], None]


class SyncNotifier:
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, event: str, callback: Listener) -> Callable[[], None]:
        """Abonne `callback` à `event`. Retourne la fonction de désabonnement."""
        self._listeners[event].append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        return unsubscribe

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(payload)
            except Exception:
                logger.exception("Abonné en échec pour l'événement %s", event)
