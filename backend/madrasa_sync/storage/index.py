"""
Index explicite des collections du stockage local.

Associe un nom de collection logique (locks, snapshots, conflict_audit…) à l'ensemble
ordonné des clés membres. L'index est maintenu à chaque écriture/suppression et persisté
sous une clé réservée : les lecteurs n'ont jamais à parcourir toutes les clés par préfixe.
Partagé entre le thread de l'API locale et celui du planificateur : chaque
lecture-modification-écriture se fait sous verrou.
"""

import json
import threading
from typing import Dict, Iterable, List, Optional

from madrasa_sync.storage.base import LocalStore

INDEX_KEY_PREFIX = "__index__/"


class CollectionIndex:
    def __init__(self, store: LocalStore):
        self._store = store
        self._cache: Dict[str, List[str]] = {}
        self._lock = threading.RLock()

    def _index_key(self, collection: str) -> str:
        return f"{INDEX_KEY_PREFIX}{collection}"

    def members(self, collection: str) -> List[str]:
        with self._lock:
            if collection not in self._cache:
                raw = self._store.get(self._index_key(collection))
                self._cache[collection] = json.loads(raw.decode("utf-8")) if raw else []
            return list(self._cache[collection])

    def _save(self, collection: str, members: List[str]) -> None:
        self._store.set(self._index_key(collection), json.dumps(members).encode("utf-8"))
        self._cache[collection] = members

    def put(self, collection: str, key: str, value: bytes) -> None:
        """Écrit la valeur puis l'enregistre dans la collection (si nouvelle)."""
        with self._lock:
            self._store.set(key, value)
            members = self.members(collection)
            if key not in members:
                members.append(key)
                self._save(collection, members)

    def get(self, key: str) -> Optional[bytes]:
        return self._store.get(key)

    def remove(self, collection: str, key: str) -> None:
        self.discard(collection, [key])

    def discard(self, collection: str, keys: Iterable[str]) -> int:
        """Supprime plusieurs membres en une seule réécriture de l'index. Retourne le nombre retiré."""
        with self._lock:
            doomed = set(keys)
            for key in doomed:
                self._store.delete(key)
            members = self.members(collection)
            kept = [k for k in members if k not in doomed]
            if len(kept) != len(members):
                self._save(collection, kept)
            return len(members) - len(kept)

    def trim(self, collection: str, limit: int) -> int:
        """Ne conserve que les `limit` membres les plus récents. Retourne le nombre supprimé."""
        with self._lock:
            members = self.members(collection)
            overflow = members[:-limit] if limit > 0 else members
            for key in overflow:
                self._store.delete(key)
            if overflow:
                self._save(collection, members[len(overflow):])
            return len(overflow)
