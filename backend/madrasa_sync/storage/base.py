"""
Interface du Durable Local Store : stockage clé/valeur propre à l'appareil.

Sémantique minimale attendue par le noyau : get / set / delete / keys(prefix).
Synchrone, last-write-wins par clé. Toute défaillance du support est levée en StorageError.
"""

from typing import List, Optional, Protocol


class LocalStore(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...
