"""
Durable Local Store adossé à la base SQLite locale (table local_entries).

Chaque opération ouvre sa propre session courte : le store est partagé entre le
thread de l'API locale et celui du planificateur APScheduler.
"""

import logging
from typing import Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from madrasa_sync.exceptions import StorageError
from madrasa_sync.models.local_entry import LocalEntry

logger = logging.getLogger(__name__)


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[bytes]:
        db = self._session_factory()
        try:
            entry = db.get(LocalEntry, key)
            return bytes(entry.value) if entry is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Lecture impossible de la clé {key} : {exc}") from exc
        finally:
            db.close()

    def set(self, key: str, value: bytes) -> None:
        db = self._session_factory()
        try:
            entry = db.get(LocalEntry, key)
            if entry is None:
                db.add(LocalEntry(key=key, value=value))
            else:
                entry.value = value
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"Écriture impossible de la clé {key} : {exc}") from exc
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self._session_factory()
        try:
            db.execute(delete(LocalEntry).where(LocalEntry.key == key))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"Suppression impossible de la clé {key} : {exc}") from exc
        finally:
            db.close()

    def keys(self, prefix: str = "") -> List[str]:
        db = self._session_factory()
        try:
            stmt = select(LocalEntry.key).order_by(LocalEntry.key)
            if prefix:
                stmt = stmt.where(LocalEntry.key.like(f"{_escape_like(prefix)}%", escape="\\"))
            return list(db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise StorageError(f"Énumération impossible ({prefix!r}) : {exc}") from exc
        finally:
            db.close()
