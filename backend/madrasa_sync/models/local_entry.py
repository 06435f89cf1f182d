"""
Modèle SQLAlchemy du stockage clé/valeur local de l'appareil.

Une ligne = une clé. La valeur est opaque (JSON encodé en UTF-8 par les services).
Last-write-wins par clé, aucune garantie transactionnelle au-delà.
"""

from sqlalchemy import Column, DateTime, LargeBinary, String, func

from madrasa_sync.database import Base


class LocalEntry(Base):
    __tablename__ = "local_entries"

    key = Column(String(512), primary_key=True)
    value = Column(LargeBinary, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
