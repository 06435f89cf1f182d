"""
Connexion à la base locale de l'appareil (SQLite).
Sert de support au Durable Local Store (table clé/valeur local_entries).
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from madrasa_sync.config import settings

# check_same_thread=False : le job APScheduler tourne dans un thread séparé
engine = create_engine(
    settings.LOCAL_DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.LOCAL_DATABASE_URL.startswith("sqlite") else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db() -> None:
    """Crée les tables locales si elles n'existent pas encore."""
    import madrasa_sync.models  # noqa: F401  enregistre les modèles dans Base.metadata

    Base.metadata.create_all(bind=engine)
