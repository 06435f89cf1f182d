"""
Configuration centrale du noyau de synchronisation via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Base locale de l'appareil (SQLite) : files d'attente, instantanés, verrous
    LOCAL_DATABASE_URL: str = "sqlite:///./madrasa_local.db"

    # API distante (Remote Record Store)
    REMOTE_BASE_URL: str = "http://localhost:3000"
    REMOTE_TIMEOUT_SECONDS: float = 10.0

    # Synchronisation
    SYNC_INTERVAL_SECONDS: int = 60
    RETRY_CEILING: int = 3
    RETRY_BACKOFF_SECONDS: int = 30
    SYNCED_RETENTION_HOURS: int = 24

    # Résolution de conflits : fenêtre au-delà de laquelle la plus récente gagne
    CONFLICT_WINDOW_MINUTES: int = 5
    CONFLICT_AUDIT_LIMIT: int = 200

    # Environnement
    ENV: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("SYNC_INTERVAL_SECONDS")
    @classmethod
    def interval_in_range(cls, v: int) -> int:
        if not 30 <= v <= 60:
            raise ValueError("L'intervalle de synchronisation doit être compris entre 30 et 60 secondes.")
        return v

    @field_validator("RETRY_CEILING")
    @classmethod
    def ceiling_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Le plafond de tentatives doit être au moins 1.")
        return v


settings = Settings()
