"""
Configuration de l'application.

Les réglages sont lus depuis l'environnement (ou un fichier .env)
par pydantic-settings, puis mis en cache une fois par processus.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ==============================
    # Application
    # ==============================
    APP_NAME: str = "TILO Inventaire"
    ENVIRONMENT: str = "local"

    # ==============================
    # Database
    # ==============================
    DATABASE_URL: str = "sqlite:///inventaire.db"

    # ==============================
    # Logging
    # ==============================
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # ==============================
    # Domaine
    # ==============================
    DEFAULT_CURRENCY: str = "IDR"
    # Fenêtre unique pour « expire bientôt » (liste et résumé)
    EXPIRY_WINDOW_DAYS: int = 7
    DEDUCTION_MAX_ATTEMPTS: int = 3

    # ==============================
    # Scheduler (balayage des lots expirés)
    # ==============================
    SCHEDULER_ENABLED: bool = True
    SWEEP_RUN_TIME: str = "01:00"
    SCHEDULER_POLL_SECONDS: int = 30
    SCHEDULER_JITTER_SECONDS: int = 0
    SCHEDULER_TZ: str = "local"


@lru_cache
def get_settings() -> Settings:
    """Cached settings loader (once per process)."""
    return Settings()


__all__ = ["Settings", "get_settings"]
