"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )
    APP_NAME: str = "multilang-rag"
    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Embeddings
    OPENAI_API_KEY: str | None = None
    EMBEDDINGS_PROVIDER: str = "openai"  # "openai" | "local"
    EMBEDDINGS_MODEL: str = "text-embedding-3-small"
    LOCAL_EMBEDDINGS_MODEL: str = "all-MiniLM-L6-v2"
    EMBEDDING_MAX_CHARS: int = 24000

    # Stockage
    VECSTORE_BACKEND: str = "memory"  # "memory" | "faiss"
    DATABASE_URL: str | None = None
    DEFAULT_SOURCE_LANG: str = "en"

    # Synchronisation
    SYNC_MAX_ATTEMPTS: int = 3
    SYNC_BACKOFF_BASE_S: float = 0.5
    SYNC_BACKOFF_MAX_S: float = 30.0
    SYNC_MAX_WORKERS: int = 4
    TOMBSTONE_RETENTION_S: float = 7 * 24 * 3600.0

    # Retrieval
    RETRIEVAL_DEADLINE_S: float = 5.0
    RETRIEVAL_DEFAULT_K: int = 8

    # Feature flags (surchargés par l'environnement, voir config/flags.py)
    MULTI_LANG_RAG_ENABLED: bool = True
    MULTI_LANG_RAG_SHADOW_WRITE: bool = True
    MULTI_LANG_RAG_MIN_SIM: float = 0.0

    # Limitation de cardinalité des labels métriques (CSV via .env, peut être vide)
    ALLOWED_SHOPS: list[str] = []


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
