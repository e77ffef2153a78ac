"""Configuration de test pour pytest avec gestion des chemins.

Ce module configure pytest pour résoudre les imports `multilang_rag` en ajoutant la racine du projet
au sys.path, et neutralise les feature flags hérités de l'environnement.
"""

import os
import sys

import pytest

# Ensure project root is on sys.path so that
# imports like `from multilang_rag...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

_FLAG_ENV_VARS = (
    "FF_MULTI_LANG_RAG",
    "MULTI_LANG_RAG_ENABLED",
    "FF_MULTI_LANG_RAG_SYNC",
    "MULTI_LANG_RAG_SHADOW_WRITE",
    "MULTI_LANG_RAG_MIN_SIM",
)


@pytest.fixture(autouse=True)
def clean_flag_env(monkeypatch):
    """Supprime les variables de flags pour que chaque test parte des valeurs par défaut."""
    for name in _FLAG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
