"""
Interface de base pour les générateurs d'embeddings.

Ce module définit l'interface abstraite que doivent implémenter tous les générateurs d'embeddings
vectoriels, ainsi que le registre des dimensions par version de modèle.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from multilang_rag.core.constants import EMBEDDING_MODEL_DIMENSIONS
from multilang_rag.domain.errors import ConfigError, DimensionMismatchError


def dimension_for_model(model_version: str) -> int:
    """Retourne la dimension fixe associée à une version de modèle.

    Raises:
        ConfigError: si le modèle n'est pas supporté.
    """
    normalized = (model_version or "").strip()
    try:
        return EMBEDDING_MODEL_DIMENSIONS[normalized]
    except KeyError:
        raise ConfigError(f"unsupported embedding model: {normalized!r}") from None


class Embeddings(ABC):
    """Interface abstraite pour les générateurs d'embeddings.

    Chaque implémentation est liée à une version de modèle unique; tous ses vecteurs partagent
    la même dimension.
    """

    model_version: str
    dimension: int

    @abstractmethod
    def embed(self, texts: list[str]) -> list[list[float]]:
        """Génère des embeddings vectoriels pour une liste de textes."""
        ...

    def check_dimensions(self, vectors: list[list[float]]) -> list[list[float]]:
        """Vérifie que chaque vecteur a la dimension attendue pour le modèle."""
        for vec in vectors:
            if len(vec) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(vec), where=self.model_version)
        return vectors
