"""Embedder local utilisant Sentence Transformers.

Ce module implémente un embedder local (sans appel réseau au moment de l'inférence) pour les
environnements où l'API OpenAI n'est pas disponible.
"""

from __future__ import annotations

from multilang_rag.domain.errors import ProviderError
from multilang_rag.infra.embeddings.base import Embeddings, dimension_for_model


class LocalEmbedder(Embeddings):
    """Embedder local utilisant Sentence Transformers.

    Le modèle est chargé une seule fois par processus et partagé entre instances.
    """

    _models: dict = {}

    def __init__(self, model_version: str = "all-MiniLM-L6-v2"):
        """Initialise l'embedder local avec le modèle spécifié.

        Args:
            model_version: Nom du modèle Sentence Transformers à utiliser.
        """
        from sentence_transformers import SentenceTransformer  # noqa: PLC0415

        self.model_version = model_version
        self.dimension = dimension_for_model(model_version)
        if model_version not in LocalEmbedder._models:
            LocalEmbedder._models[model_version] = SentenceTransformer(model_version)
        self.model = LocalEmbedder._models[model_version]

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Génère des embeddings vectoriels pour une liste de textes.

        Args:
            texts: Liste des textes à convertir en embeddings.

        Returns:
            list[list[float]]: Liste des vecteurs d'embedding.
        """
        if not texts:
            return []
        try:
            vectors = self.model.encode(texts, convert_to_numpy=True).tolist()
        except (RuntimeError, ValueError) as exc:
            raise ProviderError(f"local embedding failed: {exc}") from exc
        return self.check_dimensions(vectors)
