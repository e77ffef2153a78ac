"""
Embedder OpenAI pour la génération d'embeddings.

Ce module implémente un embedder utilisant l'API OpenAI. Les exceptions du SDK sont converties
en `ProviderError` (retryable) à la frontière.
"""

from __future__ import annotations

import openai
from openai import OpenAI

from multilang_rag.domain.errors import ProviderError
from multilang_rag.infra.embeddings.base import Embeddings, dimension_for_model


class OpenAIEmbedder(Embeddings):
    """
    Embedder OpenAI pour la génération d'embeddings.

    Utilise l'API OpenAI pour générer des embeddings vectoriels de dimension fixe par modèle.
    """

    def __init__(
        self,
        model_version: str = "text-embedding-3-small",
        api_key: str | None = None,
        client: OpenAI | None = None,
    ) -> None:
        """
        Initialise l'embedder OpenAI.

        Args:
            model_version: Modèle d'embedding OpenAI.
            api_key: Clé API (sinon `OPENAI_API_KEY` de l'environnement).
            client: Client déjà construit (tests, pools partagés).
        """
        self.model_version = model_version
        self.dimension = dimension_for_model(model_version)
        self.client = client or OpenAI(api_key=api_key or None)

    def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Génère des embeddings vectoriels via l'API OpenAI.

        Args:
            texts: Liste des textes à convertir en embeddings.

        Returns:
            list[list[float]]: Liste des vecteurs d'embedding.

        Raises:
            ProviderError: si l'appel échoue ou si la réponse est incomplète.
            DimensionMismatchError: si un vecteur n'a pas la dimension du modèle.
        """
        if not texts:
            return []
        try:
            resp = self.client.embeddings.create(
                model=self.model_version, input=texts, encoding_format="float"
            )
        except openai.OpenAIError as exc:
            raise ProviderError(f"openai embeddings call failed: {exc}") from exc
        data = sorted(resp.data or [], key=lambda d: d.index)
        if len(data) != len(texts):
            raise ProviderError(
                f"openai embeddings response has {len(data)} vectors for {len(texts)} inputs"
            )
        return self.check_dimensions([list(d.embedding) for d in data])
