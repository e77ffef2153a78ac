"""
FAISS-backed vector index (Faiss-only, no fallback).

Requires `faiss-cpu` and `numpy` to be installed. Uses inner-product similarity (IndexFlatIP) on
L2-normalized vectors, i.e. cosine similarity. Partition bookkeeping (revisions, tombstones,
copy-on-write states) is shared with the in-memory index; only the search kernel differs.
"""

from __future__ import annotations

import faiss  # type: ignore
import numpy as np  # type: ignore

from multilang_rag.infra.vecstores.memory_adapter import (
    InMemoryVectorIndex,
    _Partition,
    _PartitionState,
)


class FaissVectorIndex(InMemoryVectorIndex):
    """
    Index vectoriel FAISS par partition (boutique, langue).

    Chaque écriture reconstruit un `IndexFlatIP` pour l'état de la partition; les lectures
    interrogent l'index de l'état courant sans verrou.
    """

    backend = "faiss"

    def _build_native(self, part: _Partition, matrix: np.ndarray):
        index_ip = faiss.IndexFlatIP(part.dimension)
        if len(matrix):
            index_ip.add(np.ascontiguousarray(matrix, dtype="float32"))
        return index_ip

    def _scores(self, state: _PartitionState, q: np.ndarray) -> np.ndarray:
        n = len(state.ids)
        qx = np.ascontiguousarray(q.reshape(1, -1), dtype="float32")
        # recherche exhaustive: le tri final (égalités par product_id) est fait par l'appelant
        distances, indices = state.native.search(qx, n)
        scores = np.zeros(n, dtype=np.float32)
        for score, idx in zip(distances[0], indices[0], strict=True):
            if idx == -1:
                continue
            scores[idx] = score
        return scores
