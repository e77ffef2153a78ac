"""Cœur de récupération produit multilingue (snapshots, embeddings, index, retrieval)."""

__version__ = "0.1.0"
