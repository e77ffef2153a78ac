"""Gestion des feature flags de la récupération multilingue.

Ce module gère les flags de fonctionnalités qui contrôlent la récupération multilingue et la
synchronisation des embeddings.

Defaults: ON (kill switches). Values can be toggled via environment variables or settings.

Env vars (truthy if in {"1","true","yes","on"}, case-insensitive):
- FF_MULTI_LANG_RAG | MULTI_LANG_RAG_ENABLED
- FF_MULTI_LANG_RAG_SYNC | MULTI_LANG_RAG_SHADOW_WRITE
- MULTI_LANG_RAG_MIN_SIM (float in [-1, 1], 0 = no floor)
"""

from __future__ import annotations

import os

_TRUE = {"1", "true", "yes", "on"}


def _settings():
    # import tardif: le container dépend des services, qui lisent ces flags
    from multilang_rag.core.container import container  # noqa: PLC0415

    return container.settings


def _get_bool(*env_keys: str, fallback_setting: str | None = None, default: bool = False) -> bool:
    """Read a boolean from env or settings.

    Args:
        env_keys: Environment variable names to try in order.
        fallback_setting: Optional attribute name on settings.
        default: Default value if not found.
    Returns:
        bool: Effective flag value.
    """
    for k in env_keys:
        v = os.getenv(k)
        if v is not None:
            return str(v).strip().lower() in _TRUE
    if fallback_setting:
        val = getattr(_settings(), fallback_setting, None)
        if isinstance(val, bool):
            return val
        if val is not None:
            return str(val).strip().lower() in _TRUE
    return default


def ff_multi_lang_rag() -> bool:
    """Return whether multi-language retrieval is allowed process-wide (default ON)."""
    return _get_bool(
        "FF_MULTI_LANG_RAG",
        "MULTI_LANG_RAG_ENABLED",
        fallback_setting="MULTI_LANG_RAG_ENABLED",
        default=True,
    )


def ff_sync_enabled() -> bool:
    """Return whether the sync orchestrator may write embeddings (default ON)."""
    return _get_bool(
        "FF_MULTI_LANG_RAG_SYNC",
        "MULTI_LANG_RAG_SHADOW_WRITE",
        fallback_setting="MULTI_LANG_RAG_SHADOW_WRITE",
        default=True,
    )


def min_similarity() -> float:
    """Return the retrieval similarity floor in [-1,1] (default 0.0, i.e. disabled)."""
    raw = os.getenv("MULTI_LANG_RAG_MIN_SIM")
    if raw is None:
        raw = getattr(_settings(), "MULTI_LANG_RAG_MIN_SIM", 0.0)
    try:
        v = float(str(raw))
    except ValueError:
        return 0.0
    if v < -1.0:
        return -1.0
    if v > 1.0:
        return 1.0
    return v
