"""
Résolution de la configuration linguistique des boutiques.

Le résolveur lit la configuration explicite d'une boutique auprès de sa source (collaborateur
externe), normalise les codes langue et applique deux garde-fous:
- configuration invalide (langue par défaut non activée) -> mode mono-langue (fail closed);
- kill switch global désactivé -> mode mono-langue pour toutes les boutiques.

Aucun cache n'est conservé ici: chaque appel relit la source.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Protocol

import structlog

from multilang_rag.config.flags import ff_multi_lang_rag
from multilang_rag.core.constants import DEFAULT_LANG
from multilang_rag.domain.canonical import normalize_lang_code
from multilang_rag.domain.errors import ConfigError
from multilang_rag.domain.models import ShopSettings


def _dedupe(langs: list[str]) -> list[str]:
    seen: list[str] = []
    for lang in langs:
        code = normalize_lang_code(lang)
        if code not in seen:
            seen.append(code)
    return seen


def default_settings(shop: str, default_lang: str = DEFAULT_LANG) -> ShopSettings:
    """Configuration appliquée à une boutique sans ligne explicite."""
    lang = normalize_lang_code(default_lang)
    return ShopSettings(
        shop=shop, default_source_lang=lang, enabled_langs=[lang], multi_lang_rag_enabled=False
    )


class ShopSettingsSource(Protocol):
    """Protocole du collaborateur qui détient la configuration des boutiques."""

    def get(self, shop: str) -> ShopSettings | None:
        """Retourne la configuration stockée, ou None si la boutique n'en a pas."""


class InMemoryShopSettingsSource:
    """Source de configuration en mémoire (tests, intégration in-process)."""

    def __init__(self, rows: dict[str, ShopSettings] | None = None) -> None:
        self._rows: dict[str, ShopSettings] = dict(rows or {})
        self._lock = threading.Lock()

    def get(self, shop: str) -> ShopSettings | None:
        """Retourne une copie de la configuration stockée, ou None."""
        row = self._rows.get(shop)
        return row.model_copy(deep=True) if row is not None else None

    def put(self, settings: ShopSettings) -> None:
        """Enregistre (ou remplace) la configuration d'une boutique."""
        with self._lock:
            self._rows[settings.shop] = settings.model_copy(deep=True)

    def get_or_create(self, shop: str, default_lang: str = DEFAULT_LANG) -> ShopSettings:
        """Retourne la configuration, en créant la ligne par défaut au premier accès.

        Args:
            shop: Identifiant de la boutique.
            default_lang: Langue source de la ligne créée.

        Returns:
            ShopSettings: Configuration stockée (langues normalisées).
        """
        with self._lock:
            row = self._rows.get(shop)
            if row is None:
                row = default_settings(shop, default_lang)
                self._rows[shop] = row
            return ShopSettings(
                shop=row.shop,
                default_source_lang=normalize_lang_code(row.default_source_lang),
                enabled_langs=_dedupe(row.enabled_langs),
                multi_lang_rag_enabled=row.multi_lang_rag_enabled,
            )


class ShopSettingsResolver:
    """Résout la configuration effective d'une boutique pour une opération."""

    def __init__(
        self,
        source: ShopSettingsSource,
        default_lang: str = DEFAULT_LANG,
        feature_enabled: Callable[[], bool] = ff_multi_lang_rag,
    ) -> None:
        """
        Initialise le résolveur.

        Args:
            source: Collaborateur détenant la configuration des boutiques.
            default_lang: Langue par défaut des boutiques sans configuration.
            feature_enabled: Kill switch global de la récupération multilingue.
        """
        self.source = source
        self.default_lang = normalize_lang_code(default_lang)
        self.feature_enabled = feature_enabled
        self._log = structlog.get_logger(__name__).bind(component="shop_settings")

    def resolve(self, shop: str) -> ShopSettings:
        """
        Retourne la configuration effective d'une boutique.

        Args:
            shop: Identifiant de la boutique.

        Returns:
            ShopSettings: Configuration normalisée; mono-langue si absente, invalide ou si le
            kill switch est désactivé.
        """
        row = self.source.get(shop)
        if row is None:
            return default_settings(shop, self.default_lang)
        settings = ShopSettings(
            shop=shop,
            default_source_lang=normalize_lang_code(row.default_source_lang),
            enabled_langs=_dedupe(row.enabled_langs),
            multi_lang_rag_enabled=row.multi_lang_rag_enabled,
        )
        try:
            settings.ensure_valid()
        except ConfigError as exc:
            self._log.error(
                "shop_settings_invalid",
                shop=shop,
                default_source_lang=settings.default_source_lang,
                enabled_langs=settings.enabled_langs,
                error=str(exc),
            )
            fallback = default_settings(shop, settings.default_source_lang)
            return fallback.model_copy(update={"fail_closed": True})
        if settings.multi_lang_rag_enabled and not self.feature_enabled():
            return settings.model_copy(update={"multi_lang_rag_enabled": False})
        return settings
