"""Tests pour la résolution de la configuration des boutiques.

Ce module teste les valeurs par défaut, la normalisation des langues, le mode fail-closed et le
kill switch global.
"""

from __future__ import annotations

import pytest

from multilang_rag.domain.errors import ConfigError
from multilang_rag.domain.models import ShopSettings
from multilang_rag.services.shop_settings import InMemoryShopSettingsSource, ShopSettingsResolver
from tests.fakes import shop_settings


def _resolver(source: InMemoryShopSettingsSource, enabled: bool = True) -> ShopSettingsResolver:
    return ShopSettingsResolver(source, feature_enabled=lambda: enabled)


def test_default_when_no_row() -> None:
    """Teste la configuration par défaut d'une boutique inconnue."""
    resolved = _resolver(InMemoryShopSettingsSource()).resolve("unknown")
    assert resolved.default_source_lang == "en"
    assert resolved.enabled_langs == ["en"]
    assert resolved.multi_lang_rag_enabled is False
    assert resolved.effective_langs() == ["en"]


def test_languages_are_normalized_and_deduplicated() -> None:
    """Teste la normalisation des codes langue stockés."""
    source = InMemoryShopSettingsSource()
    source.put(
        ShopSettings(
            shop="s1",
            default_source_lang="EN-us",
            enabled_langs=["hu", "en", "HU-hu", "de"],
            multi_lang_rag_enabled=True,
        )
    )
    resolved = _resolver(source).resolve("s1")
    assert resolved.default_source_lang == "en"
    assert resolved.enabled_langs == ["hu", "en", "de"]
    assert resolved.effective_langs() == ["en", "hu", "de"]


def test_invalid_settings_fail_closed() -> None:
    """Teste le passage en mono-langue si la langue par défaut n'est pas activée."""
    source = InMemoryShopSettingsSource()
    source.put(shop_settings("s1", default="en", enabled=["hu", "de"], multi=True))
    resolved = _resolver(source).resolve("s1")
    assert resolved.fail_closed is True
    assert resolved.multi_lang_rag_enabled is False
    assert resolved.effective_langs() == ["en"]


def test_ensure_valid_raises_config_error() -> None:
    """Teste l'invariant langue par défaut ∈ langues activées."""
    with pytest.raises(ConfigError):
        shop_settings("s1", default="en", enabled=["hu"]).ensure_valid()


def test_kill_switch_forces_single_language() -> None:
    """Teste que le kill switch global désactive la récupération multilingue."""
    source = InMemoryShopSettingsSource()
    source.put(shop_settings("s1", enabled=["en", "hu"], multi=True))
    assert _resolver(source, enabled=True).resolve("s1").effective_langs() == ["en", "hu"]
    resolved = _resolver(source, enabled=False).resolve("s1")
    assert resolved.multi_lang_rag_enabled is False
    assert resolved.effective_langs() == ["en"]


def test_disabled_shop_serves_default_only() -> None:
    """Teste qu'une boutique sans le flag ne sert que sa langue par défaut."""
    source = InMemoryShopSettingsSource()
    source.put(shop_settings("s1", default="hu", enabled=["hu", "en"], multi=False))
    assert _resolver(source).resolve("s1").effective_langs() == ["hu"]


def test_get_or_create() -> None:
    """Teste la création de la ligne par défaut au premier accès."""
    source = InMemoryShopSettingsSource()
    created = source.get_or_create("s1", default_lang="de-DE")
    assert created.default_source_lang == "de"
    assert created.enabled_langs == ["de"]
    assert created.multi_lang_rag_enabled is False
    source.put(shop_settings("s1", default="de", enabled=["de", "en"], multi=True))
    again = source.get_or_create("s1", default_lang="en")
    assert again.enabled_langs == ["de", "en"] and again.multi_lang_rag_enabled is True


def test_source_returns_copies() -> None:
    """Teste que la source ne partage pas ses objets avec l'appelant."""
    source = InMemoryShopSettingsSource()
    source.put(shop_settings("s1", enabled=["en", "hu"]))
    source.get("s1").enabled_langs.append("de")
    assert source.get("s1").enabled_langs == ["en", "hu"]
