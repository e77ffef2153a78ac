"""Tests pour la forme canonique des snapshots.

Ce module teste le hash de contenu, la construction du document d'embedding et la normalisation
des codes langue.
"""

from __future__ import annotations

from multilang_rag.core.constants import EMBEDDING_MAX_CHARS
from multilang_rag.domain.canonical import (
    build_embedding_document,
    html_to_text,
    normalize_lang_code,
    snapshot_content_hash,
    stable_stringify,
)
from tests.fakes import content


def test_hash_ignores_key_order_and_whitespace() -> None:
    """Teste que le hash ne dépend ni de l'ordre des clés ni des espaces."""
    a = content("Red  shoes ", "<p>Nice</p>", {"size": 42, "color": {"b": 1, "a": 2}})
    b = content(" Red shoes", "<p>Nice</p>", {"color": {"a": 2, "b": 1}, "size": 42})
    assert snapshot_content_hash(a) == snapshot_content_hash(b)
    assert len(snapshot_content_hash(a)) == 64


def test_hash_changes_with_content() -> None:
    """Teste que toute modification de contenu change le hash."""
    base = content("Lamp", specs={"watts": 10})
    changed = content("Lamp", specs={"watts": 12})
    assert snapshot_content_hash(base) != snapshot_content_hash(changed)
    assert snapshot_content_hash(base) != snapshot_content_hash(
        content("Lamp", specs={"watts": 10}, faq=[{"question": "q", "answer": "a"}])
    )


def test_faq_order_is_significant() -> None:
    """Teste que l'ordre de la FAQ fait partie du contenu."""
    q1 = {"question": "one", "answer": "1"}
    q2 = {"question": "two", "answer": "2"}
    assert snapshot_content_hash(content("T", faq=[q1, q2])) != snapshot_content_hash(
        content("T", faq=[q2, q1])
    )


def test_stable_stringify_is_compact_and_sorted() -> None:
    """Teste la sérialisation JSON stable."""
    value = {"b": [2, {"d": 1, "c": "é"}], "a": 1}
    assert stable_stringify(value) == '{"a":1,"b":[2,{"c":"é","d":1}]}'


def test_html_to_text() -> None:
    """Teste la conversion HTML -> texte brut."""
    raw = "<style>p{}</style><p>Bright &amp; <b>warm</b>\n light</p><script>x()</script>"
    assert html_to_text(raw) == "Bright & warm light"
    assert html_to_text(None) == ""


def test_embedding_document_layout() -> None:
    """Teste l'ordre fixe des sections du document d'embedding."""
    doc = build_embedding_document(
        content(
            "Lamp",
            "<p>Bright &amp; warm light</p>",
            {"b": 1, "a": ["x", "y"], "z": None, "n": {"k": 1}},
            [{"question": "Is it dimmable?", "answer": "Yes"}, {"foo": "bar"}],
        )
    )
    assert doc == (
        "Title: Lamp Description: Bright & warm light Specs: a: x, y b: 1 n: {\"k\":1} "
        "FAQ: Q: Is it dimmable? A: Yes"
    )


def test_embedding_document_caps_specs_and_faq() -> None:
    """Teste les plafonds de 30 lignes de specs et 10 entrées de FAQ."""
    specs = {f"k{i:02d}": i for i in range(40)}
    faq = [{"question": f"q{i}", "answer": f"a{i}"} for i in range(15)]
    doc = build_embedding_document(content("T", specs=specs, faq=faq))
    assert "k29: 29" in doc
    assert "k30" not in doc
    assert "Q: q9 A: a9" in doc
    assert "q10" not in doc


def test_embedding_document_truncation() -> None:
    """Teste la troncature déterministe du document."""
    long_desc = "word " * 10000
    doc = build_embedding_document(content("T", long_desc))
    assert len(doc) == EMBEDDING_MAX_CHARS
    assert doc == build_embedding_document(content("T", long_desc))
    assert len(build_embedding_document(content("T", long_desc), max_chars=100)) == 100


def test_embedding_document_omits_empty_sections() -> None:
    """Teste que les sections vides sont omises."""
    assert build_embedding_document(content("Only title")) == "Title: Only title"


def test_normalize_lang_code() -> None:
    """Teste la normalisation des codes langue."""
    assert normalize_lang_code("en-US") == "en"
    assert normalize_lang_code("  HU ") == "hu"
    assert normalize_lang_code("") == "en"
    assert normalize_lang_code(None) == "en"
    assert normalize_lang_code("pt-BR") == "pt-br"
    assert normalize_lang_code("x-very-long-code") == "x-very-l"
