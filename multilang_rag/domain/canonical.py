"""Forme canonique des snapshots: hash de contenu et document d'embedding.

Fonctions pures et déterministes. Le hash et le texte d'embedding doivent rester stables entre
redémarrages de processus, sinon les contrôles de fraîcheur recalculent tout.

Document d'embedding (format `doc-v1`), lignes dans cet ordre:
    Title: <titre>
    Description: <description HTML réduite au texte>
    Specs:            (puis au plus 30 lignes `clé: valeur`, clés triées)
    FAQ:              (puis au plus 10 lignes `Q: ... A: ...`, ordre d'origine)
Le tout est normalisé (espaces) puis tronqué aux `max_chars` premiers caractères.
"""

from __future__ import annotations

import hashlib
import html
import json
import re
from typing import Any

from multilang_rag.core.constants import (
    DEFAULT_LANG,
    EMBEDDING_MAX_CHARS,
    EMBEDDING_MAX_FAQ_ITEMS,
    EMBEDDING_MAX_SPEC_LINES,
    KNOWN_LANG_PREFIXES,
    MAX_LANG_CODE_LEN,
)
from multilang_rag.domain.models import SnapshotContent

_WS_RE = re.compile(r"\s+")
_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def normalize_whitespace(value: str | None) -> str:
    """Remplace les suites d'espaces par un espace unique et supprime les bords."""
    return _WS_RE.sub(" ", str(value or "")).strip()


def sort_json_deep(value: Any) -> Any:
    """Trie récursivement les clés des objets JSON (les listes gardent leur ordre)."""
    if isinstance(value, list | tuple):
        return [sort_json_deep(v) for v in value]
    if isinstance(value, dict):
        return {str(k): sort_json_deep(value[k]) for k in sorted(value, key=str)}
    return value


def stable_stringify(value: Any) -> str:
    """Sérialisation JSON compacte à clés triées."""
    return json.dumps(
        sort_json_deep(value), ensure_ascii=False, separators=(",", ":"), sort_keys=True
    )


def sha256_hex(text: str) -> str:
    """Empreinte SHA-256 hexadécimale d'un texte UTF-8."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def snapshot_content_hash(content: SnapshotContent) -> str:
    """Hash canonique d'un contenu de snapshot (titre, description, specs, FAQ)."""
    normalized = {
        "title": normalize_whitespace(content.title),
        "description_html": normalize_whitespace(content.description_html),
        "specs_json": sort_json_deep(content.specs_json or {}),
        "faq_json": sort_json_deep(content.faq_json or []),
    }
    return sha256_hex(stable_stringify(normalized))


def html_to_text(value: str | None) -> str:
    """Convertit un texte riche HTML en texte brut canonique."""
    text = _SCRIPT_RE.sub(" ", str(value or ""))
    text = _STYLE_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return normalize_whitespace(text)


def _spec_lines(specs: dict[str, Any]) -> list[str]:
    lines: list[str] = []
    for key in sorted(specs, key=str):
        value = specs[key]
        if value is None:
            continue
        if isinstance(value, list | tuple):
            rendered = ", ".join(
                stable_stringify(v) if isinstance(v, dict | list) else str(v) for v in value
            )
        elif isinstance(value, dict):
            rendered = stable_stringify(value)
        else:
            rendered = str(value)
        lines.append(f"{key}: {rendered}")
    return lines[:EMBEDDING_MAX_SPEC_LINES]


def _faq_lines(faqs: list[Any]) -> list[str]:
    lines: list[str] = []
    for faq in faqs[:EMBEDDING_MAX_FAQ_ITEMS]:
        if not isinstance(faq, dict):
            continue
        question = faq.get("question") if isinstance(faq.get("question"), str) else ""
        answer = faq.get("answer") if isinstance(faq.get("answer"), str) else ""
        if question or answer:
            lines.append(f"Q: {question} A: {answer}")
    return lines


def build_embedding_document(
    content: SnapshotContent, max_chars: int = EMBEDDING_MAX_CHARS
) -> str:
    """Construit le texte à embedder pour un snapshot (format `doc-v1`).

    Args:
        content: Contenu du snapshot.
        max_chars: Longueur maximale du document après normalisation.

    Returns:
        str: Document normalisé et tronqué.
    """
    lines: list[str] = []
    if content.title:
        lines.append(f"Title: {normalize_whitespace(content.title)}")
    description = html_to_text(content.description_html)
    if description:
        lines.append(f"Description: {description}")
    specs = _spec_lines(content.specs_json or {})
    if specs:
        lines.append("Specs:")
        lines.extend(specs)
    faqs = _faq_lines(list(content.faq_json or []))
    if faqs:
        lines.append("FAQ:")
        lines.extend(faqs)
    return normalize_whitespace("\n".join(lines))[:max_chars]


def normalize_lang_code(lang: str | None) -> str:
    """Normalise un code langue (`en-US` -> `en`, vide -> `en`)."""
    if not lang or not lang.strip():
        return DEFAULT_LANG
    value = lang.strip().lower()
    for prefix in KNOWN_LANG_PREFIXES:
        if value.startswith(prefix):
            return prefix
    return value[:MAX_LANG_CODE_LEN]
