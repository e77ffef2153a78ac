"""Constantes partagées (modèles d'embedding, retry, format de document)."""

# Dimensions connues par version de modèle d'embedding.
EMBEDDING_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "all-MiniLM-L6-v2": 384,
}

# Version du format de document d'embedding. Toute modification de la
# dérivation texte (ordre, limites, troncature) impose un nouveau format.
EMBEDDING_DOC_FORMAT = "doc-v1"
EMBEDDING_MAX_CHARS = 24000
EMBEDDING_MAX_SPEC_LINES = 30
EMBEDDING_MAX_FAQ_ITEMS = 10

# Retry fournisseur
MAX_RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.5
RETRY_MAX_DELAY = 30.0
RETRY_RANDOM_FACTOR = 0.1

# Langues
DEFAULT_LANG = "en"
KNOWN_LANG_PREFIXES = ("tr", "hu", "en", "de", "el")
MAX_LANG_CODE_LEN = 8

# Tolérance de norme nulle pour la similarité cosinus
COSINE_EPSILON = 1e-12
