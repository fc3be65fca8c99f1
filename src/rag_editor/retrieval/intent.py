"""Classification of broad "about the whole document" queries."""

from __future__ import annotations

from dataclasses import dataclass

# Lower-case substrings, matched case-insensitively against the query.
GENERAL_INTENT_PHRASES: dict[str, tuple[str, ...]] = {
    "en": (
        "summarize",
        "summarise",
        "summary",
        "overview",
        "what is this",
        "what's this",
        "what is it about",
        "tell me about",
        "explain",
        "describe",
        "main points",
        "key points",
        "the document",
        "this document",
        "this file",
    ),
    "es": (
        "resume",
        "resumen",
        "resumir",
        "de qué trata",
        "de que trata",
        "qué es esto",
        "que es esto",
        "háblame de",
        "hablame de",
        "explica",
        "describe",
        "puntos principales",
        "el documento",
        "este documento",
        "este archivo",
    ),
    "fr": (
        "résume",
        "résumé",
        "de quoi parle",
        "explique",
        "décris",
        "ce document",
        "ce fichier",
    ),
    "de": (
        "zusammenfass",
        "worum geht",
        "erkläre",
        "beschreibe",
        "dieses dokument",
        "das dokument",
    ),
}


def is_general_query(text: str) -> bool:
    lowered = text.lower()
    return any(
        phrase in lowered
        for phrases in GENERAL_INTENT_PHRASES.values()
        for phrase in phrases
    )


@dataclass(slots=True, frozen=True)
class RetrievalQuery:
    """A query plus whether it asks about the corpus as a whole."""

    text: str
    general: bool

    @classmethod
    def classify(cls, text: str, *, force_samples: bool = False) -> "RetrievalQuery":
        return cls(text=text, general=force_samples or is_general_query(text))
