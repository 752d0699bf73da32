"""Score blending between the lexical stages and a future semantic stage."""

LEXICAL_WEIGHT = 0.4
SEMANTIC_WEIGHT = 0.6


def blended_score(lexical: float, semantic: float | None = None) -> float:
    """Combine lexical and semantic relevance.

    With no semantic component the lexical score is returned unchanged.
    """
    if semantic is None:
        return lexical
    return LEXICAL_WEIGHT * lexical + SEMANTIC_WEIGHT * semantic
