"""
Genre vocabulary, tag validation and name-based heuristics.
"""

from .taxonomy import (
    VALID_GENRES,
    GenreValidation,
    GenreCleanupReport,
    validate_genre,
    clean_genre_data,
    genre_validation_stats,
)
from .heuristics import (
    classify_by_heuristics,
    merge_genres,
    genre_confidence,
)

__all__ = [
    "VALID_GENRES",
    "GenreValidation",
    "GenreCleanupReport",
    "validate_genre",
    "clean_genre_data",
    "genre_validation_stats",
    "classify_by_heuristics",
    "merge_genres",
    "genre_confidence",
]
