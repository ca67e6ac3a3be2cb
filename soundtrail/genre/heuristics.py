"""
Name-based genre guesses.

Used as the floor of the classification cascade: every artist gets at least
this guess, and provider results are merged on top of it.
"""
import re
from typing import Dict, List, Optional

UNKNOWN = "Unknown"
MAX_GENRES = 3

# Family -> substrings of the artist name that suggest it
GENRE_KEYWORDS: Dict[str, List[str]] = {
    'Rock': ['rock', 'metal', 'punk', 'grunge', 'alternative'],
    'Pop': ['pop', 'k-pop', 'j-pop'],
    'Hip Hop': ['rap', 'hip hop', 'hip-hop', 'trap', 'drill', 'grime'],
    'Electronic': ['edm', 'house', 'techno', 'trance', 'dubstep', 'drum and bass', 'electronic'],
    'R&B': ['r&b', 'soul'],
    'Country': ['country', 'bluegrass', 'americana'],
    'Jazz': ['jazz', 'bebop', 'swing', 'fusion'],
    'Classical': ['classical', 'orchestra', 'symphony', 'opera', 'baroque'],
    'Folk': ['folk', 'acoustic', 'singer-songwriter'],
    'Latin': ['reggaeton', 'salsa', 'bachata', 'latin', 'banda'],
    'Reggae': ['reggae', 'ska', 'dub'],
    'Blues': ['blues'],
    'Funk': ['funk', 'disco'],
    'Indie': ['indie', 'lo-fi', 'bedroom pop'],
}

# First word of the name
PREFIX_PATTERNS: Dict[str, List[str]] = {
    'dj': ['Electronic'],
    'mc': ['Hip Hop'],
    'lil': ['Hip Hop'],
    'young': ['Hip Hop'],
    'the': ['Rock', 'Indie'],
    'band': ['Rock'],
    'orchestra': ['Classical'],
    'quartet': ['Classical', 'Jazz'],
    'ensemble': ['Classical'],
    'choir': ['Classical'],
}

# End of the name
SUFFIX_PATTERNS: Dict[str, List[str]] = {
    'beats': ['Hip Hop', 'Electronic'],
    'boy': ['Hip Hop', 'Pop'],
    'girl': ['Pop'],
    'band': ['Rock'],
    'orchestra': ['Classical'],
    'ensemble': ['Classical', 'Jazz'],
}

_FEATURING_RE = re.compile(r"(?:^|\s)(?:ft\.|feat\.|featuring)(?:\s|$)")
_PAIRING_RE = re.compile(r"[&+]")
_DIGITS_RE = re.compile(r"\d{3,}")


def _add(found: List[str], genres: List[str]) -> None:
    for genre in genres:
        if genre not in found:
            found.append(genre)


def classify_by_heuristics(artist_name: Optional[str]) -> List[str]:
    """
    Guess 1-3 genres from an artist name alone.

    Returns ["Unknown"] when nothing matches; never an empty list.
    """
    if not artist_name or not isinstance(artist_name, str):
        return [UNKNOWN]

    name = artist_name.strip().lower()
    if not name:
        return [UNKNOWN]
    found: List[str] = []

    for genre, keywords in GENRE_KEYWORDS.items():
        if any(keyword in name for keyword in keywords):
            _add(found, [genre])

    words = name.split()
    first_word, last_word = words[0], words[-1]
    if first_word in PREFIX_PATTERNS:
        _add(found, PREFIX_PATTERNS[first_word])

    for suffix, genres in SUFFIX_PATTERNS.items():
        if last_word.endswith(suffix):
            _add(found, genres)

    if _FEATURING_RE.search(name):
        _add(found, ['Hip Hop'])
    if _PAIRING_RE.search(name):
        _add(found, ['Pop', 'R&B'])
    if _DIGITS_RE.search(name):
        _add(found, ['Electronic'])

    return found[:MAX_GENRES] if found else [UNKNOWN]


def merge_genres(heuristic: List[str], api: List[str]) -> List[str]:
    """
    Combine a heuristic guess with provider tags.

    Provider tags lead; the heuristic fills remaining slots up to three.
    An empty or all-Unknown provider result leaves the heuristic untouched,
    and an all-Unknown heuristic contributes nothing.
    """
    api_real = [g for g in (api or []) if g and g != UNKNOWN]
    if not api_real:
        return list(heuristic) if heuristic else [UNKNOWN]

    heuristic_real = [g for g in (heuristic or []) if g and g != UNKNOWN]
    merged: List[str] = []
    for genre in api_real + heuristic_real:
        if genre.lower() not in (m.lower() for m in merged):
            merged.append(genre)
    return merged[:MAX_GENRES]


def genre_confidence(artist_name: str, genres: List[str]) -> float:
    """
    Rough 0.1-0.6 confidence that `genres` fits the artist name.

    Unknown or empty lists score 0.1; otherwise the score grows with the
    number of assigned genres that the name's keywords also point to.
    """
    if not genres or UNKNOWN in genres:
        return 0.1

    name = (artist_name or '').lower()
    assigned = {g.lower() for g in genres}
    score = 0.0
    for genre, keywords in GENRE_KEYWORDS.items():
        if any(keyword in name for keyword in keywords) and genre.lower() in assigned:
            score += 1.0

    return max(0.1, min(score / len(genres), 0.6))
