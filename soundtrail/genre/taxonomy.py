"""
Genre Taxonomy - closed vocabulary and tag validation
=====================================================
Free-text genre tags arrive from exports and from metadata providers. Only
names in VALID_GENRES survive; language and region tags are mapped to a
genre, and tags that describe something other than a genre (languages,
nationalities, decades, vague qualifiers, the artist's own name) are dropped.

Validation order:
1. empty / "unknown" / "other"   -> valid, "Unknown"
2. exact taxonomy match           -> valid as-is (lowercased)
3. language map, then region map  -> valid, was_mapped
4. disallow patterns              -> invalid_pattern
5. equals artist name             -> artist_name
6. anything else                  -> not_in_taxonomy
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Optional, Pattern, Tuple

from ..logging_utils import RunSummary

if TYPE_CHECKING:
    from ..models import ListeningEvent

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
MAX_GENRES = 3


# =============================================================================
# VALID GENRES - the closed vocabulary
# =============================================================================

VALID_GENRES: FrozenSet[str] = frozenset({
    # Electronic
    "electronic", "house", "deep house", "tech house", "progressive house", "electro house",
    "techno", "minimal techno", "detroit techno",
    "trance", "psytrance", "progressive trance", "uplifting trance",
    "dubstep", "brostep", "riddim",
    "drum and bass", "jungle", "liquid funk", "neurofunk",
    "edm", "big room", "future bass", "trap", "melodic dubstep",
    "ambient", "dark ambient", "drone",
    "downtempo", "trip hop", "chillwave",
    "electro", "electroclash",
    "idm", "glitch", "breakcore",
    "synthwave", "outrun", "darksynth",
    "vaporwave", "future funk",
    "hardstyle", "hardcore", "gabber",

    # Rock
    "rock", "classic rock", "album rock", "arena rock",
    "indie rock", "indie", "alternative rock", "alternative", "modern rock",
    "punk rock", "punk", "pop punk", "post-punk", "hardcore punk",
    "hard rock", "heavy metal", "metal", "thrash metal", "death metal", "black metal",
    "progressive rock", "prog rock", "art rock",
    "psychedelic rock", "psychedelic", "acid rock",
    "garage rock", "garage", "surf rock",
    "grunge", "post-grunge",
    "emo", "screamo", "metalcore", "deathcore",
    "stoner rock", "sludge metal", "doom metal",

    # Pop
    "pop", "dance-pop", "electropop", "synth-pop", "synthpop",
    "indie pop", "dream pop", "bedroom pop",
    "art pop", "experimental pop", "avant-pop",
    "k-pop", "j-pop", "c-pop",
    "power pop", "bubblegum pop",
    "teen pop", "boy band", "girl group",

    # Hip hop
    "hip hop", "rap", "hip-hop",
    "trap music",
    "boom bap", "golden age hip hop",
    "conscious hip hop", "political hip hop",
    "underground hip hop", "alternative hip hop",
    "gangsta rap", "west coast hip hop", "east coast hip hop", "southern hip hop",
    "mumble rap", "emo rap", "cloud rap",
    "drill", "grime",
    "instrumental hip hop", "lo-fi hip hop", "chillhop",

    # Jazz and blues
    "jazz",
    "bebop", "hard bop",
    "cool jazz", "west coast jazz",
    "free jazz", "avant-garde jazz",
    "modal jazz", "spiritual jazz",
    "jazz fusion", "fusion", "jazz-rock",
    "smooth jazz", "contemporary jazz",
    "swing", "big band", "dixieland",
    "gypsy jazz", "manouche",
    "latin jazz", "afro-cuban jazz", "bossa nova jazz",
    "post-bop", "chamber jazz",
    "blues", "delta blues", "chicago blues", "electric blues",
    "rhythm and blues", "r&b", "rnb",
    "jump blues", "blues rock",

    # Classical
    "classical", "classical music",
    "baroque", "early music", "renaissance",
    "classical period", "romantic", "romantic period",
    "contemporary classical", "modern classical", "20th century classical",
    "minimalism", "minimalist",
    "orchestral", "symphonic", "chamber music",
    "opera", "choral", "vocal",
    "piano", "solo piano",

    # Folk and country
    "folk", "traditional folk", "contemporary folk",
    "indie folk", "freak folk", "psych folk",
    "americana", "roots", "roots rock",
    "country", "contemporary country", "country pop",
    "outlaw country", "alt-country", "alternative country",
    "bluegrass", "old-time", "appalachian",
    "folk rock", "folk pop",
    "singer-songwriter", "acoustic",

    # Soul and funk
    "soul", "southern soul", "northern soul",
    "neo soul", "neo-soul", "alternative r&b",
    "funk", "p-funk", "g-funk",
    "disco", "nu-disco", "disco house",
    "motown", "philadelphia soul",
    "quiet storm", "contemporary r&b",

    # World and regional
    "world", "world music", "world fusion", "ethnic",
    "latin", "latin pop", "salsa", "bachata", "merengue", "cumbia",
    "reggae", "roots reggae", "dub", "dancehall", "reggaeton",
    "ska", "rocksteady", "2 tone",
    "afrobeat", "afro-funk", "highlife",
    "bossa nova", "mpb", "samba", "tropicalia",
    "flamenco", "fado", "tango",
    "bollywood", "indian classical", "raga", "hindustani", "carnatic",
    "celtic", "irish folk", "scottish folk",
    "middle eastern", "arabic", "klezmer",
    "african", "malian", "congolese",

    # Experimental and other
    "experimental", "avant-garde", "noise",
    "instrumental", "post-rock", "math rock",
    "lo-fi", "lo-fi beats", "chillout", "chill",
    "soundtrack", "score", "film score", "video game music",
    "new age", "meditative", "healing",
    "industrial", "ebm", "dark wave",
    "shoegaze", "noise pop",
    "ska punk", "celtic punk",
    "christian", "gospel", "praise", "worship",
    "comedy", "spoken word", "audiobook",
    "children", "kids music", "lullaby",
})


# =============================================================================
# MAPPINGS - tags that name a language or region rather than a genre
# =============================================================================

LANGUAGE_MAPPING: Dict[str, str] = {
    "hindi": "bollywood",
    "japanese": "j-pop",
    "korean": "k-pop",
    "spanish": "latin",
    "portuguese": "latin",
    "mandarin": "c-pop",
    "cantonese": "c-pop",
}

REGION_MAPPING: Dict[str, str] = {
    "india": "bollywood",
    "indian": "indian classical",
    "china": "c-pop",
    "japan": "j-pop",
    "korea": "k-pop",
}


# =============================================================================
# DISALLOW PATTERNS - checked only after the vocabulary and mappings
# =============================================================================

INVALID_PATTERNS: List[Pattern[str]] = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in [
        r"\b(english|spanish|french|german|italian|portuguese|japanese|korean|chinese|hindi|arabic|russian|mandarin|cantonese)\b",
        r"\b(male|female|vocalist|singer|voice|vocals)\b",
        r"\b(american|british|canadian|australian|european|asian|african|indian)\b",
        r"\b(60s|70s|80s|90s|2000s|2010s|2020s|sixties|seventies|eighties|nineties)\b",
        r"\b(good|bad|popular|underground|mainstream|commercial)\b",
        # "new age", "new wave", "modern jazz", ... are compounds, not qualifiers
        r"\b(new|old|modern|classic|contemporary)\s+(?!age\b|wave\b|jazz\b|classical\b|folk\b)",
    ]
]

_EMPTY_TAGS = frozenset({"", "unknown", "other"})


@dataclass
class GenreValidation:
    is_valid: bool
    normalized: Optional[str] = None
    reason: Optional[str] = None
    was_mapped: bool = False
    mapping_type: Optional[str] = None
    original: Optional[str] = None
    pattern: Optional[str] = None

    @property
    def suggestion(self) -> str:
        return self.normalized if self.is_valid and self.normalized else UNKNOWN


def validate_genre(tag: Any, artist_name: Optional[str] = None) -> GenreValidation:
    """
    Validate one free-text genre tag.

    Args:
        tag: Raw tag; non-strings are invalid with reason "empty"
        artist_name: Artist the tag was attached to, for self-tag detection

    Returns:
        GenreValidation with `normalized` set when valid, `reason` when not
    """
    if not isinstance(tag, str):
        return GenreValidation(is_valid=False, reason="empty")

    normalized = tag.strip().lower()

    if normalized in _EMPTY_TAGS:
        return GenreValidation(is_valid=True, normalized=UNKNOWN)

    if normalized in VALID_GENRES:
        return GenreValidation(is_valid=True, normalized=normalized)

    if normalized in LANGUAGE_MAPPING:
        return GenreValidation(
            is_valid=True,
            normalized=LANGUAGE_MAPPING[normalized],
            was_mapped=True,
            mapping_type="language",
            original=tag,
        )

    if normalized in REGION_MAPPING:
        return GenreValidation(
            is_valid=True,
            normalized=REGION_MAPPING[normalized],
            was_mapped=True,
            mapping_type="region",
            original=tag,
        )

    for pattern in INVALID_PATTERNS:
        if pattern.search(normalized):
            return GenreValidation(
                is_valid=False,
                reason="invalid_pattern",
                pattern=pattern.pattern,
                original=tag,
            )

    if artist_name and normalized == artist_name.strip().lower():
        return GenreValidation(is_valid=False, reason="artist_name", original=tag)

    return GenreValidation(is_valid=False, reason="not_in_taxonomy", original=tag)


@dataclass
class GenreCleanupReport:
    total: int = 0
    with_valid_genres: int = 0
    artist_names_removed: int = 0
    languages_mapped: int = 0
    set_to_unknown: int = 0
    total_removed: int = 0
    removed_samples: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'withValidGenres': self.with_valid_genres,
            'artistNamesRemoved': self.artist_names_removed,
            'languagesMapped': self.languages_mapped,
            'setToUnknown': self.set_to_unknown,
            'totalRemoved': self.total_removed,
        }


def clean_genre_data(events: List["ListeningEvent"]) -> Tuple[List["ListeningEvent"], GenreCleanupReport]:
    """
    Validate every genre tag on every event.

    Each event keeps only its valid (or mapped) tags, falling back to
    ["Unknown"] when none survive. The report is logged and returned.
    """
    report = GenreCleanupReport(total=len(events))
    cleaned: List["ListeningEvent"] = []

    for event in events:
        survivors: List[str] = []
        mapped = artist_removed = False

        for tag in event.genres:
            result = validate_genre(tag, event.artist_name)
            if result.is_valid:
                if result.normalized not in survivors:
                    survivors.append(result.normalized)
                mapped = mapped or result.was_mapped
                continue
            report.total_removed += 1
            if result.reason == "artist_name":
                artist_removed = True
            if len(report.removed_samples) < 5:
                report.removed_samples.append({
                    'artist': event.artist_name, 'tag': str(tag), 'reason': result.reason or '',
                })

        # "Unknown" only stands in when nothing real survived
        real = [g for g in survivors if g != UNKNOWN]
        final = real[:MAX_GENRES] if real else [UNKNOWN]

        if real:
            report.with_valid_genres += 1
        else:
            report.set_to_unknown += 1
        if artist_removed:
            report.artist_names_removed += 1
        if mapped:
            report.languages_mapped += 1

        cleaned.append(replace(event, genres=final))

    summary = RunSummary("Genre cleanup", logger)
    for key, value in report.to_dict().items():
        summary.add(key, value)
    summary.log()
    return cleaned, report


def genre_validation_stats(events: List["ListeningEvent"]) -> Dict[str, Any]:
    """Genre counts over a dataset, with Unknown reported separately."""
    counts: Counter = Counter()
    for event in events:
        counts.update(event.genres)

    total = len(events)
    top = [
        {'name': genre, 'count': count, 'percentage': (count / total * 100) if total else 0.0}
        for genre, count in counts.most_common()
        if genre != UNKNOWN
    ]
    return {
        'total_listens': total,
        'genre_counts': dict(counts),
        'unknown_count': counts.get(UNKNOWN, 0),
        'top_genres': top,
    }
