"""
Genre enrichment for listening events.

After an import, every event is matched against the genre cache so that
already-known artists are classified immediately and the rest are flagged
for the batch classifier. When a classification run finishes, its results
are written back onto the stored events.
"""
import logging
from dataclasses import replace
from typing import Any, Dict, List

from .genre_cache import GenreCache
from .logging_utils import RunSummary, stage_timer
from .models import (
    UNKNOWN_ARTIST,
    UNKNOWN_GENRE,
    GenreMetadata,
    GenreSource,
    ListeningEvent,
    is_unclassified,
    now_ms,
)
from .storage import LISTENS, HistoryStore
from .string_utils import normalize_key

logger = logging.getLogger(__name__)


def _is_unknown_artist(name: str) -> bool:
    return not name or not name.strip() or name == UNKNOWN_ARTIST


def enrich_listens_with_genres(events: List[ListeningEvent], cache: GenreCache) -> List[ListeningEvent]:
    """
    Apply cached genres to events

    - unknown artist: genres ["Unknown"], source "unknown", nothing to fetch
    - cached artist: cached genres, source "cache"
    - event already carrying real genres (e.g. tags from the export): unchanged
    - anything else: ["Unknown"], source "pending", needs_fetch
    """
    with stage_timer("Genre enrichment", logger):
        genre_map = cache.genre_map()
        logger.info(f"Loaded {len(genre_map):,} cached artists")

        fetched_at = now_ms()
        enriched: List[ListeningEvent] = []
        hits = misses = unknown = kept = 0

        for event in events:
            if _is_unknown_artist(event.artist_name):
                unknown += 1
                enriched.append(replace(
                    event,
                    genres=[UNKNOWN_GENRE],
                    genre_metadata=GenreMetadata(source=GenreSource.UNKNOWN.value, needs_fetch=False),
                ))
                continue

            cached = genre_map.get(normalize_key(event.artist_name))
            if cached:
                hits += 1
                enriched.append(replace(
                    event,
                    genres=list(cached),
                    genre_metadata=GenreMetadata(
                        source=GenreSource.CACHE.value,
                        cached=True,
                        last_fetched=fetched_at,
                    ),
                ))
                continue

            if not is_unclassified(event.genres):
                kept += 1
                enriched.append(event)
                continue

            misses += 1
            enriched.append(replace(
                event,
                genres=[UNKNOWN_GENRE],
                genre_metadata=GenreMetadata(source=GenreSource.PENDING.value, needs_fetch=True),
            ))

    total = len(events)
    summary = RunSummary("Genre Enrichment Summary", logger)
    summary.add("total_listens", total)
    summary.add("cache_hits", hits)
    summary.add("already_tagged", kept)
    summary.add("needs_fetch", misses)
    summary.add("unknown_artists", unknown)
    summary.add("enriched_pct", round((hits + kept) / total * 100, 1) if total else 0.0)
    summary.log()
    if misses:
        logger.info("Run genre classification to fetch the missing genres")
    return enriched


def update_listens_with_genre_map(store: HistoryStore, genre_map: Dict[str, List[str]]) -> Dict[str, int]:
    """
    Write classification results onto every stored event of each artist

    Artists whose result is only "Unknown" are skipped. All writes happen in
    one transaction.
    """
    usable = {artist: genres for artist, genres in genre_map.items() if not is_unclassified(genres)}
    if not usable:
        return {'updated': 0, 'artists': 0}

    updated = 0
    touched = set()
    fetched_at = now_ms()
    with stage_timer("Batch listen update", logger), store.transaction():
        for record in store.get_all(LISTENS):
            artist = record.get('artistName')
            genres = usable.get(artist)
            if genres is None:
                continue
            record['genres'] = list(genres)
            record['genreMetadata'] = GenreMetadata(
                source=GenreSource.CLASSIFICATION.value,
                cached=True,
                last_fetched=fetched_at,
            ).to_dict()
            store.put(LISTENS, record)
            updated += 1
            touched.add(artist)

    summary = RunSummary("Batch Listen Update", logger)
    summary.add("artists_processed", len(touched))
    summary.add("listens_updated", updated)
    summary.log()
    return {'updated': updated, 'artists': len(touched)}


def listens_needing_genres(events: List[ListeningEvent]) -> Dict[str, Any]:
    """Events still waiting for classification and their unique artists"""
    needing = [
        e for e in events
        if is_unclassified(e.genres) or e.genre_metadata.needs_fetch
    ]
    artists: List[str] = []
    seen = set()
    for event in needing:
        name = event.artist_name
        if _is_unknown_artist(name) or name in seen:
            continue
        seen.add(name)
        artists.append(name)
    return {'listens': len(needing), 'artists': len(artists), 'artist_list': artists}


def enrichment_stats(events: List[ListeningEvent]) -> Dict[str, Any]:
    stats: Dict[str, Any] = {
        'total': len(events),
        'enriched': 0,
        'needs_fetch': 0,
        'unknown': 0,
        'by_source': {},
    }
    for event in events:
        source = event.genre_metadata.source or GenreSource.UNKNOWN.value
        stats['by_source'][source] = stats['by_source'].get(source, 0) + 1
        if event.genres[0] != UNKNOWN_GENRE:
            stats['enriched'] += 1
        else:
            stats['unknown'] += 1
        if event.genre_metadata.needs_fetch:
            stats['needs_fetch'] += 1
    return stats
