"""
Genre Cache - persistent per-artist classification results

Entries live in the history store's `genres` collection, keyed by the artist
name as it appears in the listening data. Entries older than the expiry
window are treated as misses and get reclassified.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

from .models import GenreCacheEntry, GenreSource, is_unclassified, now_ms
from .storage import GENRES, HistoryStore
from .string_utils import normalize_key

logger = logging.getLogger(__name__)

MS_PER_DAY = 1000 * 60 * 60 * 24


class GenreCache:
    """Read/write access to cached artist genres"""

    def __init__(self, store: HistoryStore, expiry_days: int = 30):
        """
        Initialize the cache

        Args:
            store: History store holding the `genres` collection
            expiry_days: Number of days before cache entries expire
        """
        self.store = store
        self.expiry_days = expiry_days
        self._lower_index: Optional[Dict[str, str]] = None
        self.hits = 0
        self.misses = 0
        # get/save are called from worker threads during classification
        self._lock = threading.Lock()

    def _index(self) -> Dict[str, str]:
        if self._lower_index is None:
            self._lower_index = {
                normalize_key(record['artist']): record['artist']
                for record in self.store.get_all(GENRES)
                if record.get('artist')
            }
        return self._lower_index

    def get_entry(self, artist: str, include_expired: bool = False) -> Optional[GenreCacheEntry]:
        """Exact-name lookup first, then case-insensitive."""
        record = self.store.get(GENRES, artist)
        if record is None:
            stored_name = self._index().get(normalize_key(artist))
            if stored_name is not None and stored_name != artist:
                record = self.store.get(GENRES, stored_name)
        if record is None:
            return None

        entry = GenreCacheEntry.from_dict(record)
        if not include_expired and entry.is_expired(self.expiry_days):
            logger.debug(f"Cache EXPIRED: {artist}")
            return None
        return entry

    def get(self, artist: str) -> Optional[List[str]]:
        """
        Cached genres for an artist

        Returns:
            Genre list, or None when missing or expired
        """
        with self._lock:
            entry = self.get_entry(artist)
            if entry is None or not entry.genres:
                self.misses += 1
                logger.debug(f"Cache MISS: {artist}")
                return None
            self.hits += 1
        logger.debug(f"Cache HIT: {artist}")
        return list(entry.genres)

    def save(
        self,
        artist: str,
        genres: List[str],
        external_id: Optional[str] = None,
        source: Any = GenreSource.HEURISTIC,
        error: Optional[str] = None,
    ) -> GenreCacheEntry:
        """Store (overwrite) an artist's classification"""
        with self._lock:
            previous = self.store.get(GENRES, artist)
            attempts = int(previous.get('fetchAttempts') or 0) + 1 if previous else 1

            entry = GenreCacheEntry(
                artist=artist,
                genres=list(genres),
                source=source.value if isinstance(source, GenreSource) else str(source),
                external_id=external_id,
                last_fetched=now_ms(),
                fetch_attempts=attempts,
                last_error=error,
            )
            self.store.put(GENRES, entry.to_dict())
            if self._lower_index is not None:
                self._lower_index[normalize_key(artist)] = artist
        logger.debug(f"Cached {genres} for {artist} (source={entry.source})")
        return entry

    def all_entries(self, include_expired: bool = False) -> List[GenreCacheEntry]:
        entries = [GenreCacheEntry.from_dict(r) for r in self.store.get_all(GENRES) if r.get('artist')]
        if include_expired:
            return entries
        return [e for e in entries if not e.is_expired(self.expiry_days)]

    def genre_map(self) -> Dict[str, List[str]]:
        """Lowercased artist -> genres for every live, classified entry."""
        return {
            normalize_key(entry.artist): list(entry.genres)
            for entry in self.all_entries()
            if not is_unclassified(entry.genres)
        }

    def clear(self) -> int:
        count = self.store.count(GENRES)
        self.store.clear(GENRES)
        self._lower_index = None
        logger.info(f"Cleared genre cache ({count:,} entries)")
        return count

    def stats(self) -> Dict[str, Any]:
        """Totals by source plus the oldest and newest fetch times (epoch-ms)"""
        entries = self.all_entries(include_expired=True)
        by_source: Dict[str, int] = {}
        for entry in entries:
            source = entry.source or GenreSource.UNKNOWN.value
            by_source[source] = by_source.get(source, 0) + 1

        fetched = [e.last_fetched for e in entries if e.last_fetched]
        return {
            'total': len(entries),
            'by_source': by_source,
            'oldest_cache': min(fetched) if fetched else None,
            'newest_cache': max(fetched) if fetched else None,
            'hits': self.hits,
            'misses': self.misses,
        }

    def validate(self) -> Dict[str, Any]:
        """
        Count usable, expired and malformed entries

        An entry is invalid when its genre list is empty or contains
        non-string values.
        """
        now = now_ms()
        valid = expired = invalid = 0
        invalid_artists: List[str] = []
        for record in self.store.get_all(GENRES):
            genres = record.get('genres')
            if (
                not record.get('artist')
                or not isinstance(genres, list)
                or not genres
                or not all(isinstance(g, str) and g for g in genres)
            ):
                invalid += 1
                invalid_artists.append(str(record.get('artist')))
                continue
            age_days = (now - int(record.get('lastFetched') or 0)) / MS_PER_DAY
            if age_days > self.expiry_days:
                expired += 1
            else:
                valid += 1

        return {
            'total': valid + expired + invalid,
            'valid': valid,
            'expired': expired,
            'invalid': invalid,
            'invalid_artists': invalid_artists[:10],
        }
