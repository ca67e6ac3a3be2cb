"""
Genre classification cascade.

For one artist:
  1. genre cache (fresh entries only)          -> source "cache"
  2. heuristic guess from the artist name      (always computed, merged into any API result)
  3. resolve the artist (MusicBrainz search)   -> on failure, heuristic only, cached as "heuristic"
  4. tag providers in order, first non-empty answer wins
     (Last.fm top tags, ListenBrainz similar-artist tags, MusicBrainz voted tags)
  5. nothing found                             -> heuristic, cached as "heuristic"

The cascade never raises for "not found" or provider failures. Cancellation
is checked before every step and surfaces as ClassificationCancelled; any
other unexpected error falls back to the heuristic, cached as
"heuristic_fallback".
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .errors import ClassificationCancelled
from .genre.heuristics import classify_by_heuristics, merge_genres
from .genre_cache import GenreCache
from .models import GenreSource, ProgressEvent
from .providers.base import ArtistRef, Found

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

STATUS_CACHED = "cached"
STATUS_FETCHING = "fetching"
STATUS_COMPLETE = "complete"


class CancellationToken:
    """Shared cancel flag for every in-flight classification of a run"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ClassificationCancelled()


@dataclass
class ClassificationResult:
    artist: str
    genres: List[str]
    source: str


def _emit(on_progress: Optional[ProgressCallback], event: ProgressEvent) -> None:
    if on_progress is None:
        return
    try:
        on_progress(event)
    except Exception:
        logger.exception(f"Progress callback failed for {event.artist}")


class GenreClassifier:
    """Runs the cascade for one artist at a time"""

    def __init__(
        self,
        cache: GenreCache,
        resolver,
        tag_providers: Sequence,
        heuristic: Callable[[str], List[str]] = classify_by_heuristics,
    ):
        """
        Args:
            cache: Genre cache (read first, written on every outcome)
            resolver: Provider with `resolve_artist(name)`
            tag_providers: Providers with `fetch_genre_tags(ArtistRef)`, tried in order
            heuristic: Name-based genre guesser
        """
        self.cache = cache
        self.resolver = resolver
        self.tag_providers = list(tag_providers)
        self.heuristic = heuristic

    async def _finish(
        self,
        artist: str,
        genres: List[str],
        source: GenreSource,
        external_id: Optional[str],
        on_progress: Optional[ProgressCallback],
        error: Optional[str] = None,
    ) -> ClassificationResult:
        await asyncio.to_thread(self.cache.save, artist, genres, external_id, source, error=error)
        _emit(on_progress, ProgressEvent(artist=artist, status=STATUS_COMPLETE, genres=list(genres)))
        return ClassificationResult(artist=artist, genres=list(genres), source=source.value)

    async def classify(
        self,
        artist: str,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ClassificationResult:
        """
        Classify one artist

        Raises:
            ClassificationCancelled: the token was cancelled before a step
        """
        token = token or CancellationToken()
        try:
            token.raise_if_cancelled()

            cached = await asyncio.to_thread(self.cache.get, artist)
            if cached:
                _emit(on_progress, ProgressEvent(artist=artist, status=STATUS_CACHED, genres=cached))
                return ClassificationResult(artist=artist, genres=cached, source=GenreSource.CACHE.value)

            _emit(on_progress, ProgressEvent(artist=artist, status=STATUS_FETCHING))
            heuristic_genres = self.heuristic(artist)

            token.raise_if_cancelled()
            resolved = await self.resolver.resolve_artist(artist)
            if not isinstance(resolved, Found) or not resolved.external_id:
                logger.debug(f"Could not resolve '{artist}': {resolved}")
                return await self._finish(artist, heuristic_genres, GenreSource.HEURISTIC, None, on_progress)

            ref = ArtistRef(name=artist, mbid=resolved.external_id)
            for provider in self.tag_providers:
                token.raise_if_cancelled()
                result = await provider.fetch_genre_tags(ref)
                if isinstance(result, Found) and result.tags:
                    genres = merge_genres(heuristic_genres, result.tags)
                    logger.debug(f"{artist}: {genres} via {provider.name}")
                    return await self._finish(
                        artist, genres, GenreSource(provider.name), ref.mbid, on_progress
                    )

            return await self._finish(artist, heuristic_genres, GenreSource.HEURISTIC, ref.mbid, on_progress)

        except ClassificationCancelled:
            raise
        except Exception as e:
            logger.error(f"Failed to classify artist {artist}: {e}", exc_info=True)
            fallback = self.heuristic(artist)
            return await self._finish(
                artist, fallback, GenreSource.HEURISTIC_FALLBACK, None, on_progress, error=str(e)
            )
