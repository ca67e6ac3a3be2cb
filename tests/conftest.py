"""Test configuration and fixtures."""

import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from soundtrail.genre_cache import GenreCache
from soundtrail.models import GenreMetadata, ListeningEvent
from soundtrail.providers.base import Found, NotFound
from soundtrail.storage import HistoryStore

# 2021-03-05T12:00:00Z
BASE_TS = 1614945600
DAY = 24 * 60 * 60


def make_event(
    artist: str = "Radiohead",
    track: str = "Airbag",
    timestamp: int = BASE_TS,
    genres: Optional[List[str]] = None,
    event_id: Optional[str] = None,
    source: str = "unknown",
    **kwargs,
) -> ListeningEvent:
    """Build a ListeningEvent with sensible defaults."""
    return ListeningEvent(
        id=event_id or f"test-{artist}-{track}-{timestamp}",
        timestamp=timestamp,
        track_name=track,
        artist_name=artist,
        genres=genres,
        genre_metadata=GenreMetadata(source=source),
        **kwargs,
    )


class FakeResolver:
    """Stands in for MusicBrainzProvider.resolve_artist."""

    name = "musicbrainz"

    def __init__(self, mbids: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.mbids = mbids or {}
        self.error = error
        self.calls: List[str] = []

    async def resolve_artist(self, name: str):
        self.calls.append(name)
        if self.error is not None:
            raise self.error
        mbid = self.mbids.get(name)
        if mbid is None:
            return NotFound()
        return Found(tags=[], external_id=mbid, name=name)


class FakeTagProvider:
    """Stands in for a provider with fetch_genre_tags(ArtistRef)."""

    def __init__(self, name: str, tags: Optional[Dict[str, List[str]]] = None, on_call=None):
        self.name = name
        self.tags = tags or {}
        self.on_call = on_call
        self.calls: List[str] = []

    async def fetch_genre_tags(self, ref):
        self.calls.append(ref.name)
        if self.on_call is not None:
            self.on_call(ref)
        tags = self.tags.get(ref.name)
        if not tags:
            return NotFound("No tags")
        return Found(tags=list(tags), external_id=ref.mbid, name=ref.name)


@pytest.fixture()
def store(tmp_path):
    """History store backed by a throwaway database file."""
    history = HistoryStore(str(tmp_path / "history.db"))
    yield history
    history.close()


@pytest.fixture()
def cache(store):
    return GenreCache(store, expiry_days=30)


@pytest.fixture()
def event_factory():
    return make_event
