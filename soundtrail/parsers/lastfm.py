"""
Last.fm scrobble parser.

Accepts the `user.getRecentTracks` shape, either as the bare track array or
wrapped in {"recenttracks": {"track": [...]}}. The now-playing row and rows
without a date are skipped.
"""
import logging
from typing import Any, Dict, List, Optional

from ..errors import NoListensError
from ..models import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    UNKNOWN_TRACK,
    GenreMetadata,
    GenreSource,
    ListeningEvent,
)
from ..string_utils import sanitize_text
from ..timestamps import ensure_seconds
from .base import ParseResult, make_event_id, raw_genres
from .detector import FORMAT_LASTFM

logger = logging.getLogger(__name__)


def _records(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        tracks = (payload.get('recenttracks') or {}).get('track') or []
        # a single scrobble comes back as an object, not a list
        return tracks if isinstance(tracks, list) else [tracks]
    return []


def _text(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get('#text') or value.get('name')
    if isinstance(value, str):
        return value
    return None


def _mbid(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get('mbid') or None
    return None


def _is_now_playing(record: Dict[str, Any]) -> bool:
    attr = record.get('@attr') or {}
    return str(attr.get('nowplaying', '')).lower() == 'true'


def parse_lastfm(payload: Any, batch_index: int = 0) -> ParseResult:
    records = _records(payload)
    if not records:
        raise NoListensError("No scrobbles found in Last.fm file")

    events: List[ListeningEvent] = []
    filtered = 0

    for sequence, record in enumerate(records):
        if not isinstance(record, dict) or _is_now_playing(record):
            filtered += 1
            continue

        date = record.get('date')
        uts = date.get('uts') if isinstance(date, dict) else None
        timestamp = ensure_seconds(uts)
        if timestamp is None:
            filtered += 1
            continue

        side_info = {
            'mbid': record.get('mbid') or None,
            'url': record.get('url'),
            'artist_mbid': _mbid(record.get('artist')),
            'album_mbid': _mbid(record.get('album')),
            'loved': record.get('loved'),
            'original_timestamp': (date or {}).get('#text'),
        }
        genres = raw_genres(record)

        events.append(ListeningEvent(
            id=make_event_id(FORMAT_LASTFM, batch_index, sequence, timestamp),
            timestamp=timestamp,
            track_name=sanitize_text(record.get('name'), UNKNOWN_TRACK),
            artist_name=sanitize_text(_text(record.get('artist')), UNKNOWN_ARTIST),
            album_name=sanitize_text(_text(record.get('album')), UNKNOWN_ALBUM),
            genres=genres,
            genre_metadata=GenreMetadata(
                source=(GenreSource.IMPORT if genres else GenreSource.UNKNOWN).value,
                needs_fetch=not genres,
            ),
            source_format=FORMAT_LASTFM,
            additional_info={k: v for k, v in side_info.items() if v is not None},
        ))

    logger.info(f"Parsed {len(events):,} Last.fm scrobbles ({filtered:,} skipped)")
    return ParseResult(events=events, format=FORMAT_LASTFM, total=len(records), filtered=filtered)
