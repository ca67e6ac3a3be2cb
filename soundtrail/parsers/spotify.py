"""
Spotify extended streaming history parser.

Records are filtered before mapping: a play is kept only when it has a
timestamp, a track name, an artist name and at least `min_ms_played`
milliseconds of playback. Shorter plays are treated as skips.
"""
import logging
from typing import Any, Dict, List

from ..errors import NoListensError
from ..models import (
    UNKNOWN_ALBUM,
    GenreMetadata,
    GenreSource,
    ListeningEvent,
)
from ..string_utils import sanitize_text
from ..timestamps import normalize_timestamp
from .base import ParseResult, make_event_id, raw_genres
from .detector import FORMAT_SPOTIFY

logger = logging.getLogger(__name__)

DEFAULT_MIN_MS_PLAYED = 30000

_SIDE_FIELDS = (
    'spotify_track_uri',
    'reason_start',
    'reason_end',
    'shuffle',
    'skipped',
    'offline',
    'platform',
)


def _is_playable(record: Dict[str, Any], min_ms_played: int) -> bool:
    return bool(
        record.get('ts')
        and sanitize_text(record.get('master_metadata_track_name'))
        and sanitize_text(record.get('master_metadata_album_artist_name'))
        and (record.get('ms_played') or 0) >= min_ms_played
    )


def parse_spotify(
    payload: Any,
    batch_index: int = 0,
    min_ms_played: int = DEFAULT_MIN_MS_PLAYED,
) -> ParseResult:
    records = payload if isinstance(payload, list) else []
    if not records:
        raise NoListensError("No listens found in Spotify file")

    events: List[ListeningEvent] = []
    filtered = 0
    unparseable = 0

    for sequence, record in enumerate(records):
        if not isinstance(record, dict) or not _is_playable(record, min_ms_played):
            filtered += 1
            continue

        timestamp = normalize_timestamp(record['ts'])
        if timestamp is None:
            unparseable += 1
            filtered += 1
            continue

        side_info = {key: record.get(key) for key in _SIDE_FIELDS}
        side_info['original_timestamp'] = record['ts']
        genres = raw_genres(record)

        events.append(ListeningEvent(
            id=make_event_id(FORMAT_SPOTIFY, batch_index, sequence, timestamp),
            timestamp=timestamp,
            track_name=sanitize_text(record['master_metadata_track_name']),
            artist_name=sanitize_text(record['master_metadata_album_artist_name']),
            album_name=sanitize_text(record.get('master_metadata_album_album_name'), UNKNOWN_ALBUM),
            genres=genres,
            genre_metadata=GenreMetadata(
                source=(GenreSource.IMPORT if genres else GenreSource.UNKNOWN).value,
                needs_fetch=not genres,
            ),
            source_format=FORMAT_SPOTIFY,
            ms_played=int(record.get('ms_played') or 0),
            additional_info=side_info,
        ))

    if unparseable:
        logger.warning(f"{unparseable} Spotify records had an unreadable 'ts' value")
    logger.info(
        f"Parsed {len(events):,} Spotify listens out of {len(records):,} "
        f"({filtered:,} skipped/short/incomplete)"
    )
    return ParseResult(events=events, format=FORMAT_SPOTIFY, total=len(records), filtered=filtered)
