"""
ListenBrainz export parser (JSON array, JSONL lines or API response).

Every record is mapped; missing names become "Unknown ..." sentinels and a
missing listened_at falls back to the current time.
"""
import logging
import time
from typing import Any, Dict, List

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
from .detector import FORMAT_LISTENBRAINZ

logger = logging.getLogger(__name__)


def _records(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return (payload.get('payload') or {}).get('listens') or []
    return []


def parse_listenbrainz(payload: Any, batch_index: int = 0) -> ParseResult:
    records = _records(payload)
    if not records:
        raise NoListensError("No listens found in ListenBrainz file")

    events: List[ListeningEvent] = []
    filtered = 0
    missing_timestamps = 0
    now = int(time.time())

    for sequence, record in enumerate(records):
        if not isinstance(record, dict):
            filtered += 1
            continue

        meta: Dict[str, Any] = record.get('track_metadata') or {}
        side_info = dict(meta.get('additional_info') or {})

        timestamp = ensure_seconds(record.get('listened_at'))
        if timestamp is None:
            timestamp = now
            missing_timestamps += 1

        genres = raw_genres(record, side_info)
        events.append(ListeningEvent(
            id=make_event_id(FORMAT_LISTENBRAINZ, batch_index, sequence, timestamp),
            timestamp=timestamp,
            track_name=sanitize_text(meta.get('track_name'), UNKNOWN_TRACK),
            artist_name=sanitize_text(meta.get('artist_name'), UNKNOWN_ARTIST),
            album_name=sanitize_text(meta.get('release_name'), UNKNOWN_ALBUM),
            genres=genres,
            genre_metadata=GenreMetadata(
                source=(GenreSource.IMPORT if genres else GenreSource.UNKNOWN).value,
                needs_fetch=not genres,
            ),
            source_format=FORMAT_LISTENBRAINZ,
            recording_msid=record.get('recording_msid'),
            additional_info=side_info,
        ))

    if missing_timestamps:
        logger.warning(
            f"{missing_timestamps} ListenBrainz records had no listened_at; used the current time"
        )
    logger.info(f"Parsed {len(events):,} ListenBrainz listens")
    return ParseResult(events=events, format=FORMAT_LISTENBRAINZ, total=len(records), filtered=filtered)
