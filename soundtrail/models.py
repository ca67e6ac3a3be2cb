"""
Data model: listening events, genre cache entries, checkpoints and the
transient results produced by merge, aggregation and gateway detection.

Records are serialized with camelCase keys; that is the shape stored in the
history database and written to backup documents.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .timestamps import ensure_seconds

UNKNOWN_GENRE = "Unknown"
UNKNOWN_TRACK = "Unknown Track"
UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

MAX_GENRES = 3
CHECKPOINT_ID = "genre_classification"


def now_ms() -> int:
    return int(time.time() * 1000)


class GenreSource(str, Enum):
    """Where an event's or artist's genres came from."""

    CACHE = "cache"
    HEURISTIC = "heuristic"
    HEURISTIC_FALLBACK = "heuristic_fallback"
    MUSICBRAINZ = "musicbrainz"
    LASTFM = "lastfm"
    LISTENBRAINZ = "listenbrainz"
    PENDING = "pending"
    UNKNOWN = "unknown"
    CLASSIFICATION = "classification"
    IMPORT = "import"


def _value(source: Any) -> str:
    return source.value if isinstance(source, Enum) else str(source)


def normalize_genre_list(genres: Any) -> List[str]:
    """Coerce a raw genre field into a non-empty, de-duplicated list."""
    if genres is None:
        return [UNKNOWN_GENRE]
    if isinstance(genres, str):
        genres = [genres]
    result: List[str] = []
    for genre in genres:
        if isinstance(genre, str) and genre.strip() and genre not in result:
            result.append(genre)
    return result or [UNKNOWN_GENRE]


def is_unclassified(genres: List[str]) -> bool:
    return not genres or all(g == UNKNOWN_GENRE for g in genres)


@dataclass
class GenreMetadata:
    """Provenance of an event's genre list."""

    source: str = GenreSource.UNKNOWN.value
    cached: bool = False
    needs_fetch: bool = False
    last_fetched: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'source': _value(self.source),
            'cached': self.cached,
            'needsFetch': self.needs_fetch,
        }
        if self.last_fetched is not None:
            data['lastFetched'] = self.last_fetched
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GenreMetadata":
        data = data or {}
        return cls(
            source=_value(data.get('source', GenreSource.UNKNOWN.value)),
            cached=bool(data.get('cached', False)),
            needs_fetch=bool(data.get('needsFetch', data.get('needs_fetch', False))),
            last_fetched=data.get('lastFetched', data.get('last_fetched')),
        )


@dataclass
class ListeningEvent:
    """One play of one track. `timestamp` is always Unix seconds."""

    id: str
    timestamp: int
    track_name: str = UNKNOWN_TRACK
    artist_name: str = UNKNOWN_ARTIST
    album_name: str = UNKNOWN_ALBUM
    genres: List[str] = field(default_factory=lambda: [UNKNOWN_GENRE])
    genre_metadata: GenreMetadata = field(default_factory=GenreMetadata)
    source_format: str = ""
    ms_played: Optional[int] = None
    recording_msid: Optional[str] = None
    additional_info: Dict[str, Any] = field(default_factory=dict)
    timestamp_metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.genres = normalize_genre_list(self.genres)

    def dedup_key(self) -> tuple:
        """(track, artist, seconds); case and surrounding whitespace ignored."""
        return (
            (self.track_name or "").strip().lower(),
            (self.artist_name or "").strip().lower(),
            ensure_seconds(self.timestamp),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'timestamp': self.timestamp,
            'trackName': self.track_name,
            'artistName': self.artist_name,
            'albumName': self.album_name,
            'genres': list(self.genres),
            'genreMetadata': self.genre_metadata.to_dict(),
            'source': self.source_format,
            'additionalInfo': dict(self.additional_info),
        }
        if self.ms_played is not None:
            data['msPlayed'] = self.ms_played
        if self.recording_msid:
            data['recordingMsid'] = self.recording_msid
        if self.timestamp_metadata:
            data['timestampMetadata'] = dict(self.timestamp_metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListeningEvent":
        """
        Build an event from a stored or backed-up record.

        Accepts legacy records that carry `listened_at`, millisecond
        timestamps or snake_case keys; the result is always in seconds.
        """
        raw_ts = data.get('timestamp')
        if raw_ts in (None, 0, ''):
            raw_ts = data.get('listened_at', data.get('timestampSeconds'))
        timestamp = ensure_seconds(raw_ts)
        if timestamp is None:
            raise ValueError(f"Record {data.get('id')!r} has no usable timestamp")

        genres = data.get('genres')
        if genres is None and data.get('genre'):
            genres = [data['genre']]

        return cls(
            id=str(data.get('id') or f"record-{timestamp}"),
            timestamp=timestamp,
            track_name=data.get('trackName', data.get('track_name')) or UNKNOWN_TRACK,
            artist_name=data.get('artistName', data.get('artist_name')) or UNKNOWN_ARTIST,
            album_name=data.get('albumName', data.get('album_name')) or UNKNOWN_ALBUM,
            genres=normalize_genre_list(genres),
            genre_metadata=GenreMetadata.from_dict(data.get('genreMetadata', data.get('genre_metadata'))),
            source_format=data.get('source', data.get('sourceFormat', '')) or '',
            ms_played=data.get('msPlayed', data.get('ms_played')),
            recording_msid=data.get('recordingMsid', data.get('recording_msid')),
            additional_info=dict(data.get('additionalInfo', data.get('additional_info')) or {}),
            timestamp_metadata=data.get('timestampMetadata', data.get('timestamp_metadata')),
        )


@dataclass
class GenreCacheEntry:
    """Cached classification for one artist. `last_fetched` is epoch-ms."""

    artist: str
    genres: List[str]
    source: str = GenreSource.HEURISTIC.value
    external_id: Optional[str] = None
    last_fetched: int = field(default_factory=now_ms)
    fetch_attempts: int = 1
    last_error: Optional[str] = None

    def is_expired(self, expiry_days: int, now: Optional[int] = None) -> bool:
        now = now if now is not None else now_ms()
        age_days = (now - (self.last_fetched or 0)) / (1000 * 60 * 60 * 24)
        return age_days > expiry_days

    def to_dict(self) -> Dict[str, Any]:
        return {
            'artist': self.artist,
            'genres': list(self.genres),
            'source': _value(self.source),
            'mbid': self.external_id,
            'lastFetched': self.last_fetched,
            'fetchAttempts': self.fetch_attempts,
            'lastError': self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenreCacheEntry":
        return cls(
            artist=data['artist'],
            genres=list(data.get('genres') or []),
            source=_value(data.get('source', GenreSource.HEURISTIC.value)),
            external_id=data.get('mbid', data.get('externalId')),
            last_fetched=int(data.get('lastFetched') or 0),
            fetch_attempts=int(data.get('fetchAttempts') or 0),
            last_error=data.get('lastError'),
        )


@dataclass
class ClassificationCheckpoint:
    """Snapshot of a batch classification run, persisted after every batch."""

    results: Dict[str, List[str]] = field(default_factory=dict)
    current_index: int = 0
    total: int = 0
    cancelled: bool = False
    timestamp: int = field(default_factory=now_ms)

    @property
    def processed_artists(self) -> List[str]:
        return list(self.results.keys())

    @property
    def is_resumable(self) -> bool:
        return self.current_index < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': CHECKPOINT_ID,
            'results': {artist: list(genres) for artist, genres in self.results.items()},
            'processedArtists': self.processed_artists,
            'currentIndex': self.current_index,
            'total': self.total,
            'cancelled': self.cancelled,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassificationCheckpoint":
        return cls(
            results={artist: list(genres) for artist, genres in (data.get('results') or {}).items()},
            current_index=int(data.get('currentIndex', 0)),
            total=int(data.get('total', 0)),
            cancelled=bool(data.get('cancelled', False)),
            timestamp=int(data.get('timestamp') or now_ms()),
        )


@dataclass
class DateRange:
    earliest: int
    latest: int

    @property
    def year_span(self) -> float:
        return (self.latest - self.earliest) / (365.25 * 24 * 60 * 60)

    def to_dict(self) -> Dict[str, int]:
        return {'earliest': self.earliest, 'latest': self.latest}

    @classmethod
    def of(cls, events: List[ListeningEvent]) -> Optional["DateRange"]:
        if not events:
            return None
        timestamps = [e.timestamp for e in events]
        return cls(min(timestamps), max(timestamps))


@dataclass
class MergeInfo:
    existing: int = 0
    new: int = 0
    duplicates: int = 0
    duplicate_rate: float = 0.0
    total: int = 0
    sample_duplicates: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'existing': self.existing,
            'new': self.new,
            'duplicates': self.duplicates,
            'duplicateRate': self.duplicate_rate,
            'total': self.total,
            'sampleDuplicates': list(self.sample_duplicates),
        }


@dataclass
class MergeResult:
    data: List[ListeningEvent]
    merge_info: MergeInfo
    date_range: Optional[DateRange] = None


@dataclass
class GenreShare:
    genre: str
    count: int
    percentage: float


@dataclass
class TimePeriodGroup:
    """Events of one calendar bucket. `period_start` is Unix seconds."""

    period_start: int
    period_label: str
    listens: List[ListeningEvent] = field(default_factory=list)
    genres: List[GenreShare] = field(default_factory=list)

    def share_of(self, genre: str) -> float:
        for share in self.genres:
            if share.genre == genre:
                return share.percentage
        return 0.0


@dataclass
class GatewayArtistEvent:
    artist: str
    first_track: str
    first_listen: int
    trigger_genre: str
    before_share: float
    after_share: float
    growth: float
    period_index: int
    period_label: str
    plays_in_period: int
    total_plays: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'artist': self.artist,
            'firstTrack': self.first_track,
            'firstListen': self.first_listen,
            'triggerGenre': self.trigger_genre,
            'beforePercentage': round(self.before_share, 1),
            'afterPercentage': round(self.after_share, 1),
            'genreGrowth': round(self.growth, 1),
            'periodIndex': self.period_index,
            'periodLabel': self.period_label,
            'playsInPeriod': self.plays_in_period,
            'totalPlays': self.total_plays,
        }


@dataclass
class ProgressEvent:
    """Per-artist progress notification emitted during classification."""

    artist: str
    status: str
    genres: Optional[List[str]] = None
    current: Optional[int] = None
    total: Optional[int] = None
