"""
Export format detection from payload shape, with a filename fallback.
"""
import logging
from typing import Any

from ..errors import UnrecognizedFormatError

logger = logging.getLogger(__name__)

FORMAT_LISTENBRAINZ = "listenbrainz"
FORMAT_SPOTIFY = "spotify"
FORMAT_LASTFM = "lastfm"

SUPPORTED_FORMATS = {
    FORMAT_LISTENBRAINZ: "ListenBrainz JSON/JSONL export or API response",
    FORMAT_SPOTIFY: "Spotify extended streaming history",
    FORMAT_LASTFM: "Last.fm scrobble export (recent tracks)",
}

_FILENAME_HINTS = [
    (FORMAT_SPOTIFY, ("spotify", "streaming_history")),
    (FORMAT_LISTENBRAINZ, ("listenbrainz",)),
    (FORMAT_LASTFM, ("lastfm", "last.fm", "scrobbles")),
]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _describe(payload: Any) -> str:
    if isinstance(payload, list):
        first = payload[0] if payload else None
        keys = sorted(first.keys()) if isinstance(first, dict) else []
        return f"array of {len(payload)} (first record keys: {keys[:10]})"
    if isinstance(payload, dict):
        return f"object (keys: {sorted(payload.keys())[:10]})"
    return type(payload).__name__


def detect_format(payload: Any, filename: str = "") -> str:
    """
    Pick the parser for a decoded export.

    Rules, first match wins:
    1. array whose first record has an integer listened_at and a track_metadata object -> listenbrainz
    2. array whose first record has ts and master_metadata_* fields -> spotify
    3. array whose first record has date.uts and artist -> lastfm
    4. object with payload.listens array -> listenbrainz (API response);
       object with recenttracks.track array -> lastfm (API response)
    5. filename hints

    Raises:
        UnrecognizedFormatError: nothing matched
    """
    if payload is None:
        raise UnrecognizedFormatError("No data provided")

    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        first = payload[0]

        if _is_number(first.get('listened_at')) and isinstance(first.get('track_metadata'), dict):
            logger.debug("Detected ListenBrainz export")
            return FORMAT_LISTENBRAINZ

        if first.get('ts') is not None and 'master_metadata_track_name' in first:
            logger.debug("Detected Spotify streaming history")
            return FORMAT_SPOTIFY

        date = first.get('date')
        if isinstance(date, dict) and date.get('uts') and first.get('artist'):
            logger.debug("Detected Last.fm scrobbles")
            return FORMAT_LASTFM

    if isinstance(payload, dict):
        inner = payload.get('payload')
        if isinstance(inner, dict) and isinstance(inner.get('listens'), list):
            logger.debug("Detected ListenBrainz API response")
            return FORMAT_LISTENBRAINZ
        recent = payload.get('recenttracks')
        if isinstance(recent, dict) and isinstance(recent.get('track'), list):
            logger.debug("Detected Last.fm API response")
            return FORMAT_LASTFM

    lower_name = (filename or "").lower()
    for fmt, hints in _FILENAME_HINTS:
        if any(hint in lower_name for hint in hints):
            logger.debug(f"Detected {fmt} by filename: {filename}")
            return fmt

    logger.debug(f"Unknown format for {filename or '<payload>'}: {_describe(payload)}")
    supported = "\n".join(f"  - {label}" for label in SUPPORTED_FORMATS.values())
    raise UnrecognizedFormatError(f"Unable to detect file format. Supported formats:\n{supported}")
