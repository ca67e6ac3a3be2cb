"""
Export parsers: detect the source format of a decoded payload and map its
records onto ListeningEvent.
"""
import logging
from typing import Any

from ..errors import UnsupportedFormatError
from .base import ParseResult, make_event_id
from .detector import (
    FORMAT_LASTFM,
    FORMAT_LISTENBRAINZ,
    FORMAT_SPOTIFY,
    SUPPORTED_FORMATS,
    detect_format,
)
from .lastfm import parse_lastfm
from .listenbrainz import parse_listenbrainz
from .reader import FilePayload, is_jsonl, loads_json, loads_jsonl, read_payload
from .spotify import DEFAULT_MIN_MS_PLAYED, parse_spotify

logger = logging.getLogger(__name__)

__all__ = [
    'FORMAT_LASTFM',
    'FORMAT_LISTENBRAINZ',
    'FORMAT_SPOTIFY',
    'SUPPORTED_FORMATS',
    'FilePayload',
    'ParseResult',
    'detect_format',
    'make_event_id',
    'parse',
    'parse_file_content',
    'read_payload',
]


def parse(
    payload: Any,
    filename: str = "",
    batch_index: int = 0,
    min_ms_played: int = DEFAULT_MIN_MS_PLAYED,
) -> ParseResult:
    """Detect the format of `payload` and run the matching parser."""
    fmt = detect_format(payload, filename)
    logger.debug(f"Parsing {filename or '<payload>'} as {fmt}")

    if fmt == FORMAT_LISTENBRAINZ:
        return parse_listenbrainz(payload, batch_index)
    if fmt == FORMAT_SPOTIFY:
        return parse_spotify(payload, batch_index, min_ms_played)
    if fmt == FORMAT_LASTFM:
        return parse_lastfm(payload, batch_index)
    raise UnsupportedFormatError(f"Unsupported format: {fmt}")


def parse_file_content(
    text: str,
    filename: str = "",
    batch_index: int = 0,
    min_ms_played: int = DEFAULT_MIN_MS_PLAYED,
) -> ParseResult:
    """
    Decode raw file text and parse it.

    Raises:
        InvalidJSONError: text is not JSON (JSONL lines are skipped instead)
        UnrecognizedFormatError: payload matches no supported format
        NoListensError: the detected parser found nothing to import
    """
    warnings = []
    if is_jsonl(filename):
        loaded = loads_jsonl(text)
        payload = loaded.data
        if loaded.skipped_lines:
            warnings.append(f"Skipped {loaded.skipped_lines} malformed lines")
    else:
        payload = loads_json(text, filename)

    result = parse(payload, filename, batch_index, min_ms_played)
    result.warnings.extend(warnings)
    return result
