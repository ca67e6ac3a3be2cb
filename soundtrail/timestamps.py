"""
Timestamp normalization and validation.

Every timestamp that enters the history store is an integer count of Unix
seconds inside [MIN_VALID_TIMESTAMP, MAX_VALID_TIMESTAMP]. Exports encode
time in several ways (ISO-8601 strings, Unix seconds, Unix milliseconds and
spreadsheet serial days); this module detects the encoding, converts it, and
filters out records that cannot be placed in the valid window.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from .logging_utils import RunSummary

if TYPE_CHECKING:
    from .models import ListeningEvent
    from .storage import HistoryStore

logger = logging.getLogger(__name__)

MIN_VALID_TIMESTAMP = 946684800    # 2000-01-01T00:00:00Z
MAX_VALID_TIMESTAMP = 2147483647   # 2038-01-19, 32-bit epoch limit

MS_DETECTION_THRESHOLD = 10 ** 12  # raw values above this are milliseconds
MS_STORED_THRESHOLD = 10 ** 10     # stored values above this are milliseconds
SECONDS_RANGE = (10 ** 9, 2 * 10 ** 9)
EXCEL_SERIAL_RANGE = (40000, 60000)

SECONDS_PER_DAY = 24 * 60 * 60
SECONDS_PER_YEAR = 365.25 * SECONDS_PER_DAY

# Serial day 1 is 1900-01-01. Naive, so a serial lands on local midnight of
# its calendar day.
_EXCEL_EPOCH = datetime(1900, 1, 1)

_ISO_LIKE_RE = re.compile(r"^\s*\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")

FORMAT_ISO8601 = "iso8601"
FORMAT_UNIX_MS = "unix_ms"
FORMAT_UNIX_SEC = "unix_sec"
FORMAT_EXCEL_SERIAL = "excel_serial"
FORMAT_UNKNOWN = "unknown"

Number = Union[int, float]


def _as_number(value: Any) -> Optional[Number]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return None
    return None


def detect_timestamp_format(value: Any) -> str:
    """
    Classify a raw timestamp value.

    Checked in order: ISO-8601 date-time string, Unix milliseconds (> 10^12),
    Unix seconds ([10^9, 2*10^9)), spreadsheet serial days ([40000, 60000)).
    Numeric strings are treated as numbers.

    Returns:
        One of iso8601, unix_ms, unix_sec, excel_serial, unknown
    """
    if isinstance(value, str) and ('T' in value or _ISO_LIKE_RE.match(value)):
        return FORMAT_ISO8601

    number = _as_number(value)
    if number is None:
        return FORMAT_UNKNOWN
    if number > MS_DETECTION_THRESHOLD:
        return FORMAT_UNIX_MS
    if SECONDS_RANGE[0] <= number < SECONDS_RANGE[1]:
        return FORMAT_UNIX_SEC
    if EXCEL_SERIAL_RANGE[0] <= number < EXCEL_SERIAL_RANGE[1]:
        return FORMAT_EXCEL_SERIAL
    return FORMAT_UNKNOWN


def _parse_iso8601(text: str) -> Optional[int]:
    candidate = text.strip()
    if candidate.endswith('Z') or candidate.endswith('z'):
        candidate = candidate[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    try:
        # naive values are read as local time
        return int(parsed.timestamp())
    except (OverflowError, OSError, ValueError):
        return None


def excel_serial_to_unix(serial: Number) -> int:
    """
    Convert a spreadsheet serial day number to Unix seconds.

    Spreadsheets count 1900-02-29, a day that never existed, so serials
    after day 60 are shifted by two days and earlier ones by one. The result
    is local midnight of the serial's day.
    """
    adjusted_days = serial - 2 if serial > 60 else serial - 1
    return int((_EXCEL_EPOCH + timedelta(days=adjusted_days)).timestamp())


def convert_timestamp(value: Any, fmt: str) -> Optional[int]:
    """Convert `value` in encoding `fmt` to Unix seconds; None when impossible."""
    if fmt == FORMAT_ISO8601:
        return _parse_iso8601(value) if isinstance(value, str) else None

    number = _as_number(value)
    if number is None:
        return None
    if fmt == FORMAT_UNIX_MS:
        return int(number // 1000)
    if fmt == FORMAT_UNIX_SEC:
        return int(number)
    if fmt == FORMAT_EXCEL_SERIAL:
        return excel_serial_to_unix(number)

    logger.debug(f"Cannot convert timestamp of unknown format: {value!r}")
    return None


def normalize_timestamp(value: Any) -> Optional[int]:
    """Detect and convert in one step. Canonical seconds pass through unchanged."""
    return convert_timestamp(value, detect_timestamp_format(value))


def ensure_seconds(value: Any) -> Optional[int]:
    """
    Bring a possibly stored timestamp to seconds.

    Looser than normalize_timestamp(): any number above 10^10 is taken as
    milliseconds and anything else numeric is kept as seconds. Used on values
    that were already persisted once, e.g. legacy records and backups.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and detect_timestamp_format(value) == FORMAT_ISO8601:
        return _parse_iso8601(value)
    number = _as_number(value)
    if number is None:
        return None
    if number > MS_STORED_THRESHOLD:
        return int(number // 1000)
    return int(number)


def is_valid_timestamp(ts: Any) -> bool:
    return (
        isinstance(ts, int)
        and not isinstance(ts, bool)
        and MIN_VALID_TIMESTAMP <= ts <= MAX_VALID_TIMESTAMP
    )


def format_timestamp(ts: Optional[Number]) -> str:
    if ts is None:
        return "invalid"
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return "out of range"


def _recover_timestamp(additional_info: Dict[str, Any]) -> Optional[int]:
    original = (additional_info or {}).get('original_timestamp')
    if original in (None, ''):
        return None
    recovered = normalize_timestamp(original)
    return recovered if is_valid_timestamp(recovered) else None


@dataclass
class TimestampValidationResult:
    listens: List["ListeningEvent"]
    stats: Dict[str, int]
    issues: List[Dict[str, Any]] = field(default_factory=list)
    earliest: Optional[int] = None
    latest: Optional[int] = None


def validate_and_clean_timestamps(events: List["ListeningEvent"]) -> TimestampValidationResult:
    """
    Per-record timestamp pass over a batch of events.

    Millisecond values are divided down. Values outside the valid window are
    recovered from `additional_info['original_timestamp']` when that parses
    into the window; otherwise the record is dropped. Never raises for bad
    records; the batch-level decision belongs to validate_dataset().
    """
    summary = RunSummary("Timestamp validation", logger)
    cleaned_events = []
    issues: List[Dict[str, Any]] = []
    converted_from_ms = cleaned = removed = recovered_count = 0

    for index, event in enumerate(events):
        ts = event.timestamp
        original = ts

        if ts is None or isinstance(ts, bool) or not isinstance(ts, (int, float)) or ts <= 0:
            issues.append({
                'index': index, 'track': event.track_name, 'artist': event.artist_name,
                'issue': 'Missing or invalid timestamp', 'original': original,
            })
            removed += 1
            continue

        from_ms = ts > MS_STORED_THRESHOLD
        if from_ms:
            ts = int(ts // 1000)
            converted_from_ms += 1
            cleaned += 1
        ts = int(ts)

        recovered = False
        if not is_valid_timestamp(ts):
            issues.append({
                'index': index, 'track': event.track_name, 'artist': event.artist_name,
                'issue': ('Timestamp too early (before 2000)' if ts < MIN_VALID_TIMESTAMP
                          else 'Timestamp too late (after 2038)'),
                'original': original, 'cleaned': ts, 'date': format_timestamp(ts),
            })
            fallback = _recover_timestamp(event.additional_info)
            if fallback is None:
                removed += 1
                continue
            logger.debug(f"Recovered timestamp for '{event.track_name}' from original_timestamp")
            ts = fallback
            recovered = True
            recovered_count += 1
            cleaned += 1

        cleaned_events.append(replace(
            event,
            timestamp=ts,
            timestamp_metadata={
                'validated': True,
                'originalFormat': 'milliseconds' if from_ms else 'seconds',
                'convertedFromMs': from_ms,
                'recovered': recovered,
            },
        ))

    stats = {
        'original': len(events),
        'valid': len(cleaned_events),
        'removed': removed,
        'cleaned': cleaned,
        'converted_from_ms': converted_from_ms,
        'recovered': recovered_count,
        'issues': len(issues),
    }
    for key, value in stats.items():
        summary.add(key, value)

    earliest = latest = None
    if cleaned_events:
        earliest = min(e.timestamp for e in cleaned_events)
        latest = max(e.timestamp for e in cleaned_events)
        summary.add('date_range', f"{format_timestamp(earliest)[:10]} to {format_timestamp(latest)[:10]}")
    summary.log()

    for i, issue in enumerate(issues[:5], 1):
        logger.info(f"  {i}. '{issue['track']}' by {issue['artist']}: {issue['issue']}")
    if removed:
        logger.warning(f"Removed {removed} listens with invalid timestamps")

    return TimestampValidationResult(cleaned_events, stats, issues, earliest, latest)


def validate_timestamp_range(events: List["ListeningEvent"]) -> Dict[str, Any]:
    """Report min/max of a batch and whether both fall inside the valid window."""
    timestamps = [e.timestamp for e in events if isinstance(e.timestamp, int) and e.timestamp > 0]
    if not events:
        return {'valid': False, 'error': 'No listens to validate'}
    if not timestamps:
        return {'valid': False, 'error': 'No valid timestamps found'}

    low, high = min(timestamps), max(timestamps)
    if low < MIN_VALID_TIMESTAMP:
        return {'valid': False, 'min': low, 'max': high,
                'error': f"Timestamps before streaming era detected ({format_timestamp(low)})"}
    if high > MAX_VALID_TIMESTAMP:
        return {'valid': False, 'min': low, 'max': high,
                'error': f"Timestamps beyond 2038 detected ({format_timestamp(high)})"}
    return {
        'valid': True,
        'min': low,
        'max': high,
        'year_span': round((high - low) / SECONDS_PER_YEAR, 1),
    }


@dataclass
class DatasetValidation:
    is_valid: bool
    error: Optional[str] = None
    details: str = ""
    debug_info: Dict[str, Any] = field(default_factory=dict)
    earliest: Optional[int] = None
    latest: Optional[int] = None
    year_span: float = 0.0
    valid_percentage: float = 0.0


def validate_dataset(
    events: List["ListeningEvent"],
    min_valid_percentage: float = 90.0,
    min_year_span: float = 0.08,
) -> DatasetValidation:
    """
    Batch-level sanity check on a merged dataset.

    Fails when fewer than `min_valid_percentage` percent of timestamps are in
    the valid window (source data is corrupt), or when the valid timestamps
    span less than `min_year_span` years (about one month by default).
    """
    if not events:
        return DatasetValidation(
            is_valid=False,
            error='No listens found in uploaded file.',
            details='Please upload a ListenBrainz export, Spotify extended streaming history or Last.fm scrobble export.',
        )

    timestamps = [e.timestamp for e in events]
    valid = [ts for ts in timestamps if is_valid_timestamp(ts)]
    valid_percentage = len(valid) / len(timestamps) * 100
    logger.debug(f"Timestamp validation: {valid_percentage:.1f}% valid ({len(valid)}/{len(timestamps)})")

    if valid_percentage < min_valid_percentage:
        sample_invalid = next((ts for ts in timestamps if not is_valid_timestamp(ts)), None)
        return DatasetValidation(
            is_valid=False,
            error=f"Data contains too many invalid timestamps ({valid_percentage:.1f}% valid).",
            details=(f"Found {len(valid)} valid out of {len(timestamps)} total listens. "
                     f"Please re-export the file from its source."),
            debug_info={
                'sample_invalid_timestamp': sample_invalid,
                'expected_format': 'Unix timestamp in seconds (e.g., 1609459200)',
                'first_timestamp': timestamps[0],
            },
            valid_percentage=valid_percentage,
        )

    earliest, latest = min(valid), max(valid)
    year_span = (latest - earliest) / SECONDS_PER_YEAR
    if year_span < min_year_span:
        return DatasetValidation(
            is_valid=False,
            error='Data span too short.',
            details=f"Found only {year_span * 365:.0f} days of listening history. Need at least 1 month.",
            debug_info={'earliest': earliest, 'latest': latest, 'year_span': round(year_span, 3)},
            earliest=earliest,
            latest=latest,
            year_span=year_span,
            valid_percentage=valid_percentage,
        )

    return DatasetValidation(
        is_valid=True,
        earliest=earliest,
        latest=latest,
        year_span=round(year_span, 1),
        valid_percentage=valid_percentage,
    )


def clean_stored_timestamps(store: "HistoryStore") -> Dict[str, Any]:
    """
    Repair the persisted listens collection in place.

    Records whose timestamp is missing or outside the valid window are
    recovered from their original_timestamp annotation where possible and
    deleted otherwise. Runs as one transaction.
    """
    summary = RunSummary("Stored timestamp cleanup", logger)
    cleaned = removed = skipped = 0
    issues: List[Dict[str, Any]] = []

    with store.transaction():
        records = store.get_all('listens')
        for record in records:
            ts = ensure_seconds(record.get('timestamp') or record.get('listened_at'))
            if is_valid_timestamp(ts):
                if ts != record.get('timestamp'):
                    store.put('listens', {**record, 'timestamp': ts})
                    cleaned += 1
                else:
                    skipped += 1
                continue

            fallback = _recover_timestamp(record.get('additionalInfo') or {})
            if fallback is not None:
                store.put('listens', {
                    **record,
                    'timestamp': fallback,
                    'timestampMetadata': {
                        'validated': True,
                        'recovered': True,
                        'originalValue': record.get('timestamp'),
                        'recoveredFrom': 'original_timestamp',
                    },
                })
                cleaned += 1
                continue

            issues.append({
                'id': record.get('id'),
                'track': record.get('trackName', 'Unknown'),
                'artist': record.get('artistName', 'Unknown'),
                'timestamp': ts,
                'date': format_timestamp(ts),
            })
            store.delete('listens', record.get('id'))
            removed += 1

    summary.add('total_listens', len(records))
    summary.add('valid_skipped', skipped)
    summary.add('cleaned_or_recovered', cleaned)
    summary.add('removed_corrupt', removed)
    summary.add('remaining', skipped + cleaned)
    summary.log()

    return {
        'total': len(records),
        'cleaned': cleaned,
        'removed': removed,
        'remaining': skipped + cleaned,
        'issues': issues[:10],
    }
