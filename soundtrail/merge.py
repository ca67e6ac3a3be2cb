"""
Merge engine: deduplicate a freshly imported batch against the persisted
history and replace the stored collection with the union.

Duplicates are identified by (track, artist, timestamp-seconds) with case and
surrounding whitespace ignored. The first copy seen wins, existing events
first, then the new batch in input order. A kept copy that is still
unclassified adopts the genres of a classified duplicate; its id, position
and all other fields stay as they were.
"""
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .logging_utils import RunSummary, stage_timer
from .models import (
    DateRange,
    ListeningEvent,
    MergeInfo,
    MergeResult,
    is_unclassified,
)
from .storage import LISTENS, HistoryStore
from .timestamps import ensure_seconds

logger = logging.getLogger(__name__)

MAX_SAMPLE_DUPLICATES = 5

# Sanity window for a merged dataset: 1970-01-01 .. 2100-01-01
_SANE_MIN = 0
_SANE_MAX = 4102444800
_MAX_INSANE_PERCENTAGE = 10.0


def _normalized(event: ListeningEvent) -> ListeningEvent:
    seconds = ensure_seconds(event.timestamp)
    if seconds == event.timestamp:
        return event
    return replace(event, timestamp=seconds)


def _sample(event: ListeningEvent) -> Dict[str, str]:
    date = datetime.fromtimestamp(event.timestamp, tz=timezone.utc).date().isoformat()
    return {'track': event.track_name, 'artist': event.artist_name, 'date': date}


def _unique_id(event_id: str, used: set) -> str:
    if event_id not in used:
        return event_id
    n = 1
    while f"{event_id}-{n}" in used:
        n += 1
    return f"{event_id}-{n}"


def merge_listening_data(
    existing: Optional[List[ListeningEvent]],
    new: Optional[List[ListeningEvent]],
) -> MergeResult:
    """
    Union two event lists with first-wins deduplication.

    The result is sorted by timestamp ascending (stable, so ties keep input
    order), and merging the same batch twice is a no-op.
    """
    existing = existing or []
    new = new or []

    kept: Dict[Tuple, ListeningEvent] = {}
    order: List[Tuple] = []
    used_ids: set = set()
    duplicates = 0
    samples: List[Dict[str, str]] = []

    for event in list(existing) + list(new):
        event = _normalized(event)
        key = event.dedup_key()
        current = kept.get(key)

        if current is None:
            event_id = _unique_id(event.id, used_ids)
            if event_id != event.id:
                event = replace(event, id=event_id)
            used_ids.add(event_id)
            kept[key] = event
            order.append(key)
            continue

        duplicates += 1
        if len(samples) < MAX_SAMPLE_DUPLICATES:
            samples.append(_sample(event))
        if is_unclassified(current.genres) and not is_unclassified(event.genres):
            kept[key] = replace(
                current,
                genres=list(event.genres),
                genre_metadata=replace(event.genre_metadata),
            )

    merged = sorted((kept[key] for key in order), key=lambda e: e.timestamp)
    combined = len(existing) + len(new)
    info = MergeInfo(
        existing=len(existing),
        new=len(new),
        duplicates=duplicates,
        duplicate_rate=round(duplicates / combined * 100, 1) if combined else 0.0,
        total=len(merged),
        sample_duplicates=samples,
    )
    return MergeResult(data=merged, merge_info=info, date_range=DateRange.of(merged))


def validate_listening_data(events: List[ListeningEvent]) -> Dict[str, Any]:
    """
    Post-merge sanity check.

    Fails when more than 10% of timestamps fall outside 1970-2100, which
    means the source export is corrupt rather than a few stray records.
    """
    if not events:
        return {'is_valid': True, 'message': 'Empty dataset (no listens)'}

    timestamps = [ensure_seconds(e.timestamp) for e in events]
    timestamps = [ts for ts in timestamps if ts is not None and ts > 0]
    if not timestamps:
        return {'is_valid': False, 'error': 'No valid timestamps found in data'}

    insane = [ts for ts in timestamps if ts < _SANE_MIN or ts > _SANE_MAX]
    insane_pct = len(insane) / len(timestamps) * 100
    if insane_pct > _MAX_INSANE_PERCENTAGE:
        logger.error(
            f"Validation failed: {len(insane):,}/{len(timestamps):,} timestamps out of range "
            f"(sample: {insane[:5]})"
        )
        return {
            'is_valid': False,
            'error': (
                f"Data contains too many invalid timestamps ({insane_pct:.1f}%). "
                f"Please re-export from source."
            ),
        }

    date_range = DateRange(min(timestamps), max(timestamps))
    return {
        'is_valid': True,
        'message': f"Valid dataset with {len(events):,} listens",
        'date_range': date_range,
        'year_span': round(date_range.year_span, 1),
    }


class MergeEngine:
    """Owns the persisted listens collection during an import."""

    def __init__(self, store: HistoryStore):
        self.store = store

    def load_existing(self) -> List[ListeningEvent]:
        events = []
        skipped = 0
        for record in self.store.get_all(LISTENS):
            try:
                events.append(ListeningEvent.from_dict(record))
            except ValueError as e:
                skipped += 1
                logger.debug(f"Ignoring stored record: {e}")
        if skipped:
            logger.warning(f"Ignored {skipped:,} stored listens without a usable timestamp")
        return events

    def merge(self, new: List[ListeningEvent]) -> MergeResult:
        """Compute the merge against the store without writing anything."""
        with stage_timer("Merge with stored history", logger):
            result = merge_listening_data(self.load_existing(), new)

        summary = RunSummary("Merge Summary", logger)
        for key, value in result.merge_info.to_dict().items():
            if key != 'sampleDuplicates':
                summary.add(key, value)
        summary.log()
        return result

    def persist(self, events: List[ListeningEvent]) -> int:
        """Replace the stored collection (clear then bulk insert, one transaction)."""
        written = self.store.replace_all(LISTENS, [e.to_dict() for e in events])
        logger.info(f"Persisted {written:,} listens")
        return written

    def merge_and_persist(self, new: List[ListeningEvent]) -> MergeResult:
        result = self.merge(new)
        self.persist(result.data)
        return result
