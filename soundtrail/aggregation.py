"""
Temporal aggregation of listening events into calendar buckets with
per-bucket genre distributions.

Bucket boundaries are computed in local time: days start at midnight, weeks
on Sunday, quarters on Jan/Apr/Jul/Oct 1st.
"""
import logging
import math
from collections import OrderedDict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .models import GenreShare, ListeningEvent, TimePeriodGroup
from .string_utils import normalize_key

logger = logging.getLogger(__name__)


class TimePeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


def suggest_optimal_period(listen_count: int) -> TimePeriod:
    """Pick a granularity that keeps the number of buckets readable"""
    if listen_count < 100:
        return TimePeriod.DAILY
    if listen_count < 1000:
        return TimePeriod.WEEKLY
    if listen_count < 10000:
        return TimePeriod.MONTHLY
    if listen_count < 50000:
        return TimePeriod.QUARTERLY
    return TimePeriod.YEARLY


def _start_datetime(timestamp: int, period: TimePeriod) -> datetime:
    moment = datetime.fromtimestamp(timestamp)
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == TimePeriod.DAILY:
        return midnight
    if period == TimePeriod.WEEKLY:
        # isoweekday: Monday=1 .. Sunday=7
        return midnight - timedelta(days=moment.isoweekday() % 7)
    if period == TimePeriod.MONTHLY:
        return midnight.replace(day=1)
    if period == TimePeriod.QUARTERLY:
        first_month = (moment.month - 1) // 3 * 3 + 1
        return midnight.replace(month=first_month, day=1)
    if period == TimePeriod.YEARLY:
        return midnight.replace(month=1, day=1)
    raise ValueError(f"Unknown time period: {period!r}")


def period_start(timestamp: int, period: TimePeriod) -> int:
    """Unix seconds of the local-time start of the bucket containing `timestamp`"""
    return int(_start_datetime(timestamp, TimePeriod(period)).timestamp())


def _short_date(moment: datetime) -> str:
    return f"{moment:%b} {moment.day}, {moment.year}"


def format_period_label(start: int, period: TimePeriod) -> str:
    moment = datetime.fromtimestamp(start)
    period = TimePeriod(period)

    if period == TimePeriod.DAILY:
        return _short_date(moment)
    if period == TimePeriod.WEEKLY:
        return f"Week of {_short_date(moment)}"
    if period == TimePeriod.MONTHLY:
        return f"{moment:%B} {moment.year}"
    if period == TimePeriod.QUARTERLY:
        return f"Q{(moment.month - 1) // 3 + 1} {moment.year}"
    return str(moment.year)


def genres_for(event: ListeningEvent, genre_map: Optional[Mapping[str, List[str]]]) -> List[str]:
    """Classified genres for an event's artist, else the event's own genres"""
    if genre_map:
        genres = genre_map.get(event.artist_name)
        if genres is None:
            genres = genre_map.get(normalize_key(event.artist_name))
        if genres:
            return list(genres)
    return list(event.genres)


def group_listens_by_time_period(
    events: List[ListeningEvent],
    period: TimePeriod,
    genre_map: Optional[Mapping[str, List[str]]] = None,
) -> List[TimePeriodGroup]:
    """
    Bucket events by period, oldest bucket first

    Each bucket's genre percentages are relative to the number of listens in
    that bucket; a listen with several genres counts toward each, so the
    percentages can add up to more than 100.
    """
    period = TimePeriod(period)
    buckets: Dict[int, TimePeriodGroup] = {}
    counts: Dict[int, "OrderedDict[str, int]"] = {}

    for event in events:
        start = period_start(event.timestamp, period)
        group = buckets.get(start)
        if group is None:
            group = TimePeriodGroup(period_start=start, period_label=format_period_label(start, period))
            buckets[start] = group
            counts[start] = OrderedDict()
        group.listens.append(event)

        tally = counts[start]
        for genre in genres_for(event, genre_map):
            tally[genre] = tally.get(genre, 0) + 1

    groups = [buckets[start] for start in sorted(buckets)]
    for group in groups:
        listens = len(group.listens)
        shares = [
            GenreShare(genre=genre, count=count, percentage=count / listens * 100)
            for genre, count in counts[group.period_start].items()
        ]
        shares.sort(key=lambda share: share.count, reverse=True)
        group.genres = shares

    logger.debug(f"Grouped {len(events):,} listens into {len(groups)} {period.value} periods")
    return groups


def calculate_genre_transitions(groups: List[TimePeriodGroup]) -> List[Dict[str, Any]]:
    """Per-genre count change between each pair of consecutive periods"""
    transitions = []
    for current, following in zip(groups, groups[1:]):
        current_counts = {share.genre: share.count for share in current.genres}
        next_counts = {share.genre: share.count for share in following.genres}

        genres = list(current_counts)
        genres.extend(g for g in next_counts if g not in current_counts)

        changes = []
        for genre in genres:
            from_count = current_counts.get(genre, 0)
            to_count = next_counts.get(genre, 0)
            changes.append({
                'genre': genre,
                'from': {'period': current.period_label, 'count': from_count},
                'to': {'period': following.period_label, 'count': to_count},
                'change': to_count - from_count,
            })

        transitions.append({
            'from_period': current.period_label,
            'to_period': following.period_label,
            'transitions': changes,
        })
    return transitions


def calculate_genre_diversity(genres: List[GenreShare]) -> float:
    """Shannon entropy of the distribution normalized to [0, 1]"""
    if len(genres) <= 1:
        return 0.0
    total = sum(share.count for share in genres)
    if total <= 0:
        return 0.0

    entropy = 0.0
    for share in genres:
        if share.count > 0:
            p = share.count / total
            entropy -= p * math.log2(p)
    return entropy / math.log2(len(genres))
