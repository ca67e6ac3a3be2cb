"""
Gateway-artist detection.

A gateway artist is one first heard in some period, played heavily in that
period, and whose primary genre's share of listening grows noticeably in the
periods right after compared with the periods right before.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .aggregation import genres_for
from .models import GatewayArtistEvent, ListeningEvent, TimePeriodGroup

logger = logging.getLogger(__name__)


@dataclass
class GatewayPolicy:
    min_listens_in_period: int = 10
    min_growth_points: float = 5.0
    window_periods: int = 2

    @classmethod
    def from_config(cls, settings: Mapping[str, Any]) -> "GatewayPolicy":
        return cls(
            min_listens_in_period=int(settings.get('min_listens_in_period', 10)),
            min_growth_points=float(settings.get('min_growth_points', 5.0)),
            window_periods=int(settings.get('window_periods', 2)),
        )


def genre_distribution(
    groups: List[TimePeriodGroup],
    genre_map: Optional[Mapping[str, List[str]]],
) -> Dict[str, float]:
    """
    Genre shares across several periods

    The denominator is the number of genre assignments, not listens, so the
    shares add up to 100.
    """
    counts: Dict[str, int] = {}
    assignments = 0
    for group in groups:
        for event in group.listens:
            for genre in genres_for(event, genre_map):
                counts[genre] = counts.get(genre, 0) + 1
                assignments += 1
    if not assignments:
        return {}
    return {genre: count / assignments * 100 for genre, count in counts.items()}


def _first_appearances(events: List[ListeningEvent]) -> Dict[str, ListeningEvent]:
    first: Dict[str, ListeningEvent] = {}
    for event in events:
        seen = first.get(event.artist_name)
        if seen is None or event.timestamp < seen.timestamp:
            first[event.artist_name] = event
    return first


def detect_gateway_artists(
    groups: List[TimePeriodGroup],
    genre_map: Optional[Mapping[str, List[str]]],
    events: List[ListeningEvent],
    policy: Optional[GatewayPolicy] = None,
) -> List[GatewayArtistEvent]:
    """
    Find gateway artists, largest genre growth first

    Args:
        groups: Output of group_listens_by_time_period, oldest first
        genre_map: artist -> genres from classification
        events: Every listen (used for first appearances and play totals)
        policy: Thresholds
    """
    policy = policy or GatewayPolicy()
    first_seen = _first_appearances(events)
    total_plays: Dict[str, int] = {}
    for event in events:
        total_plays[event.artist_name] = total_plays.get(event.artist_name, 0) + 1

    window = policy.window_periods
    gateways: List[GatewayArtistEvent] = []

    for i, group in enumerate(groups):
        start = group.period_start
        end = groups[i + 1].period_start if i + 1 < len(groups) else None

        new_artist_plays: Dict[str, int] = {}
        for event in group.listens:
            first = first_seen.get(event.artist_name)
            if first is None or first.timestamp < start:
                continue
            if end is not None and first.timestamp >= end:
                continue
            new_artist_plays[event.artist_name] = new_artist_plays.get(event.artist_name, 0) + 1

        candidates = {a: n for a, n in new_artist_plays.items() if n >= policy.min_listens_in_period}
        if not candidates:
            continue

        before = genre_distribution(groups[max(0, i - window):i], genre_map)
        after = genre_distribution(groups[i + 1:i + 1 + window], genre_map)

        for artist, plays in candidates.items():
            first = first_seen[artist]
            primary = genres_for(first, genre_map)[0]
            before_share = before.get(primary, 0.0)
            after_share = after.get(primary, 0.0)
            growth = after_share - before_share
            if growth < policy.min_growth_points:
                continue

            gateways.append(GatewayArtistEvent(
                artist=artist,
                first_track=first.track_name,
                first_listen=first.timestamp,
                trigger_genre=primary,
                before_share=before_share,
                after_share=after_share,
                growth=growth,
                period_index=i,
                period_label=group.period_label,
                plays_in_period=plays,
                total_plays=total_plays.get(artist, 0),
            ))

    gateways.sort(key=lambda g: g.growth, reverse=True)
    logger.info(f"Detected {len(gateways)} gateway artists across {len(groups)} periods")
    return gateways


def top_artists_for_genre(
    events: List[ListeningEvent],
    genre_map: Optional[Mapping[str, List[str]]],
    genre: str,
    limit: int = 20,
) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for event in events:
        if genre in genres_for(event, genre_map):
            counts[event.artist_name] = counts.get(event.artist_name, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [{'artist': artist, 'count': count} for artist, count in ranked[:limit]]


def genre_peak_period(groups: List[TimePeriodGroup], genre: str) -> Optional[Dict[str, Any]]:
    """The period where `genre` had its highest share, or None if never heard"""
    peak = None
    for group in groups:
        for share in group.genres:
            if share.genre == genre and share.percentage > (peak['percentage'] if peak else 0):
                peak = {
                    'period_label': group.period_label,
                    'percentage': share.percentage,
                    'count': share.count,
                }
    return peak


def genre_discovery_date(
    events: List[ListeningEvent],
    genre_map: Optional[Mapping[str, List[str]]],
    genre: str,
) -> Optional[int]:
    """Timestamp of the earliest listen tagged with `genre`"""
    matches = [e.timestamp for e in events if genre in genres_for(e, genre_map)]
    return min(matches) if matches else None


def generate_milestones(gateways: List[GatewayArtistEvent], limit: int = 10) -> List[Dict[str, Any]]:
    """Chronological milestone entries for the strongest gateway artists"""
    strongest = sorted(gateways, key=lambda g: g.growth, reverse=True)[:limit]
    milestones = []
    for gateway in sorted(strongest, key=lambda g: g.first_listen):
        milestones.append({
            'timestamp': gateway.first_listen,
            'date': datetime.fromtimestamp(gateway.first_listen).date().isoformat(),
            'artist': gateway.artist,
            'genre': gateway.trigger_genre,
            'title': f"Discovered {gateway.artist}",
            'subtitle': f'First track: "{gateway.first_track}"',
            'description': f"Led to {round(gateway.growth)}% growth in {gateway.trigger_genre}",
            'growth': round(gateway.growth, 1),
            'period_label': gateway.period_label,
        })
    return milestones
