"""
ListenBrainz labs provider: genre tags voted onto an artist's similar-artist
graph.
"""
import logging
from collections import Counter
from typing import Any, List

from ..errors import ProviderRequestError
from .base import MAX_TAGS, ArtistRef, BaseProvider, Found, NotFound, ProviderError, ProviderResult

logger = logging.getLogger(__name__)

SIMILARITY_ALGORITHM = (
    "session_based_days_9000_session_300_contribution_5_threshold_15_limit_50_skip_30"
)


def most_common_tags(data: Any, limit: int = MAX_TAGS) -> List[str]:
    """Count tag names under data.artist.tag and return the most frequent."""
    if not isinstance(data, dict):
        return []
    artist = data.get('artist')
    tags = artist.get('tag') if isinstance(artist, dict) else None
    if not isinstance(tags, list):
        return []

    counts: Counter = Counter()
    for tag in tags:
        name = tag.get('name') if isinstance(tag, dict) else tag
        if isinstance(name, str) and name:
            counts[name] += 1
    return [name for name, _ in counts.most_common(limit)]


class ListenBrainzProvider(BaseProvider):
    """Similar-artist tag lookup on labs.api.listenbrainz.org"""

    name = "listenbrainz"
    BASE_URL = "https://labs.api.listenbrainz.org"

    async def fetch_genre_tags(self, artist: ArtistRef) -> ProviderResult:
        if not artist.mbid:
            return NotFound("No MBID")
        try:
            data = await self._request(
                f"{self.BASE_URL}/similar-artists",
                {'artist_mbid': artist.mbid, 'algorithm': SIMILARITY_ALGORITHM},
            )
        except ProviderRequestError as e:
            logger.warning(f"ListenBrainz similar-artists failed for {artist.mbid}: {e}")
            return ProviderError(str(e))

        tags = most_common_tags(data)
        if not tags:
            return NotFound("No similar-artist tags")
        return Found(tags=tags, external_id=artist.mbid, name=artist.name)
