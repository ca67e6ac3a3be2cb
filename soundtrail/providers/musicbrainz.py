"""
MusicBrainz provider: artist resolution and community tag lookup.

MusicBrainz asks for at most one request per second and a descriptive
User-Agent on every call.
"""
import logging
from typing import Any, Dict, List, Optional

from ..errors import ProviderRequestError
from .base import MAX_TAGS, ArtistRef, BaseProvider, Found, NotFound, ProviderError, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = 'soundtrail/0.1 (https://github.com/soundtrail/soundtrail)'


def top_voted_tags(data: Dict[str, Any], limit: int = MAX_TAGS) -> List[str]:
    """Tags and genres with at least one vote, most-voted first."""
    voted = [
        tag for tag in (data.get('tags') or []) + (data.get('genres') or [])
        if isinstance(tag, dict) and tag.get('name') and (tag.get('count') or 0) > 0
    ]
    voted.sort(key=lambda tag: tag.get('count') or 0, reverse=True)
    names: List[str] = []
    for tag in voted:
        if tag['name'] not in names:
            names.append(tag['name'])
    return names[:limit]


class MusicBrainzProvider(BaseProvider):
    """Resolves artist names to MBIDs and fetches their tags"""

    name = "musicbrainz"
    BASE_URL = "https://musicbrainz.org/ws/2"

    def __init__(self, user_agent: Optional[str] = None, **kwargs):
        super().__init__(user_agent=user_agent or DEFAULT_USER_AGENT, **kwargs)

    @classmethod
    def from_config(cls, settings: Dict[str, Any], **kwargs) -> "MusicBrainzProvider":
        kwargs.setdefault('user_agent', settings.get('user_agent'))
        return super().from_config(settings, **kwargs)

    async def resolve_artist(self, name: str) -> ProviderResult:
        """Search for the best match; Found carries the MBID and canonical name."""
        try:
            data = await self._request(
                f"{self.BASE_URL}/artist",
                {'query': name, 'fmt': 'json', 'limit': 1},
            )
        except ProviderRequestError as e:
            logger.warning(f"MusicBrainz search failed for '{name}': {e}")
            return ProviderError(str(e))

        artists = data.get('artists') if isinstance(data, dict) else None
        if not artists or not isinstance(artists[0], dict) or not artists[0].get('id'):
            logger.debug(f"MusicBrainz: no results for '{name}'")
            return NotFound()

        artist = artists[0]
        return Found(
            tags=top_voted_tags(artist),
            external_id=artist['id'],
            name=artist.get('name') or name,
        )

    async def fetch_genre_tags(self, artist: ArtistRef) -> ProviderResult:
        if not artist.mbid:
            return NotFound("No MBID")
        try:
            data = await self._request(
                f"{self.BASE_URL}/artist/{artist.mbid}",
                {'fmt': 'json', 'inc': 'tags+genres'},
            )
        except ProviderRequestError as e:
            logger.warning(f"MusicBrainz tag lookup failed for {artist.mbid}: {e}")
            return ProviderError(str(e))

        if not isinstance(data, dict):
            return ProviderError("musicbrainz: unexpected response shape")

        tags = top_voted_tags(data)
        if not tags:
            return NotFound("No voted tags")
        return Found(tags=tags, external_id=artist.mbid, name=artist.name)
