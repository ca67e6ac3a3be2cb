"""
Last.fm provider: `artist.getInfo` top tags.

Requires an API key (config `providers.lastfm.api_key` or LASTFM_API_KEY).
Without one every lookup is a NotFound and no request is made.
"""
import logging
from typing import Any, Dict, Optional

from ..errors import ProviderRequestError
from .base import MAX_TAGS, ArtistRef, BaseProvider, Found, NotFound, ProviderError, ProviderResult

logger = logging.getLogger(__name__)


class LastFMProvider(BaseProvider):
    """Fetches an artist's top tags from Last.fm"""

    name = "lastfm"
    BASE_URL = "https://ws.audioscrobbler.com/2.0/"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key or ""
        if not self.api_key:
            logger.info("Last.fm API key not configured; Last.fm lookups disabled")

    @classmethod
    def from_config(cls, settings: Dict[str, Any], **kwargs) -> "LastFMProvider":
        kwargs.setdefault('api_key', settings.get('api_key'))
        return super().from_config(settings, **kwargs)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def fetch_genre_tags(self, artist: ArtistRef) -> ProviderResult:
        if not self.enabled:
            return NotFound("Last.fm API key not configured")

        params = {
            'method': 'artist.getInfo',
            'artist': artist.name,
            'api_key': self.api_key,
            'format': 'json',
            'autocorrect': 1,
        }
        try:
            data = await self._request(self.BASE_URL, params)
        except ProviderRequestError as e:
            logger.warning(f"Last.fm lookup failed for '{artist.name}': {e}")
            return ProviderError(str(e))

        if not isinstance(data, dict):
            return ProviderError("lastfm: unexpected response shape")
        if data.get('error'):
            return NotFound(data.get('message') or "Artist not found")

        info = data.get('artist')
        if not isinstance(info, dict):
            return NotFound()

        tags = (info.get('tags') or {}).get('tag') or []
        if isinstance(tags, dict):
            tags = [tags]
        names = [t['name'] for t in tags if isinstance(t, dict) and t.get('name')][:MAX_TAGS]
        if not names:
            return NotFound("No tags")
        return Found(
            tags=names,
            external_id=info.get('mbid') or artist.mbid,
            name=info.get('name') or artist.name,
        )
