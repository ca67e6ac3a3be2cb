"""Metadata providers used by the genre classification cascade."""
from .base import ArtistRef, BaseProvider, Found, NotFound, ProviderError, ProviderResult
from .lastfm import LastFMProvider
from .listenbrainz import ListenBrainzProvider
from .musicbrainz import MusicBrainzProvider

__all__ = [
    'ArtistRef',
    'BaseProvider',
    'Found',
    'LastFMProvider',
    'ListenBrainzProvider',
    'MusicBrainzProvider',
    'NotFound',
    'ProviderError',
    'ProviderResult',
]
