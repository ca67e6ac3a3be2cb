"""Tests for the per-artist classification cascade."""
import asyncio
import threading

import pytest

from conftest import FakeResolver, FakeTagProvider
from soundtrail.classifier import (
    STATUS_CACHED,
    STATUS_COMPLETE,
    STATUS_FETCHING,
    CancellationToken,
    GenreClassifier,
)
from soundtrail.errors import ClassificationCancelled
from soundtrail.genre_cache import GenreCache


def build(cache, mbids=None, lastfm=None, listenbrainz=None, musicbrainz=None, resolver_error=None):
    resolver = FakeResolver(mbids or {}, error=resolver_error)
    providers = [
        FakeTagProvider("lastfm", lastfm),
        FakeTagProvider("listenbrainz", listenbrainz),
        FakeTagProvider("musicbrainz", musicbrainz),
    ]
    return GenreClassifier(cache, resolver, providers), resolver, providers


def classify(classifier, artist, token=None, on_progress=None):
    return asyncio.run(classifier.classify(artist, token, on_progress))


class TestCascade:

    def test_cache_hit_skips_providers(self, cache):
        cache.save("Radiohead", ["rock"])
        classifier, resolver, _ = build(cache)
        events = []

        result = classify(classifier, "Radiohead", on_progress=events.append)

        assert result.genres == ["rock"]
        assert result.source == "cache"
        assert resolver.calls == []
        assert [e.status for e in events] == [STATUS_CACHED]

    def test_unresolved_artist_gets_heuristic(self, cache):
        classifier, _, providers = build(cache)

        result = classify(classifier, "DJ Snake")

        assert result.genres == ["Electronic"]
        assert result.source == "heuristic"
        assert all(p.calls == [] for p in providers)
        assert cache.get_entry("DJ Snake").source == "heuristic"

    def test_first_provider_with_tags_wins(self, cache):
        classifier, _, (lastfm, listenbrainz, musicbrainz) = build(
            cache,
            mbids={"DJ Snake": "mbid-dj"},
            listenbrainz={"DJ Snake": ["house"]},
            musicbrainz={"DJ Snake": ["trap"]},
        )

        result = classify(classifier, "DJ Snake")

        assert result.genres == ["house", "Electronic"]
        assert result.source == "listenbrainz"
        assert lastfm.calls == ["DJ Snake"]
        assert musicbrainz.calls == []
        entry = cache.get_entry("DJ Snake")
        assert entry.source == "listenbrainz"
        assert entry.external_id == "mbid-dj"

    def test_lastfm_is_tried_first(self, cache):
        classifier, _, (_, listenbrainz, _) = build(
            cache,
            mbids={"Radiohead": "m"},
            lastfm={"Radiohead": ["alternative", "rock"]},
            listenbrainz={"Radiohead": ["indie"]},
        )
        result = classify(classifier, "Radiohead")
        assert result.genres == ["alternative", "rock"]
        assert result.source == "lastfm"
        assert listenbrainz.calls == []

    def test_no_tags_anywhere_falls_back_to_heuristic(self, cache):
        classifier, _, providers = build(cache, mbids={"The Cure": "m-cure"})

        result = classify(classifier, "The Cure")

        assert result.genres == ["Rock", "Indie"]
        assert result.source == "heuristic"
        assert all(p.calls == ["The Cure"] for p in providers)
        assert cache.get_entry("The Cure").external_id == "m-cure"

    def test_unexpected_error_caches_heuristic_fallback(self, cache):
        classifier, _, _ = build(cache, resolver_error=RuntimeError("socket closed"))

        result = classify(classifier, "Lil Nas X")

        assert result.genres == ["Hip Hop"]
        assert result.source == "heuristic_fallback"
        entry = cache.get_entry("Lil Nas X")
        assert entry.source == "heuristic_fallback"
        assert entry.last_error == "socket closed"

    def test_progress_events(self, cache):
        classifier, _, _ = build(cache)
        events = []
        classify(classifier, "Xyz", on_progress=events.append)
        assert [e.status for e in events] == [STATUS_FETCHING, STATUS_COMPLETE]
        assert events[-1].genres == ["Unknown"]

    def test_failing_progress_callback_is_ignored(self, cache):
        classifier, _, _ = build(cache)

        def broken(event):
            raise RuntimeError("ui gone")

        assert classify(classifier, "DJ Snake", on_progress=broken).genres == ["Electronic"]

    def test_cache_io_runs_off_the_event_loop_thread(self, store):
        class ThreadRecordingCache(GenreCache):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                self.threads = []

            def get(self, artist):
                self.threads.append(threading.get_ident())
                return super().get(artist)

            def save(self, *args, **kwargs):
                self.threads.append(threading.get_ident())
                return super().save(*args, **kwargs)

        cache = ThreadRecordingCache(store)
        classifier, _, _ = build(cache)

        result = classify(classifier, "DJ Snake")

        assert result.genres == ["Electronic"]
        assert len(cache.threads) == 2
        assert threading.get_ident() not in cache.threads
        assert cache.get_entry("DJ Snake").source == "heuristic"


class TestCancellation:

    def test_token(self):
        token = CancellationToken()
        assert not token.is_cancelled
        token.raise_if_cancelled()
        token.cancel()
        assert token.is_cancelled
        with pytest.raises(ClassificationCancelled):
            token.raise_if_cancelled()

    def test_cancelled_before_start(self, cache):
        classifier, resolver, _ = build(cache)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ClassificationCancelled):
            classify(classifier, "Radiohead", token)

        assert resolver.calls == []
        assert cache.get_entry("Radiohead") is None

    def test_cancelled_between_providers(self, cache):
        token = CancellationToken()
        resolver = FakeResolver({"Radiohead": "m"})
        lastfm = FakeTagProvider("lastfm", on_call=lambda ref: token.cancel())
        listenbrainz = FakeTagProvider("listenbrainz", {"Radiohead": ["rock"]})
        classifier = GenreClassifier(cache, resolver, [lastfm, listenbrainz])

        with pytest.raises(ClassificationCancelled):
            classify(classifier, "Radiohead", token)

        assert listenbrainz.calls == []
        assert cache.get_entry("Radiohead") is None
