"""Cancel a classification run, resume it, and write the genres back onto stored listens."""
import asyncio

import pytest

from conftest import BASE_TS, DAY, FakeResolver, FakeTagProvider, make_event
from soundtrail.classifier import CancellationToken, GenreClassifier
from soundtrail.enrichment import listens_needing_genres, update_listens_with_genre_map
from soundtrail.errors import ClassificationCancelled
from soundtrail.merge import MergeEngine
from soundtrail.orchestrator import BatchClassifier, CheckpointStore, ClassificationState

TAGS = {
    "Aldous": ["rock"],
    "Brigid": ["jazz"],
    "Corvin": ["techno"],
    "Dorian": ["folk"],
    "Evander": ["ambient"],
    "Fenwick": ["soul"],
}
ARTISTS = list(TAGS)


@pytest.fixture()
def engine(store):
    engine = MergeEngine(store)
    engine.persist([
        make_event(artist=artist, track=f"{artist} {n}", timestamp=BASE_TS + (i * 2 + n) * DAY)
        for i, artist in enumerate(ARTISTS)
        for n in range(2)
    ])
    return engine


def build_runner(store, cache):
    lastfm = FakeTagProvider("lastfm", TAGS)
    resolver = FakeResolver({artist: f"mbid-{artist}" for artist in ARTISTS})
    classifier = GenreClassifier(cache, resolver, [lastfm])
    return BatchClassifier(classifier, CheckpointStore(store), concurrency=2, batch_delay=0), lastfm


def test_cancel_resume_and_update(store, cache, engine):
    pending = listens_needing_genres(engine.load_existing())
    assert pending['artist_list'] == ARTISTS

    token = CancellationToken()
    runner, first_provider = build_runner(store, cache)

    def stop_after_first_batch(results):
        token.cancel()

    with pytest.raises(ClassificationCancelled):
        asyncio.run(runner.run(pending['artist_list'], on_batch_complete=stop_after_first_batch, token=token))
    assert runner.state == ClassificationState.CANCELLED

    checkpoint = CheckpointStore(store).resumable()
    assert list(checkpoint.results) == ["Aldous", "Brigid"]
    assert first_provider.calls == ["Aldous", "Brigid"]

    partial = update_listens_with_genre_map(store, checkpoint.results)
    assert partial == {'updated': 4, 'artists': 2}
    assert listens_needing_genres(engine.load_existing())['artists'] == 4

    resumed, second_provider = build_runner(store, cache)
    results = asyncio.run(resumed.run(ARTISTS, resume=checkpoint))

    assert sorted(second_provider.calls) == ["Corvin", "Dorian", "Evander", "Fenwick"]
    assert list(results) == ARTISTS
    assert all(results[a][0] == TAGS[a][0] for a in ARTISTS)
    assert CheckpointStore(store).load() is None

    final = update_listens_with_genre_map(store, results)
    assert final == {'updated': 12, 'artists': 6}

    events = engine.load_existing()
    assert listens_needing_genres(events)['artists'] == 0
    assert {e.genres[0] for e in events} == {"rock", "jazz", "techno", "folk", "ambient", "soul"}
    assert all(e.genre_metadata.source == "classification" for e in events)


def test_classified_artists_are_served_from_cache(store, cache, engine):
    runner, _ = build_runner(store, cache)
    asyncio.run(runner.run(ARTISTS))

    again, provider = build_runner(store, cache)
    results = asyncio.run(again.run(ARTISTS))

    assert provider.calls == []
    assert results["Brigid"][0] == "jazz"
    assert cache.get_entry("Brigid").source == "lastfm"
