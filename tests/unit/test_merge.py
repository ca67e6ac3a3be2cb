"""Tests for the merge engine."""
from conftest import BASE_TS, DAY, make_event
from soundtrail.merge import MergeEngine, merge_listening_data, validate_listening_data
from soundtrail.models import GenreMetadata
from soundtrail.storage import LISTENS


class TestMergeListeningData:

    def test_disjoint_union_sorted(self):
        existing = [make_event(track="b", timestamp=BASE_TS + 100)]
        new = [make_event(track="a", timestamp=BASE_TS), make_event(track="c", timestamp=BASE_TS + 200)]

        result = merge_listening_data(existing, new)

        assert [e.track_name for e in result.data] == ["a", "b", "c"]
        assert result.merge_info.duplicates == 0
        assert result.merge_info.total == 3
        assert result.date_range.earliest == BASE_TS

    def test_duplicates_ignore_case_and_whitespace(self):
        existing = [make_event(artist="Radiohead", track="Airbag", event_id="old")]
        new = [make_event(artist=" radiohead ", track="AIRBAG", event_id="new")]

        result = merge_listening_data(existing, new)

        assert [e.id for e in result.data] == ["old"]
        assert result.merge_info.duplicates == 1
        assert result.merge_info.duplicate_rate == 50.0

    def test_millisecond_copy_is_a_duplicate(self):
        existing = [make_event(event_id="old")]
        new = [make_event(timestamp=BASE_TS * 1000, event_id="new")]

        result = merge_listening_data(existing, new)

        assert len(result.data) == 1
        assert result.data[0].timestamp == BASE_TS

    def test_merging_twice_is_a_noop(self):
        batch = [make_event(track=str(i), timestamp=BASE_TS + i) for i in range(5)]
        once = merge_listening_data([], batch).data
        twice = merge_listening_data(once, batch).data
        assert [e.to_dict() for e in twice] == [e.to_dict() for e in once]

    def test_argument_order_does_not_change_the_key_set(self):
        a = [
            make_event(track="Airbag", timestamp=BASE_TS),
            make_event(track="Lucky", timestamp=BASE_TS + 60),
        ]
        b = [
            make_event(track="AIRBAG ", timestamp=BASE_TS * 1000),
            make_event(track="Karma Police", timestamp=BASE_TS + DAY),
        ]

        forward = {e.dedup_key() for e in merge_listening_data(a, b).data}
        backward = {e.dedup_key() for e in merge_listening_data(b, a).data}

        assert forward == backward
        assert len(forward) == 3

    def test_unclassified_copy_adopts_duplicate_genres(self):
        existing = [make_event(event_id="old")]
        new = [make_event(
            event_id="new",
            genres=["rock"],
            source="cache",
        )]

        merged = merge_listening_data(existing, new).data[0]

        assert merged.id == "old"
        assert merged.genres == ["rock"]
        assert merged.genre_metadata.source == "cache"

    def test_classified_copy_keeps_its_genres(self):
        existing = [make_event(event_id="old", genres=["jazz"])]
        new = [make_event(event_id="new", genres=["rock"])]
        assert merge_listening_data(existing, new).data[0].genres == ["jazz"]

    def test_id_collisions_get_suffixes(self):
        existing = [make_event(track="a", event_id="same")]
        new = [make_event(track="b", event_id="same"), make_event(track="c", event_id="same")]

        ids = [e.id for e in merge_listening_data(existing, new).data]

        assert len(set(ids)) == 3
        assert ids == ["same", "same-1", "same-2"]

    def test_sample_duplicates_capped(self):
        batch = [make_event(track=str(i), timestamp=BASE_TS + i) for i in range(8)]
        info = merge_listening_data(batch, batch).merge_info
        assert info.duplicates == 8
        assert len(info.sample_duplicates) == 5
        assert info.sample_duplicates[0] == {'track': '0', 'artist': 'Radiohead', 'date': '2021-03-05'}

    def test_stable_for_equal_timestamps(self):
        new = [make_event(track=t) for t in ("z", "a", "m")]
        assert [e.track_name for e in merge_listening_data([], new).data] == ["z", "a", "m"]

    def test_empty_inputs(self):
        result = merge_listening_data(None, None)
        assert result.data == []
        assert result.merge_info.duplicate_rate == 0.0
        assert result.date_range is None


class TestValidateListeningData:

    def test_empty_is_valid(self):
        result = validate_listening_data([])
        assert result == {'is_valid': True, 'message': 'Empty dataset (no listens)'}

    def test_valid(self):
        result = validate_listening_data([make_event(), make_event(track="b", timestamp=BASE_TS + 365 * DAY)])
        assert result['is_valid']
        assert result['year_span'] == 1.0

    def test_too_many_out_of_range(self):
        events = [make_event(track=str(i)) for i in range(8)]
        events += [make_event(track="x", timestamp=5_000_000_000), make_event(track="y", timestamp=6_000_000_000)]
        result = validate_listening_data(events)
        assert not result['is_valid']
        assert result['error'] == (
            "Data contains too many invalid timestamps (20.0%). Please re-export from source."
        )


class TestMergeEngine:

    def test_merge_and_persist(self, store):
        engine = MergeEngine(store)
        engine.merge_and_persist([make_event(track="a"), make_event(track="b", timestamp=BASE_TS + 1)])

        result = engine.merge_and_persist([make_event(track="b", timestamp=BASE_TS + 1), make_event(track="c", timestamp=BASE_TS + 2)])

        assert result.merge_info.existing == 2
        assert result.merge_info.duplicates == 1
        assert store.count(LISTENS) == 3

    def test_merge_does_not_write(self, store):
        engine = MergeEngine(store)
        engine.merge([make_event()])
        assert store.count(LISTENS) == 0

    def test_load_existing_normalizes_legacy_records(self, store):
        store.put(LISTENS, {'id': 'legacy', 'listened_at': BASE_TS * 1000, 'track_name': 'Old', 'artist_name': 'Band'})
        store.put(LISTENS, {'id': 'broken', 'trackName': 'No time'})

        events = MergeEngine(store).load_existing()

        assert len(events) == 1
        assert events[0].timestamp == BASE_TS
        assert events[0].track_name == 'Old'

    def test_persist_round_trips_metadata(self, store):
        engine = MergeEngine(store)
        event = make_event(genres=["rock"])
        event.genre_metadata = GenreMetadata(source="cache", cached=True, last_fetched=123)
        engine.persist([event])

        loaded = engine.load_existing()[0]
        assert loaded.genres == ["rock"]
        assert loaded.genre_metadata == event.genre_metadata
