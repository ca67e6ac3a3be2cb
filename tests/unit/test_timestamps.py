"""Tests for timestamp detection, conversion and validation."""
from datetime import datetime

import pytest

from conftest import BASE_TS, DAY, make_event
from soundtrail.storage import LISTENS
from soundtrail.timestamps import (
    FORMAT_EXCEL_SERIAL,
    FORMAT_ISO8601,
    FORMAT_UNIX_MS,
    FORMAT_UNIX_SEC,
    FORMAT_UNKNOWN,
    clean_stored_timestamps,
    convert_timestamp,
    detect_timestamp_format,
    ensure_seconds,
    excel_serial_to_unix,
    format_timestamp,
    is_valid_timestamp,
    normalize_timestamp,
    validate_and_clean_timestamps,
    validate_dataset,
    validate_timestamp_range,
)


class TestDetectTimestampFormat:
    """Encoding detection, checked in a fixed order."""

    @pytest.mark.parametrize("value, expected", [
        ("2021-03-05T12:00:00Z", FORMAT_ISO8601),
        ("2021-03-05 12:00", FORMAT_ISO8601),
        (1614945600000, FORMAT_UNIX_MS),
        (1614945600, FORMAT_UNIX_SEC),
        ("1614945600", FORMAT_UNIX_SEC),
        (44260, FORMAT_EXCEL_SERIAL),
        (12345, FORMAT_UNKNOWN),
        ("yesterday", FORMAT_UNKNOWN),
        (None, FORMAT_UNKNOWN),
        (True, FORMAT_UNKNOWN),
    ])
    def test_detection(self, value, expected):
        assert detect_timestamp_format(value) == expected


class TestConversion:

    def test_iso_with_zulu_suffix(self):
        assert normalize_timestamp("2021-03-05T12:00:00Z") == BASE_TS

    def test_iso_with_offset(self):
        assert normalize_timestamp("2021-03-05T13:00:00+01:00") == BASE_TS

    def test_milliseconds_are_floored(self):
        assert normalize_timestamp(1614945600999) == BASE_TS

    def test_seconds_pass_through(self):
        assert normalize_timestamp(BASE_TS) == BASE_TS

    def test_excel_serial_accounts_for_phantom_leap_day(self):
        # serial 44260 is 2021-03-05
        assert excel_serial_to_unix(44260) == int(datetime(2021, 3, 5).timestamp())

    def test_excel_serial_is_local_midnight(self):
        assert excel_serial_to_unix(44561) == int(datetime(2021, 12, 31).timestamp())

    def test_unknown_format_converts_to_none(self):
        assert convert_timestamp(12345, FORMAT_UNKNOWN) is None

    def test_garbage_iso_string_is_none(self):
        assert normalize_timestamp("2021-13-45T99:00:00") is None


class TestEnsureSeconds:
    """The looser conversion used on already-persisted values."""

    def test_large_values_are_milliseconds(self):
        assert ensure_seconds(BASE_TS * 1000) == BASE_TS

    def test_small_values_are_kept(self):
        assert ensure_seconds(500) == 500

    def test_numeric_string(self):
        assert ensure_seconds(str(BASE_TS)) == BASE_TS

    def test_iso_string(self):
        assert ensure_seconds("2021-03-05T12:00:00Z") == BASE_TS

    @pytest.mark.parametrize("value", [None, True, "soon", {}])
    def test_unusable_values(self, value):
        assert ensure_seconds(value) is None


def test_is_valid_timestamp_window():
    assert is_valid_timestamp(BASE_TS)
    assert is_valid_timestamp(946684800)
    assert not is_valid_timestamp(946684799)
    assert not is_valid_timestamp(2147483648)
    assert not is_valid_timestamp(float(BASE_TS))
    assert not is_valid_timestamp(True)


def test_format_timestamp():
    assert format_timestamp(None) == "invalid"
    assert format_timestamp(0) == "1970-01-01T00:00:00+00:00"


class TestValidateAndCleanTimestamps:
    """Per-record pass: convert, recover or drop."""

    def _events(self):
        return [
            make_event(track="ms", timestamp=BASE_TS * 1000),
            make_event(track="fine", timestamp=BASE_TS + 60),
            make_event(track="too early", timestamp=500),
            make_event(
                track="recoverable",
                timestamp=500,
                additional_info={'original_timestamp': "2021-03-05T12:00:00Z"},
            ),
            make_event(track="zero", timestamp=0),
        ]

    def test_stats(self):
        result = validate_and_clean_timestamps(self._events())
        assert result.stats['original'] == 5
        assert result.stats['valid'] == 3
        assert result.stats['removed'] == 2
        assert result.stats['converted_from_ms'] == 1
        assert result.stats['recovered'] == 1
        assert result.stats['cleaned'] == 2

    def test_kept_events_are_annotated(self):
        result = validate_and_clean_timestamps(self._events())
        by_track = {e.track_name: e for e in result.listens}

        assert by_track['ms'].timestamp == BASE_TS
        assert by_track['ms'].timestamp_metadata['convertedFromMs'] is True
        assert by_track['recoverable'].timestamp == BASE_TS
        assert by_track['recoverable'].timestamp_metadata['recovered'] is True
        assert by_track['fine'].timestamp_metadata['originalFormat'] == 'seconds'

    def test_every_kept_timestamp_is_valid(self):
        result = validate_and_clean_timestamps(self._events())
        assert all(is_valid_timestamp(e.timestamp) for e in result.listens)
        assert result.earliest == BASE_TS
        assert result.latest == BASE_TS + 60

    def test_issues_describe_dropped_records(self):
        result = validate_and_clean_timestamps(self._events())
        reasons = {issue['issue'] for issue in result.issues}
        assert 'Missing or invalid timestamp' in reasons
        assert 'Timestamp too early (before 2000)' in reasons

    def test_input_is_not_mutated(self):
        events = self._events()
        validate_and_clean_timestamps(events)
        assert events[0].timestamp == BASE_TS * 1000

    def test_window_edges_are_inclusive(self):
        events = [
            make_event(track="first second", timestamp=946684800),
            make_event(track="last second", timestamp=2147483647),
            make_event(track="one before", timestamp=946684799),
        ]
        result = validate_and_clean_timestamps(events)

        assert [e.timestamp for e in result.listens] == [946684800, 2147483647]
        assert result.stats['removed'] == 1
        assert result.issues[0]['issue'] == 'Timestamp too early (before 2000)'


class TestValidateDataset:

    def test_empty(self):
        result = validate_dataset([])
        assert not result.is_valid
        assert result.error == 'No listens found in uploaded file.'

    def test_too_many_invalid(self):
        events = [make_event(track=str(i), timestamp=BASE_TS + i * DAY * 10) for i in range(8)]
        events += [make_event(track="bad1", timestamp=5), make_event(track="bad2", timestamp=6)]
        result = validate_dataset(events)
        assert not result.is_valid
        assert result.error.startswith("Data contains too many invalid timestamps (80.0% valid)")
        assert result.debug_info['sample_invalid_timestamp'] == 5

    def test_span_too_short(self):
        events = [make_event(track="a"), make_event(track="b", timestamp=BASE_TS + DAY)]
        result = validate_dataset(events)
        assert not result.is_valid
        assert result.error == 'Data span too short.'

    def test_valid_year(self):
        events = [make_event(track="a"), make_event(track="b", timestamp=BASE_TS + 365 * DAY)]
        result = validate_dataset(events)
        assert result.is_valid
        assert result.year_span == 1.0
        assert result.valid_percentage == 100.0


def test_validate_timestamp_range():
    assert validate_timestamp_range([])['error'] == 'No listens to validate'

    report = validate_timestamp_range([make_event(), make_event(timestamp=BASE_TS + 365 * DAY)])
    assert report['valid']
    assert report['min'] == BASE_TS
    assert report['year_span'] == 1.0

    early = validate_timestamp_range([make_event(timestamp=1000)])
    assert not early['valid']


def test_clean_stored_timestamps(store):
    store.put(LISTENS, {'id': 'ok', 'timestamp': BASE_TS, 'trackName': 'a'})
    store.put(LISTENS, {'id': 'ms', 'timestamp': BASE_TS * 1000, 'trackName': 'b'})
    store.put(LISTENS, {
        'id': 'recover', 'timestamp': 5, 'trackName': 'c',
        'additionalInfo': {'original_timestamp': '2021-03-05T12:00:00Z'},
    })
    store.put(LISTENS, {'id': 'broken', 'timestamp': 5, 'trackName': 'd'})

    report = clean_stored_timestamps(store)

    assert report['total'] == 4
    assert report['cleaned'] == 2
    assert report['removed'] == 1
    assert report['remaining'] == 3
    assert store.get(LISTENS, 'broken') is None
    assert store.get(LISTENS, 'ms')['timestamp'] == BASE_TS
    recovered = store.get(LISTENS, 'recover')
    assert recovered['timestamp'] == BASE_TS
    assert recovered['timestampMetadata']['recoveredFrom'] == 'original_timestamp'
