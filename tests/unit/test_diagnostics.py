"""Tests for the capped diagnostic log."""
import json
import logging

import pytest

from soundtrail.diagnostics import DiagnosticLog, DiagnosticLogHandler, attach_to_root


def test_newest_first_and_capped():
    log = DiagnosticLog(capacity=3)
    for i in range(5):
        log.record(f"error {i}")

    messages = [e["message"] for e in log.entries()]
    assert messages == ["error 4", "error 3", "error 2"]
    assert len(log) == 3


def test_invalid_capacity():
    with pytest.raises(ValueError):
        DiagnosticLog(capacity=0)


def test_exception_entries_carry_type_and_stack():
    log = DiagnosticLog()
    try:
        raise KeyError("artistName")
    except KeyError as e:
        entry = log.record(e, file="export.json")

    assert entry["type"] == "KeyError"
    assert "Traceback" in entry["stack"]
    assert entry["context"] == {"file": "export.json"}
    assert entry["level"] == "error"


def test_warn_and_info_levels():
    log = DiagnosticLog()
    log.warn("slow provider", provider="musicbrainz")
    log.info("resumed")
    assert [e["level"] for e in log.entries()] == ["info", "warning"]


def test_ids_increase():
    log = DiagnosticLog()
    first = log.record("a")
    second = log.record("b")
    assert second["id"] > first["id"]


def test_listeners_and_unsubscribe():
    log = DiagnosticLog()
    seen = []
    unsubscribe = log.subscribe(lambda entries: seen.append(len(entries)))

    log.record("one")
    log.record("two")
    unsubscribe()
    log.record("three")
    log.clear()

    assert seen == [1, 2]


def test_failing_listener_does_not_break_recording():
    log = DiagnosticLog()
    seen = []

    def broken(entries):
        raise RuntimeError("listener bug")

    log.subscribe(broken)
    log.subscribe(lambda entries: seen.append(len(entries)))

    log.record("still stored")

    assert len(log) == 1
    assert seen == [1]


def test_export_json():
    log = DiagnosticLog()
    log.record("bad file", file="a.json")
    exported = json.loads(log.export_json())
    assert exported[0]["message"] == "bad file"
    assert exported[0]["context"]["file"] == "a.json"


def test_attach_to_root_mirrors_warnings():
    log = DiagnosticLog()
    handler = attach_to_root(log)
    try:
        assert isinstance(handler, DiagnosticLogHandler)
        assert attach_to_root(log) is None

        logger = logging.getLogger("soundtrail.test.diag")
        logger.setLevel(logging.DEBUG)
        logger.info("not mirrored")
        logger.warning("provider throttled")
        logger.error("import failed")

        entries = log.entries()
        assert [e["message"] for e in entries] == ["import failed", "provider throttled"]
        assert [e["level"] for e in entries] == ["error", "warning"]
        assert entries[0]["context"]["logger"] == "soundtrail.test.diag"
    finally:
        logging.getLogger().removeHandler(handler)
