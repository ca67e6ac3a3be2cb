"""Smoke tests for module imports.

These tests verify that key modules can be imported without errors.
This catches missing dependencies, syntax errors, and circular imports.
"""

import importlib

import pytest

MODULES = [
    "soundtrail.aggregation",
    "soundtrail.classifier",
    "soundtrail.config_loader",
    "soundtrail.diagnostics",
    "soundtrail.enrichment",
    "soundtrail.errors",
    "soundtrail.gateway",
    "soundtrail.genre.heuristics",
    "soundtrail.genre.taxonomy",
    "soundtrail.genre_cache",
    "soundtrail.importer",
    "soundtrail.logging_utils",
    "soundtrail.merge",
    "soundtrail.models",
    "soundtrail.orchestrator",
    "soundtrail.parsers",
    "soundtrail.providers",
    "soundtrail.rate_limiter",
    "soundtrail.retry_helper",
    "soundtrail.storage",
    "soundtrail.string_utils",
    "soundtrail.timestamps",
]


@pytest.mark.parametrize("name", MODULES)
def test_module_imports(name):
    assert importlib.import_module(name) is not None


class TestEntrypoints:
    """Test that the public entry points are importable."""

    def test_main_app(self):
        from main_app import SoundtrailApp, main
        assert SoundtrailApp is not None
        assert callable(main)

    def test_providers(self):
        from soundtrail.providers import LastFMProvider, ListenBrainzProvider, MusicBrainzProvider
        assert {p.name for p in (LastFMProvider, ListenBrainzProvider, MusicBrainzProvider)} == {
            "lastfm", "listenbrainz", "musicbrainz",
        }
