"""Tests for YAML configuration loading and validation."""
import pytest

from soundtrail.config_loader import Config


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("SOUNDTRAIL_DB_PATH", "LASTFM_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file():
    config = Config()
    assert config.database_path == "data/history.db"
    assert config.max_import_bytes == 250 * 1024 * 1024
    assert config.min_ms_played == 30000
    assert config.cache_expiry_days == 30
    assert config.classification_concurrency == 5
    assert config.provider("musicbrainz")["requests_per_second"] == 1.0
    assert config.lastfm_api_key == ""


def test_file_overrides_merge_with_defaults(tmp_path):
    path = write_config(tmp_path, """
providers:
  lastfm:
    api_key: abc123
classification:
  concurrency: 2
""")
    config = Config(path)
    assert config.lastfm_api_key == "abc123"
    assert config.classification_concurrency == 2
    assert config.batch_delay_seconds == 0.1
    assert config.provider("lastfm")["requests_per_second"] == 5.0


def test_empty_file_uses_defaults(tmp_path):
    assert Config(write_config(tmp_path, "")).log_level == "INFO"


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("SOUNDTRAIL_DB_PATH", str(tmp_path / "other.db"))
    monkeypatch.setenv("LASTFM_API_KEY", "from-env")
    config = Config()
    assert config.database_path == str(tmp_path / "other.db")
    assert config.lastfm_api_key == "from-env"


def test_missing_file():
    with pytest.raises(FileNotFoundError, match="Configuration file not found"):
        Config("does/not/exist.yaml")


def test_root_must_be_mapping(tmp_path):
    with pytest.raises(ValueError, match="must be a mapping"):
        Config(write_config(tmp_path, "- a\n- b\n"))


@pytest.mark.parametrize("text, message", [
    ("classification:\n  concurrency: 0\n", "classification.concurrency"),
    ("genres:\n  cache_expiry_days: -1\n", "genres.cache_expiry_days"),
    ("providers:\n  musicbrainz:\n    requests_per_second: 0\n", "providers.musicbrainz.requests_per_second"),
    ("validation:\n  min_valid_percentage: 150\n", "min_valid_percentage"),
    ("import:\n  max_total_size_mb: lots\n", "import.max_total_size_mb"),
])
def test_invalid_values(tmp_path, text, message):
    with pytest.raises(ValueError, match=message):
        Config(write_config(tmp_path, text))


def test_get_with_default():
    config = Config()
    assert config.get("gateway", "window_periods") == 2
    assert config.get("gateway", "missing", "fallback") == "fallback"
    assert config.get("nope", "key", 7) == 7
