from datetime import datetime, timedelta, timezone

import pytest

from la_archive.config import ConfigError, ExportConfig, parse_duration, parse_timestamp


def make_config(tmp_path, **overrides):
    values = dict(table="AppTraces", workspace_id="ws-123", start="2024-03-01T00:00:00Z",
                  end="2024-03-02T00:00:00Z", output_dir=str(tmp_path / "out"))
    values.update(overrides)
    return ExportConfig(**values)


@pytest.mark.parametrize("value, expected", [
    ("1d", timedelta(days=1)),
    ("6h", timedelta(hours=6)),
    ("15m", timedelta(minutes=15)),
    ("90s", timedelta(seconds=90)),
    ("250ms", timedelta(milliseconds=250)),
    ("3600", timedelta(hours=1)),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


def test_parse_duration_rejects_garbage():
    with pytest.raises(ConfigError):
        parse_duration("soon")


def test_naive_timestamps_are_utc():
    assert parse_timestamp("2024-03-01T12:00:00") == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp("2024-03-01T12:00:00+02:00") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)


def test_valid_config_creates_output_dir(tmp_path):
    cfg = make_config(tmp_path).validate()
    assert (tmp_path / "out").is_dir()
    assert cfg.start == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert cfg.initial_slice == timedelta(days=1)
    assert cfg.manifest_path == str(tmp_path / "out" / "manifest.csv")


@pytest.mark.parametrize("overrides", [
    {"start": "2024-03-02T00:00:00Z"},
    {"end": "2024-02-01T00:00:00Z"},
    {"initial_slice": "0s"},
    {"min_slice": "2d"},
    {"max_records_per_bin": 0},
    {"max_retries": 0},
    {"timeout": 0},
    {"table": ""},
    {"workspace_id": None},
])
def test_invalid_config_is_rejected(tmp_path, overrides):
    with pytest.raises(ConfigError):
        make_config(tmp_path, **overrides).validate()


def test_output_dir_that_is_a_file_is_rejected(tmp_path):
    blocker = tmp_path / "out"
    blocker.write_text("not a directory")
    with pytest.raises(ConfigError):
        make_config(tmp_path).validate()
