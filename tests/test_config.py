from datetime import timedelta

import pytest

from tap_track.config import TrackerSettings
from tap_track.normalization import MAX_TASK_NAME_LENGTH, normalize_task_name


def test_settings_from_options() -> None:
    settings = TrackerSettings.from_options(
        tick_seconds=60,
        timeout_seconds=3,
        remote_url="  http://localhost:8765  ",
        timezone_name="Europe/Paris",
    )

    assert settings.tick_interval == timedelta(seconds=60)
    assert settings.debounce_interval == timedelta(seconds=5)
    assert settings.request_timeout == timedelta(seconds=3)
    assert settings.remote_url == "http://localhost:8765"
    assert settings.timezone.key == "Europe/Paris"


def test_settings_defaults() -> None:
    settings = TrackerSettings.from_options(tick_seconds=12)

    assert settings.debounce_interval == timedelta(seconds=2)
    assert settings.remote_url is None
    assert settings.timezone is None


def test_unknown_timezone_is_rejected() -> None:
    with pytest.raises(ValueError, match="Invalid timezone"):
        TrackerSettings.from_options(timezone_name="Mars/Olympus_Mons")


def test_normalize_task_name() -> None:
    assert normalize_task_name(None) == ""
    assert normalize_task_name("   ") == ""
    assert normalize_task_name(" write\tthe   report ") == "write the report"
    assert len(normalize_task_name("x" * 500)) == MAX_TASK_NAME_LENGTH
