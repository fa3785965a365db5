"""Tests for sequence settings, interval parsing and default names."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from timelapse_mcp.capture import (
    DEFAULT_INTERVAL,
    SequenceSettings,
    StaticSettingsProvider,
    default_sequence_id,
    parse_interval,
)
from timelapse_mcp.capture.state import Phase, SequenceState


class TestSequenceSettings:
    """Validation and copying of SequenceSettings."""

    def test_defaults(self) -> None:
        settings = SequenceSettings()

        assert settings.interval == DEFAULT_INTERVAL
        assert settings.limit == 0
        assert settings.camera_id is None
        assert settings.autofocus is False
        assert settings.focus_attempts == 1
        assert settings.keep_camera_warm is False
        assert settings.image_format == "jpg"

    @pytest.mark.parametrize(
        "changes",
        [
            {"interval": timedelta(0)},
            {"interval": timedelta(seconds=-1)},
            {"limit": -1},
            {"camera_id": -2},
            {"focus_attempts": 0},
            {"image_format": "gif"},
        ],
    )
    def test_invalid_values_rejected(self, changes: dict) -> None:
        with pytest.raises(ValueError):
            SequenceSettings(**changes)

    def test_with_changes_skips_none(self) -> None:
        """Omitted tool arguments arrive as None and keep the current value."""
        base = SequenceSettings(limit=5, autofocus=True)

        changed = base.with_changes(limit=None, autofocus=None, camera_id=2)

        assert changed.limit == 5
        assert changed.autofocus is True
        assert changed.camera_id == 2

    def test_with_changes_revalidates(self) -> None:
        with pytest.raises(ValueError, match="limit"):
            SequenceSettings().with_changes(limit=-3)

    def test_to_dict(self) -> None:
        data = SequenceSettings(interval=timedelta(minutes=2), limit=4).to_dict()

        assert data == {
            "interval_seconds": 120.0,
            "limit": 4,
            "camera_id": None,
            "autofocus": False,
            "focus_attempts": 1,
            "keep_camera_warm": False,
            "image_format": "jpg",
        }


class TestParseInterval:
    """Human-friendly interval strings."""

    @pytest.mark.parametrize(
        ("text", "seconds"),
        [
            ("45", 45),
            ("45s", 45),
            ("45 sec", 45),
            ("5m", 300),
            ("2min", 120),
            ("1.5h", 5400),
            ("1HR", 3600),
            (" 10s ", 10),
        ],
    )
    def test_strings(self, text: str, seconds: float) -> None:
        assert parse_interval(text) == timedelta(seconds=seconds)

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("1h30m", timedelta(minutes=90)),
            ("1m30s", timedelta(seconds=90)),
            ("2h 15min 10s", timedelta(hours=2, minutes=15, seconds=10)),
            ("1.5m30s", timedelta(minutes=2)),
        ],
    )
    def test_compound_units_are_summed(self, text: str, expected: timedelta) -> None:
        assert parse_interval(text) == expected

    def test_numbers_are_seconds(self) -> None:
        assert parse_interval(2.5) == timedelta(seconds=2.5)
        assert parse_interval(30) == timedelta(seconds=30)

    def test_timedelta_passes_through(self) -> None:
        assert parse_interval(timedelta(hours=1)) == timedelta(hours=1)

    @pytest.mark.parametrize(
        "text", ["", "abc", "5 days", "-5s", "5x", "1h30", "30 1h", "1h-30m", "1h30x"]
    )
    def test_malformed(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_interval(text)

    def test_bool_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid"):
            parse_interval(True)

    @pytest.mark.parametrize("value", ["9" * 20, "9" * 400 + "h", 10**20, float("inf")])
    def test_too_large(self, value) -> None:
        with pytest.raises(ValueError, match="too large"):
            parse_interval(value)

    @pytest.mark.parametrize("value", [0, "0", "0s", -1, timedelta(0)])
    def test_non_positive(self, value) -> None:
        with pytest.raises(ValueError, match="positive"):
            parse_interval(value)


class TestDefaultSequenceId:
    def test_format_has_no_colons(self) -> None:
        name = default_sequence_id(datetime(2026, 10, 19, 7, 30, 5))

        assert name == "2026-10-19 07-30-05"
        assert ":" not in name

    def test_without_argument_uses_now(self) -> None:
        assert len(default_sequence_id()) == len("2026-10-19 07-30-05")


class TestStaticSettingsProvider:
    def test_default_settings(self) -> None:
        assert StaticSettingsProvider().load() == SequenceSettings()

    def test_set_replaces(self) -> None:
        provider = StaticSettingsProvider()
        provider.set(SequenceSettings(limit=9))

        assert provider.load().limit == 9

    def test_update_keeps_old_settings_on_error(self) -> None:
        provider = StaticSettingsProvider(SequenceSettings(limit=2))

        with pytest.raises(ValueError):
            provider.update(limit=-1)

        assert provider.load().limit == 2
        assert provider.update(autofocus=True).autofocus is True


class TestSequenceState:
    """Derived fields of the dispatcher-owned state."""

    def test_remaining_counts_down_to_zero(self) -> None:
        state = SequenceState(phase=Phase.ACTIVE, limit=3, next_index=1)

        assert state.running is True
        assert state.images_remaining == 2

    def test_unlimited_remaining_is_zero(self) -> None:
        assert SequenceState(limit=0, next_index=7).images_remaining == 0

    def test_capture_in_flight_counts_as_running(self) -> None:
        state = SequenceState(phase=Phase.CAPTURE_IN_FLIGHT)

        assert state.running is True
        assert state.capture_in_flight is True

    def test_snapshot_to_dict(self) -> None:
        start = datetime(2026, 1, 1, 12, 0, 0)
        state = SequenceState(
            phase=Phase.ACTIVE, start_time=start, limit=5, next_index=2, sequence_id="s"
        )

        assert state.snapshot().to_dict() == {
            "running": True,
            "start_time": "2026-01-01T12:00:00",
            "images_captured": 2,
            "images_remaining": 3,
            "sequence_id": "s",
        }
