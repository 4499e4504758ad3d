from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import allure
import pytest
from conftest import FakeClock

from ai_provider.orchestrator.models import ProviderConfig, UsagePeriod
from ai_provider.orchestrator.usage import (
    CODEX_TOKENS_USED,
    UsageTracker,
    reported_total_tokens,
    week_key,
)

pytestmark = [
    allure.epic("Provider Orchestration"),
    allure.feature("Usage Windows"),
]


def _tracker(clock: FakeClock, **config: object) -> UsageTracker:
    return UsageTracker(ProviderConfig(**config), clock=clock)


def test_window_keys_use_utc_date_and_preceding_sunday(clock: FakeClock) -> None:
    tracker = _tracker(clock)

    assert tracker.current_date_key() == "2024-01-03"
    assert tracker.current_week_key() == "2023-12-31"
    assert tracker.daily.window_start_key == "2024-01-03"
    assert tracker.weekly.window_start_key == "2023-12-31"


def test_week_key_starts_on_sunday() -> None:
    assert week_key(datetime(2024, 1, 6, tzinfo=UTC).date()) == "2023-12-31"
    assert week_key(datetime(2024, 1, 7, tzinfo=UTC).date()) == "2024-01-07"
    assert week_key(datetime(2024, 1, 8, tzinfo=UTC).date()) == "2024-01-07"


def test_window_keys_convert_local_time_to_utc() -> None:
    late_evening_new_york = datetime(2024, 1, 6, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
    tracker = UsageTracker(ProviderConfig(), clock=lambda: late_evening_new_york)

    assert tracker.current_date_key() == "2024-01-07"
    assert tracker.current_week_key() == "2024-01-07"


def test_record_adds_tokens_to_both_windows(clock: FakeClock) -> None:
    tracker = _tracker(clock, daily_limit=1_000, weekly_limit=4_000)

    tracker.record(200)
    tracker.record(50)

    assert tracker.daily.tokens_consumed == 250
    assert tracker.weekly.tokens_consumed == 250
    assert tracker.usage_fraction(UsagePeriod.DAILY) == pytest.approx(0.25)
    assert tracker.usage_fraction("weekly") == pytest.approx(0.0625)


@pytest.mark.parametrize("tokens", [0, -5])
def test_record_rejects_non_positive_tokens(clock: FakeClock, tokens: int) -> None:
    tracker = _tracker(clock)

    with pytest.raises(ValueError, match="positive integer"):
        tracker.record(tokens)
    assert tracker.daily.tokens_consumed == 0


def test_usage_fraction_rejects_unknown_period(clock: FakeClock) -> None:
    with pytest.raises(ValueError, match="Unsupported usage period"):
        _tracker(clock).usage_fraction("monthly")


def test_threshold_boundary_is_inclusive(clock: FakeClock) -> None:
    tracker = _tracker(clock, daily_limit=1_000, weekly_limit=10_000, switch_threshold=0.75)

    tracker.record(749)
    assert tracker.is_over_threshold() is False

    tracker.record(1)
    assert tracker.is_over_threshold() is True


def test_weekly_window_alone_can_exceed_threshold(clock: FakeClock) -> None:
    tracker = _tracker(clock, daily_limit=1_000, weekly_limit=1_000, switch_threshold=0.75)

    tracker.record(500)
    clock.advance(days=1)
    tracker.record(300)

    assert tracker.usage_fraction("daily") == pytest.approx(0.3)
    assert tracker.usage_fraction("weekly") == pytest.approx(0.8)
    assert tracker.is_over_threshold() is True


def test_fraction_is_not_capped(clock: FakeClock) -> None:
    tracker = _tracker(clock, daily_limit=100, weekly_limit=1_000)

    tracker.record(250)

    assert tracker.usage_fraction("daily") == pytest.approx(2.5)


def test_daily_window_resets_on_next_utc_date(clock: FakeClock) -> None:
    tracker = _tracker(clock)
    tracker.record(400)

    clock.advance(days=1)

    assert tracker.usage_fraction("daily") == 0
    assert tracker.daily.window_start_key == "2024-01-04"
    assert tracker.weekly.tokens_consumed == 400


def test_weekly_window_resets_on_sunday(clock: FakeClock) -> None:
    tracker = _tracker(clock)
    tracker.record(400)

    clock.advance(days=3)
    tracker.reconcile()
    assert tracker.weekly.tokens_consumed == 400
    assert tracker.weekly.window_start_key == "2023-12-31"

    clock.advance(days=1)
    tracker.reconcile()
    assert tracker.weekly.tokens_consumed == 0
    assert tracker.weekly.window_start_key == "2024-01-07"


def test_reconcile_is_idempotent(clock: FakeClock) -> None:
    tracker = _tracker(clock)
    tracker.record(100)
    clock.advance(days=1)
    tracker.record(10)

    tracker.reconcile()
    tracker.reconcile()

    assert tracker.daily.tokens_consumed == 10
    assert tracker.weekly.tokens_consumed == 110


def test_window_status_reports_used_limit_and_threshold(clock: FakeClock) -> None:
    tracker = _tracker(clock, daily_limit=2_000, weekly_limit=8_000, switch_threshold=0.5)
    tracker.record(500)

    status = tracker.window_status("daily")

    assert status.to_dict() == {
        "used": 500,
        "limit": 2_000,
        "percentage": 0.25,
        "threshold": 0.5,
    }


def test_snapshot_restore_keeps_current_windows(clock: FakeClock) -> None:
    source = _tracker(clock)
    source.record(321)

    restored = _tracker(clock)
    restored.restore(source.snapshot())

    assert restored.daily.tokens_consumed == 321
    assert restored.weekly.tokens_consumed == 321


def test_restored_stale_windows_reset_lazily(clock: FakeClock) -> None:
    tracker = _tracker(clock)
    tracker.restore(
        {
            "daily": {"tokens": 900, "reset_date": "2024-01-02"},
            "weekly": {"tokens": 900, "reset_date": "2023-12-31"},
        },
    )

    assert tracker.usage_fraction("daily") == 0
    assert tracker.weekly.tokens_consumed == 900


def test_restore_ignores_malformed_windows(clock: FakeClock) -> None:
    tracker = _tracker(clock)
    tracker.record(10)

    tracker.restore({"daily": {"tokens": -1, "reset_date": "2024-01-03"}, "weekly": "bad"})

    assert tracker.daily.tokens_consumed == 10
    assert tracker.weekly.tokens_consumed == 10


def test_reset_clears_both_windows(clock: FakeClock) -> None:
    tracker = _tracker(clock)
    tracker.record(10)

    tracker.reset()

    assert tracker.daily.tokens_consumed == 0
    assert tracker.weekly.tokens_consumed == 0


def test_provider_config_defaults_and_camel_case_mapping() -> None:
    assert ProviderConfig() == ProviderConfig(
        daily_limit=1_000_000,
        weekly_limit=5_000_000,
        switch_threshold=0.75,
    )

    config = ProviderConfig.from_mapping(
        {"dailyLimit": 10, "weekly_limit": 70, "switchThreshold": 0.5, "command": "x"},
    )
    assert config == ProviderConfig(daily_limit=10, weekly_limit=70, switch_threshold=0.5)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"daily_limit": 0},
        {"weekly_limit": -1},
        {"daily_limit": True},
        {"switch_threshold": 0},
        {"switch_threshold": 1.5},
        {"switch_threshold": "0.5"},
    ],
)
def test_provider_config_rejects_invalid_values(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        ProviderConfig(**kwargs)


def test_reported_total_tokens_reads_the_last_footer() -> None:
    output = "tokens used\n3 is a fine example\n\ntokens used\n1,234\n"

    assert reported_total_tokens(footer=CODEX_TOKENS_USED, output=output) == 1234


def test_reported_total_tokens_ignores_answer_text() -> None:
    assert reported_total_tokens(footer=CODEX_TOKENS_USED, output="Hello there") is None
    assert reported_total_tokens(footer=None, output="total_tokens: 15\ntokens used\n99") is None
