"""Calendar-window usage tracking and token usage extraction from CLI output."""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

from ai_provider.orchestrator.models import (
    ProviderConfig,
    UsagePeriod,
    UsageWindow,
    WindowStatus,
)

CODEX_TOKENS_USED = re.compile(r"tokens used\s*[\r\n ]+\s*([\d,]+)", re.IGNORECASE)


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def date_key(day: date) -> str:
    return day.isoformat()


def week_key(day: date) -> str:
    """ISO date of the Sunday starting the week that contains ``day``."""

    return (day - timedelta(days=(day.weekday() + 1) % 7)).isoformat()


def parse_period(period: UsagePeriod | str) -> UsagePeriod:
    if isinstance(period, UsagePeriod):
        return period
    try:
        return UsagePeriod(period.strip().lower())
    except ValueError as error:
        raise ValueError(f"Unsupported usage period: {period!r}. Use daily or weekly.") from error


class UsageTracker:
    """Daily and weekly token counters with lazy calendar-based reset.

    Windows are reconciled against the clock before every read or write, so a
    counter resets the first time it is touched after a date or week boundary.
    No timers are involved.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self._clock = clock
        self.daily = UsageWindow(tokens_consumed=0, window_start_key="")
        self.weekly = UsageWindow(tokens_consumed=0, window_start_key="")
        self.reset()

    def current_date_key(self) -> str:
        return date_key(self._today())

    def current_week_key(self) -> str:
        return week_key(self._today())

    def reconcile(self) -> None:
        """Reset any window whose calendar key is stale."""

        today = self._today()
        current_date = date_key(today)
        current_week = week_key(today)
        if self.daily.window_start_key != current_date:
            self.daily = UsageWindow(tokens_consumed=0, window_start_key=current_date)
        if self.weekly.window_start_key != current_week:
            self.weekly = UsageWindow(tokens_consumed=0, window_start_key=current_week)

    def record(self, tokens: int) -> None:
        if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens <= 0:
            raise ValueError(f"Recorded tokens must be a positive integer, got {tokens!r}")
        self.reconcile()
        self.daily.tokens_consumed += tokens
        self.weekly.tokens_consumed += tokens

    def reset(self) -> None:
        """Zero both windows at the current calendar keys."""

        self.daily = UsageWindow(tokens_consumed=0, window_start_key=self.current_date_key())
        self.weekly = UsageWindow(tokens_consumed=0, window_start_key=self.current_week_key())

    def usage_fraction(self, period: UsagePeriod | str = UsagePeriod.DAILY) -> float:
        resolved = parse_period(period)
        self.reconcile()
        return self._window(resolved).tokens_consumed / self.config.limit_for(resolved)

    def is_over_threshold(self) -> bool:
        threshold = self.config.switch_threshold
        return (
            self.usage_fraction(UsagePeriod.DAILY) >= threshold
            or self.usage_fraction(UsagePeriod.WEEKLY) >= threshold
        )

    def window_status(self, period: UsagePeriod | str) -> WindowStatus:
        resolved = parse_period(period)
        self.reconcile()
        return WindowStatus(
            used=self._window(resolved).tokens_consumed,
            limit=self.config.limit_for(resolved),
            percentage=self.usage_fraction(resolved),
            threshold=self.config.switch_threshold,
        )

    def snapshot(self) -> dict[str, dict[str, object]]:
        """Serialize windows for external persistence."""

        return {
            "daily": {
                "tokens": self.daily.tokens_consumed,
                "reset_date": self.daily.window_start_key,
            },
            "weekly": {
                "tokens": self.weekly.tokens_consumed,
                "reset_date": self.weekly.window_start_key,
            },
        }

    def restore(self, snapshot: dict[str, object]) -> None:
        """Load windows produced by :meth:`snapshot`; stale keys reset lazily."""

        self.daily = _window_from_snapshot(snapshot.get("daily"), fallback=self.daily)
        self.weekly = _window_from_snapshot(snapshot.get("weekly"), fallback=self.weekly)

    def _window(self, period: UsagePeriod) -> UsageWindow:
        return self.daily if period is UsagePeriod.DAILY else self.weekly

    def _today(self) -> date:
        return self._clock().astimezone(UTC).date()


def _window_from_snapshot(raw: object, *, fallback: UsageWindow) -> UsageWindow:
    if not isinstance(raw, dict):
        return fallback
    tokens = raw.get("tokens")
    reset_date = raw.get("reset_date")
    if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens < 0:
        return fallback
    if not isinstance(reset_date, str) or not reset_date.strip():
        return fallback
    return UsageWindow(tokens_consumed=tokens, window_start_key=reset_date.strip())


def reported_total_tokens(*, footer: re.Pattern[str] | None, output: str) -> int | None:
    """Token total from a backend usage footer such as codex's ``tokens used``.

    Backends without a footer return only the answer text, so nothing in it is
    trusted. The last match wins because the footer follows the answer.
    """

    if footer is None:
        return None
    matches = list(footer.finditer(output))
    if not matches:
        return None
    raw = matches[-1].group(1).replace(",", "")
    return int(raw) if raw.isdigit() else None
