"""Map a failed CLI invocation to a :class:`FailureClass`.

Classification is a case-insensitive substring scan over stderr then stdout.
Rules are checked in order and the first hit wins, so quota wording beats
authentication wording ("quota exceeded for this key") and both beat generic
network noise. Only when no rule matches does the exit code matter.
"""

from __future__ import annotations

from dataclasses import dataclass

from ai_provider.orchestrator.models import FailureClass

# EX_TEMPFAIL and 128 + SIGTERM.
DEFAULT_TRANSIENT_EXIT_CODES: tuple[int, ...] = (75, 143)


@dataclass(frozen=True, slots=True)
class _Rule:
    name: str
    failure_class: FailureClass
    patterns: tuple[str, ...]


_RULES: tuple[_Rule, ...] = (
    _Rule(
        name="billing_or_quota",
        failure_class=FailureClass.BILLING_OR_QUOTA,
        patterns=(
            "quota",
            "resource_exhausted",
            "insufficient credits",
            "insufficient balance",
            "out of credits",
            "credit balance",
            "billing",
            "payment required",
            "usage limit",
        ),
    ),
    _Rule(
        name="access_or_auth",
        failure_class=FailureClass.ACCESS_OR_AUTH,
        patterns=(
            "unauthorized",
            "forbidden",
            "permission denied",
            "permission_denied",
            "authentication scopes",
            "invalid api key",
            "not logged in",
            "please log in",
            "login required",
            "authentication",
            "auth",
        ),
    ),
    _Rule(
        name="model_not_available",
        failure_class=FailureClass.MODEL_NOT_AVAILABLE,
        patterns=(
            "model not found",
            "unknown model",
            "unsupported model",
            "invalid model",
            "model is not available",
        ),
    ),
    _Rule(
        name="rate_limited",
        failure_class=FailureClass.RATE_LIMITED,
        patterns=(
            "limit reached",
            "weekly limit",
            "too many requests",
            "rate limit",
            "429",
            "please retry",
            "try again later",
        ),
    ),
    _Rule(
        name="generic_transient",
        failure_class=FailureClass.BACKEND_TRANSIENT,
        patterns=(
            "temporarily unavailable",
            "temporary failure",
            "connection reset",
            "network error",
            "could not resolve host",
            "overloaded",
        ),
    ),
)

THROTTLED_FAILURE_CLASSES: frozenset[FailureClass] = frozenset(
    {FailureClass.RATE_LIMITED, FailureClass.BILLING_OR_QUOTA},
)


@dataclass(frozen=True, slots=True)
class BackendFailureClassification:
    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None = None

    @property
    def is_throttled(self) -> bool:
        """Backend refused because of limits, not because credentials are bad."""

        return self.failure_class in THROTTLED_FAILURE_CLASSES


def classify_backend_failure(
    *,
    agent: str,
    exit_code: int,
    stdout: str,
    stderr: str,
    transient_exit_codes: tuple[int, ...] = DEFAULT_TRANSIENT_EXIT_CODES,
) -> BackendFailureClassification:
    """Classify a non-timeout failure of ``agent``; ``reason_code`` is ``<agent>_<class>``."""

    text = f"{stderr}\n{stdout}".lower()
    for rule in _RULES:
        pattern = next((candidate for candidate in rule.patterns if candidate in text), None)
        if pattern is not None:
            return BackendFailureClassification(
                failure_class=rule.failure_class,
                reason_code=f"{agent}_{rule.failure_class.value}",
                matched_rule=rule.name,
                matched_pattern=pattern,
            )

    if exit_code in transient_exit_codes:
        return BackendFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{agent}_{FailureClass.BACKEND_TRANSIENT.value}",
            matched_rule="transient_exit_code",
        )
    return BackendFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code=f"{agent}_{FailureClass.BACKEND_NON_RETRYABLE.value}",
        matched_rule="non_retryable",
    )
