from __future__ import annotations

import allure
import pytest

from ai_provider.orchestrator.failure_classifier import classify_backend_failure
from ai_provider.orchestrator.models import FailureClass

pytestmark = [
    allure.epic("Provider Orchestration"),
    allure.feature("Failure Classification"),
]


@pytest.mark.parametrize(
    ("stderr", "stdout", "failure_class", "pattern"),
    [
        ("Quota exceeded for this project", "", FailureClass.BILLING_OR_QUOTA, "quota"),
        ("Error: invalid API key provided", "", FailureClass.ACCESS_OR_AUTH, "invalid api key"),
        ("Invalid model requested", "", FailureClass.MODEL_NOT_AVAILABLE, "invalid model"),
        ("", "5-hour limit reached - resets 3pm", FailureClass.RATE_LIMITED, "limit reached"),
        ("HTTP 429, please retry", "", FailureClass.RATE_LIMITED, "429"),
        ("upstream overloaded", "", FailureClass.BACKEND_TRANSIENT, "overloaded"),
    ],
)
def test_classifier_matches_output_patterns(
    stderr: str,
    stdout: str,
    failure_class: FailureClass,
    pattern: str,
) -> None:
    classified = classify_backend_failure(agent="codex", exit_code=1, stdout=stdout, stderr=stderr)

    assert classified.failure_class == failure_class
    assert classified.matched_pattern == pattern
    assert classified.reason_code == f"codex_{failure_class.value}"


def test_quota_wording_wins_over_auth_and_exit_code() -> None:
    classified = classify_backend_failure(
        agent="gemini",
        exit_code=143,
        stdout="",
        stderr="Authentication ok but quota exceeded",
    )

    assert classified.failure_class == FailureClass.BILLING_OR_QUOTA
    assert classified.matched_rule == "billing_or_quota"
    assert classified.is_throttled is True


def test_auth_failures_are_not_throttled() -> None:
    classified = classify_backend_failure(
        agent="claude-code",
        exit_code=1,
        stdout="Not logged in. Please log in with /login",
        stderr="",
    )

    assert classified.failure_class == FailureClass.ACCESS_OR_AUTH
    assert classified.reason_code == "claude-code_access_or_auth"
    assert classified.is_throttled is False


def test_transient_exit_code_applies_only_without_pattern() -> None:
    classified = classify_backend_failure(
        agent="cursor",
        exit_code=75,
        stdout="",
        stderr="something odd happened",
    )

    assert classified.failure_class == FailureClass.BACKEND_TRANSIENT
    assert classified.matched_rule == "transient_exit_code"
    assert classified.matched_pattern is None


def test_unmatched_failure_is_non_retryable() -> None:
    classified = classify_backend_failure(
        agent="codex",
        exit_code=2,
        stdout="unexpected output",
        stderr="segmentation fault",
    )

    assert classified.failure_class == FailureClass.BACKEND_NON_RETRYABLE
    assert classified.reason_code == "codex_backend_non_retryable"
    assert classified.matched_rule == "non_retryable"
    assert classified.is_throttled is False


@pytest.mark.parametrize(
    "stderr",
    [
        "403 PERMISSION_DENIED: Request had insufficient authentication scopes.",
        "Request exceeded the scopes granted to this token: unauthorized",
    ],
)
def test_permission_errors_are_auth_not_quota(stderr: str) -> None:
    classified = classify_backend_failure(agent="gemini", exit_code=1, stdout="", stderr=stderr)

    assert classified.failure_class == FailureClass.ACCESS_OR_AUTH
    assert classified.is_throttled is False
