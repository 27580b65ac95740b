"""
Analyzer failure classification tests.
"""

import asyncio

import pytest

from auditflow.engine.classifier import classify_analyzer_failure
from auditflow.engine.errors import (
    AnalyzerError,
    PermanentAnalyzerError,
    TransientAnalyzerError,
)
from auditflow.models import FailureKind


def test_typed_transient_error_keeps_reason_and_retry_after():
    result = classify_analyzer_failure(
        TransientAnalyzerError("slow down", "rate_limited", retry_after_seconds=4.0)
    )

    assert result.kind == FailureKind.TRANSIENT
    assert result.reason_code == "rate_limited"
    assert result.retry_after_seconds == 4.0
    assert result.is_rate_limit


def test_typed_permanent_error_is_never_retried():
    result = classify_analyzer_failure(PermanentAnalyzerError("timeout in message", "unsupported_input"))

    assert result.kind == FailureKind.PERMANENT
    assert result.reason_code == "unsupported_input"
    assert not result.is_transient


def test_base_analyzer_error_is_permanent():
    result = classify_analyzer_failure(AnalyzerError("boom"))

    assert result.kind == FailureKind.PERMANENT
    assert result.reason_code == "analyzer_error"


@pytest.mark.parametrize("error", [asyncio.TimeoutError(), TimeoutError("read timeout")])
def test_timeouts_are_transient(error):
    result = classify_analyzer_failure(error)

    assert result.kind == FailureKind.TRANSIENT
    assert result.reason_code == "timeout"


@pytest.mark.parametrize(
    "message",
    ["HTTP 429", "Too Many Requests", "rate limit exceeded", "please try again later"],
)
def test_rate_limit_text_is_transient(message):
    result = classify_analyzer_failure(RuntimeError(message))

    assert result.kind == FailureKind.TRANSIENT
    assert result.reason_code == "rate_limited"
    assert result.matched_pattern is not None


@pytest.mark.parametrize(
    "message",
    ["Unsupported language: cobol", "input too large", "maximum context length exceeded", "malformed payload"],
)
def test_input_problems_are_permanent(message):
    result = classify_analyzer_failure(ValueError(message))

    assert result.kind == FailureKind.PERMANENT
    assert result.reason_code == "unsupported_input"


@pytest.mark.parametrize(
    "message",
    ["Connection reset by peer", "service unavailable", "502 Bad Gateway", "model overloaded"],
)
def test_generic_transient_text(message):
    result = classify_analyzer_failure(RuntimeError(message))

    assert result.kind == FailureKind.TRANSIENT
    assert result.reason_code == "transient"


def test_connection_errors_without_known_text_are_network():
    result = classify_analyzer_failure(ConnectionError("eof"))

    assert result.kind == FailureKind.TRANSIENT
    assert result.reason_code == "network"


def test_rate_limit_wins_over_input_patterns():
    result = classify_analyzer_failure(RuntimeError("429: request too large for rate limit tier"))

    assert result.reason_code == "rate_limited"


def test_unknown_errors_are_permanent():
    result = classify_analyzer_failure(KeyError("issues"))

    assert result.kind == FailureKind.PERMANENT
    assert result.reason_code == "unclassified"
