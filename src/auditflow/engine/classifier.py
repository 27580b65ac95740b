"""Deterministic analyzer failure classification for the per-file retry policy."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from auditflow.engine.errors import AnalyzerError, TransientAnalyzerError
from auditflow.models.enums import FailureKind

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "rate_limit",
    "429",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "bad gateway",
    "service unavailable",
    "overloaded",
)
_UNSUPPORTED_INPUT_PATTERNS: tuple[str, ...] = (
    "unsupported language",
    "too large",
    "context length",
    "maximum context",
    "malformed",
    "invalid json",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    kind: FailureKind
    reason_code: str
    matched_pattern: str | None = None
    retry_after_seconds: float | None = None

    @property
    def is_transient(self) -> bool:
        return self.kind == FailureKind.TRANSIENT

    @property
    def is_rate_limit(self) -> bool:
        return self.reason_code == "rate_limited"


def classify_analyzer_failure(error: BaseException) -> FailureClassification:
    """Classify one analyzer failure as transient (retry) or permanent (skip the file)."""

    if isinstance(error, AnalyzerError):
        if isinstance(error, TransientAnalyzerError):
            return FailureClassification(
                kind=FailureKind.TRANSIENT,
                reason_code=error.reason,
                retry_after_seconds=error.retry_after_seconds,
            )
        if error.transient:
            return FailureClassification(kind=FailureKind.TRANSIENT, reason_code=error.reason)
        return FailureClassification(kind=FailureKind.PERMANENT, reason_code=error.reason)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return FailureClassification(kind=FailureKind.TRANSIENT, reason_code="timeout")

    haystack = _normalize_text(error)

    pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            kind=FailureKind.TRANSIENT,
            reason_code="rate_limited",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _UNSUPPORTED_INPUT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            kind=FailureKind.PERMANENT,
            reason_code="unsupported_input",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    if pattern is not None or isinstance(error, ConnectionError):
        return FailureClassification(
            kind=FailureKind.TRANSIENT,
            reason_code="network" if pattern is None else "transient",
            matched_pattern=pattern,
        )

    return FailureClassification(kind=FailureKind.PERMANENT, reason_code="unclassified")


def _normalize_text(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}".lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
