"""Analyzer capability and response normalization."""

import logging
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from auditflow.engine.errors import PermanentAnalyzerError
from auditflow.engine.scoring import clamp_score
from auditflow.models import AIExplanation, AnalysisResult, IssueFinding, IssueType, Severity

logger = logging.getLogger(__name__)


@runtime_checkable
class Analyzer(Protocol):
    """
    Inspects one file and returns its issues plus a 0-100 quality contribution.

    Implementations enforce their own timeout and raise TransientAnalyzerError
    or PermanentAnalyzerError; anything else is classified from its message.
    """

    async def analyze(self, file_path: str, language: str, content: str) -> AnalysisResult:
        ...


def _coerce_enum(enum_cls, value: Any, default):
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    return default


def _coerce_int(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _parse_explanation(raw: Any) -> Optional[AIExplanation]:
    if not isinstance(raw, dict):
        return None
    return AIExplanation(
        what=str(raw.get("what") or ""),
        why=str(raw.get("why") or ""),
        how=str(raw.get("how") or ""),
        learn_more=raw.get("learn_more") or raw.get("learnMore"),
    )


def parse_issue(raw: dict[str, Any]) -> IssueFinding:
    """Normalize one loosely-shaped issue dict, applying defaults for missing fields."""
    return IssueFinding(
        issue_type=_coerce_enum(IssueType, raw.get("type") or raw.get("issue_type"), IssueType.MAINTAINABILITY),
        severity=_coerce_enum(Severity, raw.get("severity"), Severity.LOW),
        title=str(raw.get("title") or "Issue"),
        description=str(raw.get("description") or ""),
        suggestion=raw.get("suggestion"),
        line_number=_coerce_int(raw.get("line") or raw.get("line_number")),
        column_number=_coerce_int(raw.get("column") or raw.get("column_number")),
        code_snippet=raw.get("code_snippet"),
        ai_explanation=_parse_explanation(raw.get("xai") or raw.get("ai_explanation")),
    )


def parse_analysis_payload(payload: Any) -> AnalysisResult:
    """
    Build an AnalysisResult from an analyzer response body.

    Raises:
        PermanentAnalyzerError: if the body is not an object or issues is not a list
    """
    if not isinstance(payload, dict):
        raise PermanentAnalyzerError("Analyzer response is not a JSON object", "invalid_response")

    raw_issues = payload.get("issues") or []
    if not isinstance(raw_issues, list):
        raise PermanentAnalyzerError("Analyzer response 'issues' is not a list", "invalid_response")

    issues: list[IssueFinding] = []
    for raw in raw_issues:
        if not isinstance(raw, dict):
            logger.debug(f"Dropping non-object issue entry: {raw!r}")
            continue
        try:
            issues.append(parse_issue(raw))
        except ValidationError as e:
            logger.debug(f"Dropping malformed issue entry: {e}")

    score = payload.get("quality_score", 100.0)
    try:
        score = clamp_score(float(score))
    except (TypeError, ValueError):
        score = 100.0

    return AnalysisResult(issues=issues, quality_score=score, summary=payload.get("summary"))
