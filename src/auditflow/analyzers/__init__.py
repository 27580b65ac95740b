"""Analyzer capability and implementations."""

from auditflow.analyzers.base import Analyzer, parse_analysis_payload
from auditflow.analyzers.http import HttpAnalyzer

__all__ = ["Analyzer", "HttpAnalyzer", "parse_analysis_payload"]
