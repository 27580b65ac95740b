"""HTTP analyzer client with circuit breaker protection."""

import logging
from typing import Any, Optional

import httpx

from auditflow.analyzers.base import parse_analysis_payload
from auditflow.config import settings
from auditflow.engine.errors import (
    AnalyzerError,
    PermanentAnalyzerError,
    TransientAnalyzerError,
)
from auditflow.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
)
from auditflow.models import AnalysisResult

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class HttpAnalyzer:
    """
    Analyzer backed by an HTTP endpoint.

    POSTs {"file_path", "language", "content"} to `<endpoint>/analyze` and
    expects {"issues": [...], "quality_score": n, "summary": "..."} back.

    Usage:
        analyzer = HttpAnalyzer()
        result = await analyzer.analyze("src/app.py", "python", source)
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = (endpoint or settings.analyzer_endpoint or "").rstrip("/")
        self.api_key = api_key if api_key is not None else settings.analyzer_api_key
        self.timeout_seconds = timeout_seconds or settings.analyzer_timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._circuit_breaker: Optional[CircuitBreaker] = None
        self._initialize_circuit_breaker()

    def _initialize_circuit_breaker(self):
        """Initialize circuit breaker if enabled."""
        if not settings.analyzer_circuit_breaker_enabled:
            logger.info("Analyzer circuit breaker disabled")
            return

        config = CircuitBreakerConfig(
            failure_threshold=settings.analyzer_circuit_breaker_failure_threshold,
            timeout_seconds=settings.analyzer_circuit_breaker_timeout_seconds,
            half_open_max_calls=settings.analyzer_circuit_breaker_half_open_max_calls,
            success_threshold=settings.analyzer_circuit_breaker_success_threshold,
        )
        self._circuit_breaker = CircuitBreaker("analyzer", config)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds, headers=headers)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def analyze(self, file_path: str, language: str, content: str) -> AnalysisResult:
        """Analyze one file."""
        if not self.endpoint:
            raise TransientAnalyzerError("analyzer_endpoint not configured", "not_configured")

        payload = {"file_path": file_path, "language": language, "content": content}

        if self._circuit_breaker is None:
            return await self._post(payload)

        try:
            return await self._circuit_breaker.call(
                self._post,
                payload,
                counts=lambda e: isinstance(e, AnalyzerError) and e.transient,
            )
        except CircuitBreakerOpen as e:
            raise TransientAnalyzerError(str(e), "circuit_open", retry_after_seconds=e.retry_after)

    async def _post(self, payload: dict[str, Any]) -> AnalysisResult:
        url = f"{self.endpoint}/analyze"
        try:
            response = await self._get_client().post(url, json=payload)
        except httpx.TimeoutException as e:
            raise TransientAnalyzerError(f"Analyzer timed out: {e}", "timeout")
        except httpx.TransportError as e:
            raise TransientAnalyzerError(f"Analyzer unreachable: {e}", "network")

        if response.status_code == 429:
            raise TransientAnalyzerError(
                "Analyzer rate limited (429 Too Many Requests)",
                "rate_limited",
                retry_after_seconds=_retry_after(response),
            )
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientAnalyzerError(
                f"Analyzer returned {response.status_code}", "server_error"
            )
        if response.status_code == 413:
            raise PermanentAnalyzerError("File too large for analyzer", "file_too_large")
        if response.status_code == 422:
            raise PermanentAnalyzerError(
                f"Analyzer rejected input: {response.text[:200]}", "unsupported_input"
            )
        if response.status_code >= 400:
            raise PermanentAnalyzerError(
                f"Analyzer returned {response.status_code}: {response.text[:200]}",
                "client_error",
            )

        try:
            data = response.json()
        except ValueError:
            raise PermanentAnalyzerError("Analyzer returned invalid JSON", "invalid_response")

        return parse_analysis_payload(data)
