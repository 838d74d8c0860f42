"""
AI Provider Error Taxonomy

Every provider failure is classified into one of these types.
Clients raise them internally; the gateway hands them back inside
an AIResponse so jobs can decide between retry and terminal failure.
"""

from typing import Any, Dict, Mapping, Optional

import httpx


class AIError(Exception):
    """Base class for classified AI provider errors."""

    kind: str = "unknown"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        response: Optional[Dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        self.response = response

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "provider": self.provider,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
        }


class ConfigurationError(AIError):
    """Provider is not configured or not available."""
    kind = "configuration"


class RateLimitError(AIError):
    """Provider rate limit hit (HTTP 429)."""
    kind = "rate_limit"
    retryable = True


class InsufficientQuotaError(AIError):
    """Billing quota exhausted on the provider account."""
    kind = "insufficient_quota"


class ContextTooLongError(AIError):
    """Input exceeds the model context window."""
    kind = "context_too_long"


class InvalidRequestError(AIError):
    """Malformed request rejected by the provider."""
    kind = "invalid_request"


class ServerError(AIError):
    """Upstream 5xx, timeout or transport failure."""
    kind = "server_error"
    retryable = True


class CircuitOpenError(ServerError):
    """Provider circuit breaker is open; calls fail fast until it closes. Reported as server_error."""


class UnauthorizedError(AIError):
    """API key rejected."""
    kind = "unauthorized"


class UnknownAIError(AIError):
    """Anything the classifier does not recognise."""
    kind = "unknown"


class BudgetExceededError(AIError):
    """Budget governor denied the call. Raised before any network traffic."""
    kind = "budget_exceeded"


# Longest provider-supplied wait we honour
MAX_RETRY_AFTER = 120.0


def _error_payload(body: Any) -> Dict:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error
        if isinstance(error, str):
            return {"message": error}
    return {}


def parse_retry_after(
    headers: Optional[Mapping[str, str]],
    body: Any = None,
    default: Optional[float] = None,
) -> Optional[float]:
    """Read retry-after from headers or the error body, capped at MAX_RETRY_AFTER."""
    value = None
    if headers:
        value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        value = _error_payload(body).get("retry_after")

    try:
        seconds = float(value) if value is not None else default
    except (TypeError, ValueError):
        seconds = default

    if seconds is None:
        return None
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


def classify_http_error(
    provider: str,
    status_code: int,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    default_retry_after: Optional[float] = None,
) -> AIError:
    """
    Map an HTTP error response to the taxonomy.

    Args:
        provider: Provider name (openai, dalle, perplexity)
        status_code: HTTP status
        body: Decoded JSON body (or raw text)
        headers: Response headers
        default_retry_after: Wait to assume on 429 without a hint

    Returns:
        Classified AIError (not raised)
    """
    error = _error_payload(body)
    message = error.get("message") or (body if isinstance(body, str) and body else f"HTTP {status_code}")
    code = str(error.get("code") or error.get("type") or "")
    text = f"{message} {code}".lower()
    kwargs = dict(provider=provider, status_code=status_code, response=body if isinstance(body, dict) else None)

    if status_code == 402 or (status_code == 429 and "insufficient_quota" in text):
        return InsufficientQuotaError(f"{provider} quota exhausted: {message}", **kwargs)

    if status_code == 429:
        retry_after = parse_retry_after(headers, body, default_retry_after)
        return RateLimitError(f"{provider} rate limit: {message}", retry_after=retry_after, **kwargs)

    if status_code == 400:
        if "context_length_exceeded" in text or "maximum context length" in text:
            return ContextTooLongError(f"{provider} context too long: {message}", **kwargs)
        return InvalidRequestError(f"{provider} invalid request: {message}", **kwargs)

    if status_code in (401, 403):
        return UnauthorizedError(f"{provider} unauthorized: {message}", **kwargs)

    if status_code in (404, 422):
        return InvalidRequestError(f"{provider} invalid request: {message}", **kwargs)

    if status_code >= 500:
        retry_after = parse_retry_after(headers, body)
        return ServerError(f"{provider} server error: {message}", retry_after=retry_after, **kwargs)

    return UnknownAIError(f"{provider} error {status_code}: {message}", **kwargs)


def classify_transport_error(provider: str, exc: Exception) -> AIError:
    """Map an httpx transport exception to the taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return ServerError(f"{provider} request timed out: {exc}", provider=provider)
    if isinstance(exc, httpx.RequestError):
        return ServerError(f"{provider} request failed: {exc}", provider=provider)
    return UnknownAIError(f"{provider} unexpected error: {exc}", provider=provider)
