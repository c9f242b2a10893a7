# pharmacity_collector/errors.py
import enum
from typing import Optional

import httpx
from google.genai import errors as genai_errors


class ErrorKind(enum.Enum):
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    PARSE = "parse"


class ConfigError(RuntimeError):
    """Raised when the run cannot start (missing credentials, bad settings)."""


class CollaboratorError(Exception):
    """A failed call to an external service, classified so retry logic never has to read messages."""

    def __init__(self, kind: ErrorKind, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retriable(self) -> bool:
        if self.kind in (ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT, ErrorKind.TRANSPORT):
            return True
        if self.kind is ErrorKind.HTTP_STATUS:
            return self.status_code is not None and self.status_code >= 500
        return False

    def __repr__(self) -> str:
        return f"CollaboratorError(kind={self.kind.value}, status_code={self.status_code}, message={str(self)!r})"


class RateLimitExhausted(CollaboratorError):
    """Still rate limited after the last allowed retry."""

    def __init__(self, attempts: int):
        super().__init__(ErrorKind.RATE_LIMIT, f"Failed after {attempts} attempts due to rate limiting.", 429)
        self.attempts = attempts


def classify_http_error(exc: Exception) -> CollaboratorError:
    """Maps an httpx or google-genai exception onto a CollaboratorError."""
    if isinstance(exc, CollaboratorError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        kind = ErrorKind.RATE_LIMIT if status == 429 else ErrorKind.HTTP_STATUS
        return CollaboratorError(kind, f"HTTP {status} from {exc.request.url}", status)
    if isinstance(exc, genai_errors.APIError):
        kind = ErrorKind.RATE_LIMIT if exc.code == 429 else ErrorKind.HTTP_STATUS
        return CollaboratorError(kind, f"Gemini API error {exc.code}: {exc.message}", exc.code)
    if isinstance(exc, httpx.TimeoutException):
        return CollaboratorError(ErrorKind.TIMEOUT, f"Timed out: {exc}")
    if isinstance(exc, httpx.RequestError):
        return CollaboratorError(ErrorKind.TRANSPORT, f"Network error: {exc}")
    if isinstance(exc, ValueError):
        return CollaboratorError(ErrorKind.PARSE, f"Malformed response: {exc}")
    return CollaboratorError(ErrorKind.TRANSPORT, f"Unexpected error: {exc}")
