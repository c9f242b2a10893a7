# pharmacity_collector/delegates/llm_delegate.py
import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
import json5
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ..errors import CollaboratorError, ErrorKind, RateLimitExhausted, classify_http_error
from ..models import ParsedPayload, ParseFailure, ParseResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Greedy and DOTALL: from the first opening bracket to the last closing one.
JSON_ARRAY_PATTERN = re.compile(r"\[.*\]", re.DOTALL)
JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def extract_json(text: Optional[str], kind: str = "array") -> ParseResult:
    """
    Finds the first JSON array ('array') or object ('object') span in free text and parses it.
    Anything around the span is ignored.
    """
    if not text:
        return ParseFailure(reason="empty response")
    pattern = JSON_ARRAY_PATTERN if kind == "array" else JSON_OBJECT_PATTERN
    match = pattern.search(text)
    if not match:
        return ParseFailure(reason=f"no JSON {kind} found", raw=text)
    json_string = match.group(0)
    try:
        value = json5.loads(json_string)
    except ValueError as e:
        logger.debug("Faulty JSON snippet from model: %s", json_string[:200])
        return ParseFailure(reason=f"invalid JSON: {e}", raw=text)

    expected = list if kind == "array" else dict
    if not isinstance(value, expected):
        return ParseFailure(reason=f"expected a JSON {kind}, got {type(value).__name__}", raw=text)
    return ParsedPayload(value=value)


async def with_retry(fn: Callable[[], Awaitable[T]], max_retries: int = 3, initial_delay: float = 5.0,
                     sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> T:
    """
    Calls `fn` until it succeeds or the retry budget runs out.

    Rate limits back off exponentially (initial_delay, 2x, 4x, ...) and end in
    RateLimitExhausted. Timeouts, transport errors and 5xx responses are retried
    straight away. Anything else is raised on the first failure.
    """
    attempts = 0
    while True:
        try:
            return await fn()
        except CollaboratorError as e:
            attempts += 1
            if e.kind is ErrorKind.RATE_LIMIT:
                if attempts >= max_retries:
                    raise RateLimitExhausted(attempts) from e
                delay = initial_delay * 2 ** (attempts - 1)
                logger.warning("Rate limit exceeded, retrying in %.1f seconds... (Attempt %d/%d)",
                               delay, attempts, max_retries)
                await sleep(delay)
                continue
            logger.error("Language model error: %r", e)
            if not e.retriable or attempts >= max_retries:
                raise


class GeminiDelegate:
    """Gemini client on the google-genai SDK's async surface."""
    def __init__(self, api_key: str, model: str, timeout: float = 90.0,
                 max_retries: int = 3, initial_backoff: float = 5.0,
                 client: Optional[Any] = None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.client = client

    async def __aenter__(self):
        if self.client is None:
            # HttpOptions.timeout is in milliseconds
            self.client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
            logger.debug("GeminiDelegate genai.Client initialized.")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.client = None
        logger.debug("GeminiDelegate genai.Client released.")

    async def _generate_once(self, prompt: str) -> str:
        if not self.client:
            raise CollaboratorError(ErrorKind.TRANSPORT, "Gemini client not initialized")
        try:
            response = await self.client.aio.models.generate_content(model=self.model, contents=prompt)
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise classify_http_error(e) from e

        text = getattr(response, "text", None)
        if not text:
            raise CollaboratorError(ErrorKind.PARSE, "Gemini response has no text candidates")
        return text

    async def generate(self, prompt: str) -> str:
        """Returns the model's text for `prompt`, retrying per `with_retry`."""
        return await with_retry(
            lambda: self._generate_once(prompt),
            max_retries=self.max_retries,
            initial_delay=self.initial_backoff,
        )
