"""
Client for an OpenAI-compatible chat-completions endpoint.

Every call asks for a JSON object response and returns the parsed object.
Failures are reported as `UpstreamError` (or `UpstreamTimeoutError` once the
per-call deadline passes) tagged with the calling operation's name.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 0.5

# Connection-level failures worth one more attempt. Status errors and bad
# payloads are not retried.
RETRYABLE_ERRORS = (httpx.ConnectError, httpx.RemoteProtocolError, httpx.ReadError)


def extract_json_object(content: str) -> Dict[str, Any]:
    """Extract and parse the first JSON object from a text blob.

    Handles markdown code fences and a JSON object followed by extra prose.
    Raises ValueError when no object can be parsed.
    """
    txt = (content or "").strip()
    if txt.startswith("```json"):
        txt = txt[7:]
    if txt.startswith("```"):
        txt = txt[3:]
    if txt.endswith("```"):
        txt = txt[:-3]
    txt = txt.strip()

    try:
        parsed = json.loads(txt)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    # Fallback: the first balanced {...} block, skipping braces inside strings
    start = txt.find("{")
    if start == -1:
        raise ValueError("No JSON object start found")
    depth = 0
    in_string = False
    escaped = False
    end = None
    for i in range(start, len(txt)):
        ch = txt[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                end = i
                break
    if end is None:
        raise ValueError("No complete JSON object found")
    try:
        parsed = json.loads(txt[start:end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse JSON content: {e}")
    if not isinstance(parsed, dict):
        raise ValueError("Completion content is not a JSON object")
    return parsed


class CompletionClient:
    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        timeout: float = 30.0,
        max_retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        # Avoid inheriting proxy settings from the environment
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            transport=transport,
            trust_env=False,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def complete_json(
        self,
        messages: List[Dict[str, Any]],
        operation: str,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send `messages` and return the completion parsed as a JSON object."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "response_format": {"type": "json_object"},
        }
        if max_tokens:
            payload["max_completion_tokens"] = max_tokens

        try:
            body = await asyncio.wait_for(self._post_with_retry(payload, operation), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error("[%s] completion API timed out after %.1fs", operation, self.timeout)
            raise UpstreamTimeoutError(operation, f"no answer within {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            preview = e.response.text[:300]
            logger.error("[%s] completion API returned %s: %s", operation, e.response.status_code, preview)
            raise UpstreamError(operation, f"status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("[%s] completion API request failed: %s", operation, e)
            raise UpstreamError(operation, str(e)) from e
        except ValueError as e:
            # response body was not JSON
            logger.error("[%s] completion API body is not JSON: %s", operation, e)
            raise UpstreamError(operation, "response body is not JSON") from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error("[%s] completion API response has no message content", operation)
            raise UpstreamError(operation, "missing message content") from e

        try:
            return extract_json_object(content)
        except ValueError as e:
            logger.error("[%s] completion content is not a JSON object: %s", operation, e)
            raise UpstreamError(operation, str(e)) from e

    async def _post_with_retry(self, payload: Dict[str, Any], operation: str) -> Dict[str, Any]:
        attempt = 0
        while True:
            try:
                response = await self._http.post("/chat/completions", json=payload)
                logger.debug("[%s] completion API status %s", operation, response.status_code)
                response.raise_for_status()
                return response.json()
            except RETRYABLE_ERRORS as e:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.warning("[%s] transient completion API failure (%s), retry %d/%d",
                               operation, e, attempt, self.max_retries)
                await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)
