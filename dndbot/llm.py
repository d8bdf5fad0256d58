"""Generation client — HTTP connection to a text-generation backend.

The pipeline injects a client matching the protocol:

    async def send(self, system: str, user: str) -> str: ...

`system` carries the role instructions, `user` the content to work on.

Two implementations are provided:

    HttpGenerationClient — real HTTP client, supports Anthropic, OpenAI-compatible
                           and KoboldCpp backends. Selected by provider_format.
    EchoClient           — returns the user content back unchanged. Useful for
                           smoke-testing the pipeline wiring without a model.

Production code constructs an HttpGenerationClient from Settings and hands it
to the Pipeline. Tests use ScriptedClient (defined in conftest.py).

Failures are raised as GenerationError subclasses so callers can tell a
transport problem from an empty answer from an error the backend reported.
Transient failures are retried immediately, up to max_attempts in total.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GenerationError(RuntimeError):
    """Base class for every failure of a generation call."""

    kind = "generation"
    retryable = False


class TransportError(GenerationError):
    """The backend could not be reached, or the request timed out."""

    kind = "transport"
    retryable = True


class EmptyResponseError(GenerationError):
    """The backend answered successfully but produced no text."""

    kind = "empty"


class RemoteError(GenerationError):
    """The backend reported an error or returned an unusable body."""

    kind = "remote"

    def __init__(self, message: str, status_code: int | None = None,
                 retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


_RETRYABLE_STATUS = {408, 429}


def _status_retryable(status_code: int) -> bool:
    return status_code in _RETRYABLE_STATUS or status_code >= 500


# ---------------------------------------------------------------------------
# Protocol — every client implementation must match this signature
# ---------------------------------------------------------------------------

class GenerationClient(Protocol):
    async def send(self, system: str, user: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpGenerationClient — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["anthropic", "openai", "koboldcpp"]


class HttpGenerationClient:
    """Async HTTP client for text-generation backends.

    Supported formats:
      "anthropic"  — POST /v1/messages  {"model", "max_tokens", "system", "messages"}
                     Response: {"content": [{"type": "text", "text": "..."}]}
      "openai"     — POST /v1/chat/completions  {"model", "max_tokens", "messages"}
                     Response: {"choices": [{"message": {"content": "..."}}]}
      "koboldcpp"  — POST /api/v1/generate  {"prompt", "max_length"}
                     Response: {"results": [{"text": "..."}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "https://api.anthropic.com".
        api_key:         Credential, or empty string if not required.
        provider_format: Wire format to use. Defaults to "anthropic".
        model:           Model identifier (ignored by koboldcpp).
        max_tokens:      Upper bound on the response length.
        timeout:         HTTP timeout in seconds. Defaults to 120.
        max_attempts:    Total attempts for transient failures. Defaults to 5.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "anthropic",
        model: str = "",
        max_tokens: int = 4096,
        timeout: float = 120.0,
        max_attempts: int = 5,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if not self._api_key:
            return headers
        if self._format == "anthropic":
            headers["x-api-key"] = self._api_key
            headers["anthropic-version"] = "2023-06-01"
        else:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, system: str, user: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "anthropic":
            url = f"{self._base_url}/v1/messages"
            body: dict = {
                "model": self._model,
                "max_tokens": self._max_tokens,
                "system": system,
                "messages": [{"role": "user", "content": user}],
            }
            return url, body

        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            body = {
                "max_tokens": self._max_tokens,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            }
            if self._model:
                body["model"] = self._model
            return url, body

        # koboldcpp
        url = f"{self._base_url}/api/v1/generate"
        return url, {"prompt": f"{system}\n\n{user}", "max_length": self._max_tokens}

    def _parse_response(self, data: dict) -> str:
        """Extract the generated text from the response body."""
        try:
            if self._format == "anthropic":
                blocks = data["content"]
                if not blocks:
                    raise EmptyResponseError("Backend returned no content blocks")
                return blocks[0].get("text", "")
            if self._format == "openai":
                return data["choices"][0]["message"]["content"] or ""
            return data["results"][0]["text"]
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise RemoteError(f"Unexpected response format from {self._format} backend") from e

    async def _send_once(self, system: str, user: str) -> str:
        url, body = self._build_request(system, user)
        logger.debug("generation call url=%s system_len=%d user_len=%d",
                     url, len(system), len(user))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise TransportError(f"Cannot connect to generation backend at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Generation backend timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise RemoteError(
                f"Generation backend returned HTTP {status}",
                status_code=status,
                retryable=_status_retryable(status),
            ) from e
        except httpx.TransportError as e:
            raise TransportError(f"Transport error talking to generation backend: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteError("Generation backend returned a non-JSON body") from e

        text = self._parse_response(data)
        if not text or not text.strip():
            raise EmptyResponseError("Empty response from generation backend")
        logger.debug("generation response len=%d", len(text))
        return text

    async def send(self, system: str, user: str) -> str:
        last_error: GenerationError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._send_once(system, user)
            except GenerationError as e:
                if not e.retryable:
                    raise
                last_error = e
                logger.warning("generation attempt %d/%d failed: %s",
                               attempt, self._max_attempts, e)
        assert last_error is not None
        raise last_error


# ---------------------------------------------------------------------------
# EchoClient — returns the content unchanged; useful for pipeline smoke tests
# ---------------------------------------------------------------------------

class EchoClient:
    """Returns the user content as-is. No network calls.

    Lets you verify that the pipeline wiring (prompt rendering, checkpoints,
    progress messages, rendering) works end-to-end without a running model.
    The output won't follow the outline grammar, so the adventure ends up
    with no episodes.
    """

    async def send(self, system: str, user: str) -> str:
        logger.debug("EchoClient system_len=%d user_len=%d", len(system), len(user))
        return user
