"""Tests for dndbot.llm — HttpGenerationClient and EchoClient."""

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from dndbot.llm import (
    EchoClient,
    EmptyResponseError,
    GenerationError,
    HttpGenerationClient,
    RemoteError,
    TransportError,
)


def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


def _anthropic_body(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}]}


# ---------------------------------------------------------------------------
# EchoClient
# ---------------------------------------------------------------------------

class TestEchoClient:
    async def test_returns_user_content_unchanged(self) -> None:
        assert await EchoClient().send("system", "hello world") == "hello world"


# ---------------------------------------------------------------------------
# HttpGenerationClient — Anthropic format
# ---------------------------------------------------------------------------

class TestAnthropicFormat:
    @pytest.fixture
    def client(self) -> HttpGenerationClient:
        return HttpGenerationClient(
            provider_url="https://api.anthropic.com/",
            api_key="secret",
            model="claude-test",
            max_tokens=1000,
        )

    async def test_happy_path(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_anthropic_body("A cold wind blows.")))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await client.send("You are a DM.", "Describe the keep.")
        assert result == "A cold wind blows."

    async def test_request_shape(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_anthropic_body("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.send("instructions", "content")
        assert mock_post.call_args[0][0] == "https://api.anthropic.com/v1/messages"
        body = mock_post.call_args.kwargs["json"]
        assert body["model"] == "claude-test"
        assert body["max_tokens"] == 1000
        assert body["system"] == "instructions"
        assert body["messages"] == [{"role": "user", "content": "content"}]
        headers = mock_post.call_args.kwargs["headers"]
        assert headers["x-api-key"] == "secret"
        assert headers["anthropic-version"] == "2023-06-01"
        assert "Authorization" not in headers

    async def test_empty_content_blocks_not_retried(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"content": []}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(EmptyResponseError):
                await client.send("s", "u")
        assert mock_post.call_count == 1

    async def test_blank_text_is_empty_response(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_anthropic_body("   \n")))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(EmptyResponseError):
                await client.send("s", "u")
        assert mock_post.call_count == 1


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------

class TestRetries:
    @pytest.fixture
    def client(self) -> HttpGenerationClient:
        return HttpGenerationClient(provider_url="http://llm.test", api_key="k", max_attempts=5)

    async def test_transient_failures_then_success(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(side_effect=[
            httpx.ConnectError("refused"),
            _mock_response({}, status=503),
            _mock_response(_anthropic_body("finally")),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await client.send("s", "u") == "finally"
        assert mock_post.call_count == 3

    async def test_gives_up_after_max_attempts(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="Cannot connect"):
                await client.send("s", "u")
        assert mock_post.call_count == 5

    async def test_timeout_is_retried(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(side_effect=[
            httpx.TimeoutException("slow"),
            _mock_response(_anthropic_body("ok")),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await client.send("s", "u") == "ok"

    async def test_rate_limited_is_retried(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(side_effect=[
            _mock_response({}, status=429),
            _mock_response(_anthropic_body("ok")),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await client.send("s", "u") == "ok"
        assert mock_post.call_count == 2

    async def test_client_error_not_retried(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=401))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(RemoteError, match="HTTP 401") as exc_info:
                await client.send("s", "u")
        assert exc_info.value.status_code == 401
        assert not exc_info.value.retryable
        assert mock_post.call_count == 1

    async def test_server_error_exhausts_attempts(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=500))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(GenerationError, match="HTTP 500"):
                await client.send("s", "u")
        assert mock_post.call_count == 5

    async def test_malformed_body_not_retried(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": "format"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(RemoteError, match="Unexpected response format"):
                await client.send("s", "u")
        assert mock_post.call_count == 1

    async def test_single_attempt_when_configured(self) -> None:
        client = HttpGenerationClient(provider_url="http://llm.test", max_attempts=1)
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError):
                await client.send("s", "u")
        assert mock_post.call_count == 1


# ---------------------------------------------------------------------------
# HttpGenerationClient — OpenAI format
# ---------------------------------------------------------------------------

class TestOpenAIFormat:
    @pytest.fixture
    def client(self) -> HttpGenerationClient:
        return HttpGenerationClient(
            provider_url="http://localhost:8080",
            api_key="secret",
            provider_format="openai",
            model="mistral-7b",
        )

    async def test_posts_chat_completion(self, client: HttpGenerationClient) -> None:
        body = {"choices": [{"message": {"content": "A stormy night."}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await client.send("system text", "user text")
        assert result == "A stormy night."
        assert mock_post.call_args[0][0] == "http://localhost:8080/v1/chat/completions"
        sent = mock_post.call_args.kwargs["json"]
        assert sent["model"] == "mistral-7b"
        assert sent["messages"][0] == {"role": "system", "content": "system text"}
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"


# ---------------------------------------------------------------------------
# HttpGenerationClient — KoboldCpp format
# ---------------------------------------------------------------------------

class TestKoboldCppFormat:
    @pytest.fixture
    def client(self) -> HttpGenerationClient:
        return HttpGenerationClient(
            provider_url="http://localhost:5001", provider_format="koboldcpp", max_tokens=200,
        )

    async def test_joins_system_and_user(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.send("system", "user")
        assert mock_post.call_args[0][0] == "http://localhost:5001/api/v1/generate"
        assert mock_post.call_args.kwargs["json"] == {"prompt": "system\n\nuser", "max_length": 200}

    async def test_no_auth_header_without_key(self, client: HttpGenerationClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.send("s", "u")
        headers = mock_post.call_args.kwargs["headers"]
        assert "Authorization" not in headers
        assert "x-api-key" not in headers
