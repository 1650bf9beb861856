"""Tests for the DeepSeek chat completions client."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from lorechat.providers import CompletionRequest, ContentPolicyError, DeepSeekProvider, ProviderError


def _mock_response(body: dict, status: int = 200, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


def _request(**kwargs) -> CompletionRequest:
    defaults = dict(model="deepseek-chat", system="persona", system_tail="vars",
                    messages=[{"role": "user", "content": "안녕"}])
    defaults.update(kwargs)
    return CompletionRequest(**defaults)


@pytest.fixture
def deepseek() -> DeepSeekProvider:
    return DeepSeekProvider(api_key="d-key", base_url="http://deepseek.test")


async def test_request_shape(deepseek: DeepSeekProvider) -> None:
    reply = {"choices": [{"message": {"content": "반가워"}, "finish_reason": "stop"}]}
    mock_post = AsyncMock(return_value=_mock_response(reply))
    with patch("httpx.AsyncClient.post", mock_post):
        out = await deepseek.complete(_request(json_output=True))
    assert out.text == "반가워"
    assert mock_post.call_args[0][0] == "http://deepseek.test/chat/completions"
    assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer d-key"
    body = mock_post.call_args.kwargs["json"]
    assert body["messages"][0] == {"role": "system", "content": "persona\n\nvars"}
    assert body["messages"][1] == {"role": "user", "content": "안녕"}
    assert body["response_format"] == {"type": "json_object"}


async def test_no_system_message_when_empty(deepseek: DeepSeekProvider) -> None:
    reply = {"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]}
    mock_post = AsyncMock(return_value=_mock_response(reply))
    with patch("httpx.AsyncClient.post", mock_post):
        await deepseek.complete(_request(system="", system_tail=""))
    assert mock_post.call_args.kwargs["json"]["messages"][0]["role"] == "user"


async def test_content_risk_rejection(deepseek: DeepSeekProvider) -> None:
    resp = _mock_response({}, status=400, text='{"error": {"message": "Content Exists Risk"}}')
    with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
        with pytest.raises(ContentPolicyError):
            await deepseek.complete(_request())


async def test_other_400_is_provider_error(deepseek: DeepSeekProvider) -> None:
    resp = _mock_response({}, status=400, text="bad model")
    with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
        with pytest.raises(ProviderError) as exc:
            await deepseek.complete(_request())
    assert not isinstance(exc.value, ContentPolicyError)


async def test_content_filter_finish(deepseek: DeepSeekProvider) -> None:
    reply = {"choices": [{"message": {"content": ""}, "finish_reason": "content_filter"}]}
    with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response(reply))):
        with pytest.raises(ContentPolicyError):
            await deepseek.complete(_request())


async def test_timeout(deepseek: DeepSeekProvider) -> None:
    with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.ReadTimeout("slow"))):
        with pytest.raises(ProviderError, match="timed out"):
            await deepseek.complete(_request())
