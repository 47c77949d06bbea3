"""Tests for the httpx inference-server client."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from chat_studio.chat.errors import NetworkError
from chat_studio.llm.client import OllamaClient, parse_model_names

BASE = "http://ollama.test:11434"

# -- Helpers -----------------------------------------------------------------


def _mock_streaming_client(mock_cls, chunks, status_code=200, reason="OK"):
    """Wire up an httpx.AsyncClient mock for a streaming POST."""
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.reason_phrase = reason

    async def aiter_bytes():
        for chunk in chunks:
            yield chunk

    mock_response.aiter_bytes = aiter_bytes
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=False)

    # client.stream() must return the context manager directly (not a coroutine)
    mock_client = MagicMock()
    mock_client.stream.return_value = mock_response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_cls.return_value = mock_client
    return mock_client


def _json_response(data, status_code=200):
    return httpx.Response(
        status_code, json=data, request=httpx.Request("GET", f"{BASE}/api/tags")
    )


def _mock_get_client(mock_cls, responses):
    mock_client = MagicMock()
    mock_client.get = AsyncMock(side_effect=responses)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_cls.return_value = mock_client
    return mock_client


# -- open_stream -------------------------------------------------------------


async def test_open_stream_posts_to_generate_endpoint() -> None:
    payload = {"model": "llama3", "prompt": "USER:\nhi", "stream": True}
    with patch("chat_studio.llm.client.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_streaming_client(mock_cls, [b'{"response":"a"}', b'{"done":true}'])
        client = OllamaClient(BASE + "/", mode="generate")
        async with client.open_stream(payload) as body:
            chunks = [chunk async for chunk in body]

    assert chunks == [b'{"response":"a"}', b'{"done":true}']
    mock_client.stream.assert_called_once_with("POST", f"{BASE}/api/generate", json=payload)


@pytest.mark.parametrize(
    ("mode", "path"),
    [("chat", "/api/chat"), ("openai", "/v1/chat/completions")],
)
async def test_endpoint_follows_mode(mode: str, path: str) -> None:
    assert OllamaClient(BASE, mode=mode).generate_url == BASE + path


async def test_http_error_status_raises_network_error() -> None:
    with patch("chat_studio.llm.client.httpx.AsyncClient") as mock_cls:
        _mock_streaming_client(mock_cls, [], status_code=404, reason="Not Found")
        client = OllamaClient(BASE)
        with pytest.raises(NetworkError, match="HTTP 404: Not Found") as exc_info:
            async with client.open_stream({"model": "missing"}):
                pass

    assert exc_info.value.status_code == 404


async def test_transport_error_raises_network_error() -> None:
    with patch("chat_studio.llm.client.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_streaming_client(mock_cls, [])
        mock_client.stream.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(NetworkError, match="connection refused") as exc_info:
            async with OllamaClient(BASE).open_stream({}):
                pass

    assert exc_info.value.status_code is None
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


async def test_read_error_mid_stream_raises_network_error() -> None:
    with patch("chat_studio.llm.client.httpx.AsyncClient") as mock_cls:
        mock_response = _mock_streaming_client(mock_cls, []).stream.return_value

        async def broken():
            yield b'{"response":"a"}'
            raise httpx.ReadError("peer reset")

        mock_response.aiter_bytes = broken
        received = []
        with pytest.raises(NetworkError):
            async with OllamaClient(BASE).open_stream({}) as body:
                async for chunk in body:
                    received.append(chunk)

    assert received == [b'{"response":"a"}']


def test_only_connect_phase_has_timeout() -> None:
    client = OllamaClient(BASE, connect_timeout=3.5)
    assert client._timeout.connect == 3.5
    assert client._timeout.read is None
    assert client._timeout.write is None
    assert client._timeout.pool is None


# -- list_models -------------------------------------------------------------


async def test_list_models_from_tags() -> None:
    data = {"models": [{"name": "llama3:latest"}, {"model": "mistral:7b"}]}
    with patch("chat_studio.llm.client.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_get_client(mock_cls, [_json_response(data)])
        models = await OllamaClient(BASE).list_models()

    assert models == ["llama3:latest", "mistral:7b"]
    mock_client.get.assert_awaited_once_with(f"{BASE}/api/tags")


async def test_list_models_falls_back_to_models_endpoint() -> None:
    with patch("chat_studio.llm.client.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_get_client(
            mock_cls, [_json_response({}, status_code=404), _json_response(["phi3"])]
        )
        models = await OllamaClient(BASE).list_models()

    assert models == ["phi3"]
    assert mock_client.get.await_count == 2


async def test_list_models_all_endpoints_fail() -> None:
    with patch("chat_studio.llm.client.httpx.AsyncClient") as mock_cls:
        _mock_get_client(
            mock_cls, [httpx.ConnectError("refused"), httpx.ConnectError("refused")]
        )
        with pytest.raises(NetworkError):
            await OllamaClient(BASE).list_models()


class TestParseModelNames:
    def test_bare_list_of_strings(self):
        assert parse_model_names(["a", "b"]) == ["a", "b"]

    def test_objects_with_name_model_or_id(self):
        data = {"models": [{"name": "a"}, {"model": "b"}, {"id": "c"}, {"size": 1}]}
        assert parse_model_names(data) == ["a", "b", "c"]

    def test_unexpected_shape(self):
        assert parse_model_names({"data": []}) == []
        assert parse_model_names("nope") == []
