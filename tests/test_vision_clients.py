"""Tests for vision inference clients."""

from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httpx
import pytest

from fieldmap.core.config import VisionSettings
from fieldmap.core.exceptions import APIClientError, APITimeoutError, ConfigurationError
from fieldmap.core.llm_client import BaseLLMClient, is_retryable_status
from fieldmap.services.vision.base import calculate_confidence, image_url_for
from fieldmap.services.vision.factory import create_vision_client
from fieldmap.services.vision.gemini_vision import GeminiVisionClient
from fieldmap.services.vision.mock_vision import MockVisionClient, synthetic_value
from fieldmap.services.vision.openrouter_vision import OpenRouterVisionClient
from fieldmap.utils.json_parser import parse_json_object

API_URL = "https://openrouter.ai/api/v1/chat/completions"


def completion(content, total_tokens=120):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"total_tokens": total_tokens},
    }


class TestConfidenceHeuristic:
    @pytest.mark.parametrize(
        "content,expected",
        [
            ("SN-1234567890", 85),
            ("SN-1", 65),
            ("The label clearly reads SN-1234567890", 90),
            ("The serial might be SN-1234567890", 70),
            ("Unclear, but it clearly shows SN-1234567890", 75),
            ("n/a", 65),
        ],
    )
    def test_heuristic(self, content, expected):
        assert calculate_confidence(content) == expected

    def test_stays_in_range(self):
        assert 0 <= calculate_confidence("") <= 100


@pytest.mark.parametrize(
    "image,expected",
    [
        ("https://cdn.example.com/a.jpg", "https://cdn.example.com/a.jpg"),
        ("data:image/png;base64,AAAA", "data:image/png;base64,AAAA"),
        ("AAAA", "data:image/jpeg;base64,AAAA"),
    ],
)
def test_image_url_for(image, expected):
    assert image_url_for(image) == expected


class TestOpenRouterVisionClient:
    @pytest.fixture
    def transport(self) -> Mock:
        transport = Mock(spec=BaseLLMClient)
        transport.call_api = AsyncMock(return_value=completion("SN-1234567890"))
        return transport

    @pytest.fixture
    def client(self, transport) -> OpenRouterVisionClient:
        return OpenRouterVisionClient(api_key="test-key", model="openai/gpt-4o", transport=transport)

    @pytest.mark.asyncio
    async def test_plain_text_extraction(self, client, transport):
        result = await client.extract(
            "https://cdn.example.com/router.jpg",
            "Read the router serial number",
            max_tokens=300,
            temperature=0.1,
        )

        assert result.success is True
        assert result.extracted_text == "SN-1234567890"
        assert result.extracted_data is None
        assert result.confidence == 85
        assert result.model == "openai/gpt-4o"
        assert result.tokens_used == 120

        payload = transport.call_api.call_args.kwargs["payload"]
        assert payload["model"] == "openai/gpt-4o"
        assert payload["max_tokens"] == 300
        assert payload["temperature"] == 0.1
        system, user = payload["messages"]
        assert system["role"] == "system"
        assert "JSON" not in system["content"]
        assert user["content"][0] == {"type": "text", "text": "Read the router serial number"}
        assert user["content"][1] == {
            "type": "image_url",
            "image_url": {"url": "https://cdn.example.com/router.jpg"},
        }

    @pytest.mark.asyncio
    async def test_structured_output_parses_json(self, client, transport):
        transport.call_api.return_value = completion(
            'Here you go:\n```json\n{"serial": "SN-1", "mac": "00:11"}\n```'
        )

        result = await client.extract("AAAA", "Read the label", structured_output=True)

        assert result.success is True
        assert result.extracted_data == {"serial": "SN-1", "mac": "00:11"}
        payload = transport.call_api.call_args.kwargs["payload"]
        assert "valid JSON" in payload["messages"][0]["content"]
        assert payload["messages"][1]["content"][0]["text"].endswith(
            "Return the result as JSON with appropriate field names."
        )
        assert payload["messages"][1]["content"][1]["image_url"]["url"] == "data:image/jpeg;base64,AAAA"

    @pytest.mark.asyncio
    async def test_structured_output_without_json_fails(self, client, transport):
        transport.call_api.return_value = completion("I cannot read this label")

        result = await client.extract("AAAA", "Read the label", structured_output=True)

        assert result.success is False
        assert "JSON" in result.error

    @pytest.mark.asyncio
    async def test_empty_reply_is_a_failure(self, client, transport):
        transport.call_api.return_value = completion(None)

        result = await client.extract("AAAA", "Read the label")

        assert result.success is False
        assert result.error == "No response from vision service"

    @pytest.mark.asyncio
    async def test_api_error_becomes_failed_result(self, client, transport):
        transport.call_api.side_effect = APIClientError("API Client Error 401: unauthorized")

        result = await client.extract("AAAA", "Read the label")

        assert result.success is False
        assert "401" in result.error

    @pytest.mark.asyncio
    async def test_extract_many_preserves_order(self, client, transport):
        transport.call_api.side_effect = [completion("first value"), completion("second value")]

        results = await client.extract_many([("a.jpg", "one"), ("b.jpg", "two")])

        assert [r.extracted_text for r in results] == ["first value", "second value"]


class TestBaseLLMClient:
    @pytest.fixture
    def llm_client(self) -> BaseLLMClient:
        return BaseLLMClient(api_key="test-key", base_url=API_URL, max_retries=2, retry_delay=0)

    @staticmethod
    def response(status_code, json_body=None, text=""):
        request = httpx.Request("POST", API_URL)
        if json_body is not None:
            return httpx.Response(status_code, json=json_body, request=request)
        return httpx.Response(status_code, text=text, request=request)

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, llm_client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(
            side_effect=[self.response(503, text="busy"), self.response(200, completion("ok"))]
        )

        with patch("fieldmap.core.llm_client.httpx.AsyncClient", return_value=mock_httpx_client):
            body = await llm_client.call_api(payload={"model": "m"})

        assert body["choices"][0]["message"]["content"] == "ok"
        assert mock_httpx_client.post.await_count == 2
        headers = mock_httpx_client.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, llm_client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(return_value=self.response(400, text="bad request"))

        with patch("fieldmap.core.llm_client.httpx.AsyncClient", return_value=mock_httpx_client):
            with pytest.raises(APIClientError, match="400"):
                await llm_client.call_api(payload={})

        assert mock_httpx_client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self, llm_client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(return_value=self.response(429, text="slow down"))

        with patch("fieldmap.core.llm_client.httpx.AsyncClient", return_value=mock_httpx_client):
            with pytest.raises(APIClientError, match="API HTTP Error 429 after 2 attempts"):
                await llm_client.call_api(payload={})

        assert mock_httpx_client.post.await_count == 2

    @pytest.mark.parametrize(
        "status_code,retryable",
        [(400, False), (401, False), (404, False), (429, True), (500, True), (503, True)],
    )
    def test_retryable_statuses(self, status_code, retryable):
        assert is_retryable_status(status_code) is retryable

    @pytest.mark.asyncio
    async def test_timeouts_raise_after_retries(self, llm_client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(side_effect=httpx.ReadTimeout("slow"))

        with patch("fieldmap.core.llm_client.httpx.AsyncClient", return_value=mock_httpx_client):
            with pytest.raises(APITimeoutError):
                await llm_client.call_api(payload={})

        assert mock_httpx_client.post.await_count == 2


class TestGeminiVisionClient:
    @pytest.mark.asyncio
    async def test_sends_inline_image_bytes(self):
        with patch("fieldmap.services.vision.gemini_vision.genai") as mock_genai:
            sdk = MagicMock()
            sdk.aio.models.generate_content = AsyncMock(
                return_value=Mock(text=" SN-1234567890 ", usage_metadata=Mock(total_token_count=42))
            )
            mock_genai.Client.return_value = sdk

            client = GeminiVisionClient(api_key="test-key", model="gemini-2.0-flash", retry_delay=0)
            result = await client.extract("data:image/png;base64,aGVsbG8=", "Read the serial")

        assert result.success is True
        assert result.extracted_text == "SN-1234567890"
        assert result.tokens_used == 42
        kwargs = sdk.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.0-flash"
        image_part, prompt = kwargs["contents"]
        assert image_part.inline_data.data == b"hello"
        assert image_part.inline_data.mime_type == "image/png"
        assert prompt == "Read the serial"
        assert kwargs["config"].max_output_tokens == 300

    @pytest.mark.asyncio
    async def test_download_failure_is_reported(self, mock_httpx_client):
        mock_httpx_client.get = AsyncMock(side_effect=httpx.ConnectError("unreachable"))

        with patch("fieldmap.services.vision.gemini_vision.genai"), patch(
            "fieldmap.services.vision.gemini_vision.httpx.AsyncClient",
            return_value=mock_httpx_client,
        ):
            client = GeminiVisionClient(api_key="test-key", retry_delay=0)
            result = await client.extract("https://cdn.example.com/a.jpg", "Read the serial")

        assert result.success is False
        assert "Failed to download image" in result.error


class TestMockVisionClient:
    @pytest.mark.asyncio
    async def test_synthetic_value_without_network(self):
        client = MockVisionClient(confidence=77)

        result = await client.extract("a.jpg", "Read the router serial number")

        assert result.success is True
        assert result.extracted_text == "MOCK READ THE ROUTER SERIAL NUMBER"
        assert result.confidence == 77
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_responses_match_by_substring(self):
        client = MockVisionClient(responses={"serial": ("SN-1", 60)})

        result = await client.extract("a.jpg", "Read the serial")

        assert (result.extracted_text, result.confidence) == ("SN-1", 60)

    def test_synthetic_value_of_blank_instruction(self):
        assert synthetic_value("?!") == "MOCK VALUE"


class TestFactory:
    def test_mock_provider(self):
        client = create_vision_client(VisionSettings(VISION_PROVIDER="mock", VISION_MOCK_CONFIDENCE=70))

        assert isinstance(client, MockVisionClient)
        assert client.confidence == 70

    def test_openrouter_provider(self):
        client = create_vision_client(
            VisionSettings(VISION_PROVIDER="openrouter", OPENROUTER_API_KEY="test-key")
        )

        assert isinstance(client, OpenRouterVisionClient)
        assert client.model == "openai/gpt-4o"

    def test_missing_key_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError, match="OPENROUTER_API_KEY"):
            create_vision_client(VisionSettings(VISION_PROVIDER="openrouter", OPENROUTER_API_KEY=""))

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unsupported vision provider"):
            create_vision_client(VisionSettings(VISION_PROVIDER="tesseract"))


class TestParseJsonObject:
    def test_plain_object(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_object_inside_prose(self):
        assert parse_json_object('Result: {"a": {"b": 2}} done') == {"a": {"b": 2}}

    def test_two_objects_returns_first(self):
        assert parse_json_object('{"a": 1} and {"b": 2}') == {"a": 1}

    @pytest.mark.parametrize("text", [None, "", "no json here", "[1, 2]"])
    def test_no_object(self, text):
        assert parse_json_object(text) is None
