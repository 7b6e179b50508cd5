"""Tests for the Gemini and OpenAI translation clients."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError, APIStatusError, RateLimitError

from common.config import settings
from conftest import TEST_DELIMITER, make_entries
from translator.batcher import Batch
from translator.errors import (
    FatalApiError,
    QuotaExceededError,
    SegmentCountMismatchError,
    TransientServerError,
)
from translator.translation_service import (
    BaseTranslationClient,
    GeminiTranslationClient,
    OpenAITranslationClient,
    create_translation_client,
    extract_gemini_text,
    raise_for_api_status,
    strip_code_fences,
)

GEMINI_BASE_URL = "https://gemini.test/v1beta"
JOINER = f"\n{TEST_DELIMITER}\n"


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def make_batch(count=3, index=1):
    return Batch(index=index, entries=tuple(make_entries(count)))


class CannedReplyClient(BaseTranslationClient):
    """Client whose remote call returns a fixed reply."""

    provider_name = "canned"

    def __init__(self, reply="", **kwargs):
        super().__init__(**kwargs)
        self.reply = reply

    async def _send(self, request, prompt):
        return self.reply


def make_gemini_client(handler):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiTranslationClient(
        model="gemini-test",
        base_url=GEMINI_BASE_URL,
        http_client=http_client,
        delimiter=TEST_DELIMITER,
        timeout=5.0,
    )


def openai_error_response(status_code):
    request = httpx.Request("POST", "https://api.openai.test/v1/chat/completions")
    return httpx.Response(status_code, request=request)


def openai_completion(content, finish_reason="stop"):
    choice = MagicMock()
    choice.message.content = content
    choice.finish_reason = finish_reason
    response = MagicMock()
    response.choices = [choice]
    return response


@pytest.mark.unit
class TestRaiseForApiStatus:
    """Test status code mapping."""

    @pytest.mark.parametrize("status_code", [200, 201, 204])
    def test_success_statuses_pass(self, status_code):
        raise_for_api_status(status_code, "OK", "Gemini")

    @pytest.mark.parametrize(
        "status_code,error_class",
        [
            (503, TransientServerError),
            (429, QuotaExceededError),
            (400, FatalApiError),
            (401, FatalApiError),
            (403, FatalApiError),
            (500, FatalApiError),
            (502, FatalApiError),
        ],
    )
    def test_error_statuses(self, status_code, error_class):
        with pytest.raises(error_class) as exc_info:
            raise_for_api_status(status_code, "detail", "Gemini")

        assert exc_info.value.status_code == status_code


@pytest.mark.unit
class TestResponseHelpers:
    """Test response parsing helpers."""

    @pytest.mark.parametrize(
        "response,expected",
        [
            ("Hola", "Hola"),
            ("```\nHola\n```", "Hola"),
            ("```text\nHola\nAdiós\n```", "Hola\nAdiós"),
            ("  Hola  ", "Hola"),
        ],
    )
    def test_strip_code_fences(self, response, expected):
        assert strip_code_fences(response) == expected

    def test_extract_gemini_text(self):
        assert extract_gemini_text(gemini_body("  Hola \n")) == "Hola"

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"candidates": []},
            {"candidates": [{"content": {"parts": []}}]},
            {"candidates": [{"content": {}}]},
            None,
            "not a dict",
        ],
    )
    def test_extract_gemini_text_missing_field(self, data):
        with pytest.raises(FatalApiError, match="candidates"):
            extract_gemini_text(data)

    def test_extract_gemini_text_reports_finish_reason(self):
        data = {"candidates": [{"finishReason": "SAFETY"}]}

        with pytest.raises(FatalApiError, match="finishReason=SAFETY"):
            extract_gemini_text(data)

    def test_extract_gemini_text_empty(self):
        with pytest.raises(FatalApiError, match="empty"):
            extract_gemini_text(gemini_body("   "))


@pytest.mark.unit
class TestBaseTranslationClient:
    """Test prompt building and response splitting."""

    @pytest.fixture
    def client(self):
        return CannedReplyClient(delimiter=TEST_DELIMITER, timeout=5.0)

    def test_build_request_joins_texts(self, client):
        batch = make_batch(3)

        request = client.build_request(batch, "Spanish", "key")

        assert request.segment_count == 3
        assert request.combined_text == JOINER.join(
            ["Line number 1", "Line number 2", "Line number 3"]
        )
        assert request.target_language == "Spanish"

    def test_build_prompt_mentions_language_count_and_delimiter(self, client):
        request = client.build_request(make_batch(2), "Persian (Farsi)", "key")

        prompt = client.build_prompt(request)

        assert "Persian (Farsi)" in prompt
        assert "exactly 2 segment(s)" in prompt
        assert TEST_DELIMITER in prompt
        assert prompt.endswith(request.combined_text)

    def test_split_response(self, client):
        segments = client.split_response(JOINER.join(["uno", "dos", "tres"]), 3)

        assert segments == ["uno", "dos", "tres"]

    def test_split_response_keeps_multiline_segments(self, client):
        segments = client.split_response(JOINER.join(["uno\nlinea", "dos"]), 2)

        assert segments == ["uno\nlinea", "dos"]

    def test_split_response_tolerates_trailing_delimiter(self, client):
        segments = client.split_response(
            JOINER.join(["uno", "dos"]) + JOINER, 2
        )

        assert segments == ["uno", "dos"]

    def test_split_response_strips_code_fence(self, client):
        text = "```\n" + JOINER.join(["uno", "dos"]) + "\n```"

        assert client.split_response(text, 2) == ["uno", "dos"]

    def test_split_response_mismatch(self, client):
        with pytest.raises(SegmentCountMismatchError) as exc_info:
            client.split_response(JOINER.join(["uno", "dos"]), 3, batch_label="2")

        assert exc_info.value.expected_count == 3
        assert exc_info.value.actual_count == 2
        assert exc_info.value.batch_label == "2"
        assert exc_info.value.response_sample is not None

    def test_split_response_rejects_empty_segment(self, client):
        reply = JOINER.join(["Uno", "", "Tres"])

        with pytest.raises(SegmentCountMismatchError) as exc_info:
            client.split_response(reply, 3, batch_label="1")

        assert exc_info.value.expected_count == 3
        assert exc_info.value.actual_count == 2

    @pytest.mark.parametrize(
        "segment,expected",
        [
            ("Dos\n\nmas", "Dos\nmas"),
            ("Dos\n \t\n\nmas", "Dos\nmas"),
            ("Dos\nmas", "Dos\nmas"),
        ],
    )
    def test_split_response_collapses_blank_lines(self, client, segment, expected):
        segments = client.split_response(JOINER.join(["Uno", segment]), 2)

        assert segments == ["Uno", expected]

    @pytest.mark.asyncio
    async def test_translate_batch_empty_segment_is_mismatch(self):
        client = CannedReplyClient(
            reply=JOINER.join(["Uno", "", "Tres"]), delimiter=TEST_DELIMITER
        )

        with pytest.raises(SegmentCountMismatchError):
            await client.translate_batch(make_batch(3), "Spanish", "key")

    def test_delimiter_defaults_to_settings(self):
        client = CannedReplyClient()

        assert client.delimiter == settings.translation_segment_delimiter
        assert client.joiner == f"\n{client.delimiter}\n"

    def test_base_client_requires_send(self):
        with pytest.raises(TypeError):
            BaseTranslationClient(delimiter=TEST_DELIMITER)


@pytest.mark.unit
class TestGeminiTranslationClient:
    """Test the Gemini generateContent client."""

    @pytest.mark.asyncio
    async def test_translate_batch_success(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["api_key"] = request.headers.get("x-goog-api-key")
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200, json=gemini_body(JOINER.join(["uno", "dos", "tres"]))
            )

        client = make_gemini_client(handler)
        async with client:
            result = await client.translate_batch(make_batch(3), "Spanish", "g-key")

        assert result == ["uno", "dos", "tres"]
        assert captured["url"] == (
            f"{GEMINI_BASE_URL}/models/gemini-test:generateContent"
        )
        assert captured["api_key"] == "g-key"
        prompt = captured["body"]["contents"][0]["parts"][0]["text"]
        assert "Spanish" in prompt
        assert "Line number 2" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,error_class",
        [
            (503, TransientServerError),
            (429, QuotaExceededError),
            (400, FatalApiError),
            (500, FatalApiError),
        ],
    )
    async def test_http_errors_are_classified(self, status_code, error_class):
        client = make_gemini_client(lambda request: httpx.Response(status_code))

        with pytest.raises(error_class):
            await client.translate_batch(make_batch(2), "Spanish", "g-key")

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_gemini_client(handler)

        with pytest.raises(TransientServerError, match="Gemini request failed"):
            await client.translate_batch(make_batch(2), "Spanish", "g-key")

    @pytest.mark.asyncio
    async def test_non_json_body_is_fatal(self):
        client = make_gemini_client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(FatalApiError, match="not JSON"):
            await client.translate_batch(make_batch(2), "Spanish", "g-key")

    @pytest.mark.asyncio
    async def test_missing_text_is_fatal(self):
        client = make_gemini_client(
            lambda request: httpx.Response(200, json={"candidates": []})
        )

        with pytest.raises(FatalApiError):
            await client.translate_batch(make_batch(2), "Spanish", "g-key")

    @pytest.mark.asyncio
    async def test_segment_mismatch_raised(self):
        client = make_gemini_client(
            lambda request: httpx.Response(200, json=gemini_body("uno y dos"))
        )

        with pytest.raises(SegmentCountMismatchError):
            await client.translate_batch(make_batch(2), "Spanish", "g-key")

    @pytest.mark.asyncio
    async def test_injected_http_client_is_not_closed(self):
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200))
        )
        client = GeminiTranslationClient(http_client=http_client)

        await client.aclose()

        assert http_client.is_closed is False
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_owned_http_client_is_closed(self):
        client = GeminiTranslationClient(model="gemini-test")

        await client.aclose()

        assert client.http_client.is_closed is True


@pytest.mark.unit
class TestOpenAITranslationClient:
    """Test the OpenAI chat completions client."""

    @pytest.fixture
    def mock_openai(self):
        with patch("translator.translation_service.AsyncOpenAI") as mock_class:
            instance = MagicMock()
            instance.chat.completions.create = AsyncMock()
            instance.close = AsyncMock()
            mock_class.return_value = instance
            yield mock_class, instance

    def make_client(self, model="gpt-4o-mini"):
        return OpenAITranslationClient(
            model=model, temperature=0.2, delimiter=TEST_DELIMITER, timeout=5.0
        )

    @pytest.mark.asyncio
    async def test_translate_batch_success(self, mock_openai):
        mock_class, instance = mock_openai
        instance.chat.completions.create.return_value = openai_completion(
            JOINER.join(["uno", "dos"])
        )
        client = self.make_client()

        result = await client.translate_batch(make_batch(2), "Spanish", "o-key")

        assert result == ["uno", "dos"]
        mock_class.assert_called_once()
        assert mock_class.call_args.kwargs["api_key"] == "o-key"
        assert mock_class.call_args.kwargs["max_retries"] == 0
        call_kwargs = instance.chat.completions.create.call_args.kwargs
        assert call_kwargs["model"] == "gpt-4o-mini"
        assert call_kwargs["temperature"] == 0.2
        assert "Spanish" in call_kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_sdk_client_reused_per_api_key(self, mock_openai):
        mock_class, instance = mock_openai
        instance.chat.completions.create.return_value = openai_completion("uno")
        client = self.make_client()

        await client.translate_batch(make_batch(1), "Spanish", "o-key")
        await client.translate_batch(make_batch(1), "Spanish", "o-key")

        mock_class.assert_called_once()

    @pytest.mark.asyncio
    async def test_nano_model_omits_temperature(self, mock_openai):
        _, instance = mock_openai
        instance.chat.completions.create.return_value = openai_completion("uno")
        client = self.make_client(model="gpt-5-nano")

        await client.translate_batch(make_batch(1), "Spanish", "o-key")

        assert "temperature" not in instance.chat.completions.create.call_args.kwargs

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exception,error_class",
        [
            (
                RateLimitError(
                    "rate limited", response=openai_error_response(429), body=None
                ),
                QuotaExceededError,
            ),
            (
                APIStatusError(
                    "unavailable", response=openai_error_response(503), body=None
                ),
                TransientServerError,
            ),
            (
                APIStatusError(
                    "bad request", response=openai_error_response(400), body=None
                ),
                FatalApiError,
            ),
            (
                APIConnectionError(
                    request=httpx.Request("POST", "https://api.openai.test")
                ),
                TransientServerError,
            ),
        ],
    )
    async def test_sdk_errors_are_classified(self, mock_openai, exception, error_class):
        _, instance = mock_openai
        instance.chat.completions.create.side_effect = exception
        client = self.make_client()

        with pytest.raises(error_class):
            await client.translate_batch(make_batch(2), "Spanish", "o-key")

    @pytest.mark.asyncio
    async def test_empty_content_is_fatal(self, mock_openai):
        _, instance = mock_openai
        instance.chat.completions.create.return_value = openai_completion(
            "", finish_reason="length"
        )
        client = self.make_client()

        with pytest.raises(FatalApiError, match="finish_reason=length"):
            await client.translate_batch(make_batch(2), "Spanish", "o-key")

    @pytest.mark.asyncio
    async def test_no_choices_is_fatal(self, mock_openai):
        _, instance = mock_openai
        response = MagicMock()
        response.choices = []
        instance.chat.completions.create.return_value = response
        client = self.make_client()

        with pytest.raises(FatalApiError, match="no choices"):
            await client.translate_batch(make_batch(2), "Spanish", "o-key")

    @pytest.mark.asyncio
    async def test_aclose_closes_sdk_clients(self, mock_openai):
        _, instance = mock_openai
        instance.chat.completions.create.return_value = openai_completion("uno")
        client = self.make_client()
        await client.translate_batch(make_batch(1), "Spanish", "o-key")

        await client.aclose()

        instance.close.assert_awaited_once()


@pytest.mark.unit
class TestCreateTranslationClient:
    """Test the provider factory."""

    @pytest.mark.asyncio
    async def test_create_gemini_client(self):
        client = create_translation_client("gemini")

        assert isinstance(client, GeminiTranslationClient)
        await client.aclose()

    def test_create_openai_client(self):
        assert isinstance(create_translation_client("OpenAI"), OpenAITranslationClient)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown translation provider"):
            create_translation_client("deepl")
