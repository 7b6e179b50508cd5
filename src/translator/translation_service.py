"""Translation clients: one remote text-generation call per subtitle batch."""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

from common.config import settings
from common.schemas import TranslationRequest
from common.string_utils import truncate_for_logging
from common.subtitle_parser import extract_text_for_translation
from translator.batcher import Batch
from translator.errors import (
    FatalApiError,
    QuotaExceededError,
    SegmentCountMismatchError,
    TransientServerError,
)

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVICE_UNAVAILABLE = 503

# A blank line inside a translated segment would end the SRT block early
BLANK_LINES_PATTERN = re.compile(r"\n[ \t]*\n\s*")


def raise_for_api_status(status_code: int, detail: str, provider: str) -> None:
    """
    Map a non-success HTTP status to the translation error taxonomy.

    Args:
        status_code: HTTP status of the response
        detail: Reason phrase or error message for the exception text
        provider: Provider name used in messages

    Raises:
        TransientServerError: On HTTP 503
        QuotaExceededError: On HTTP 429
        FatalApiError: On any other non-2xx status
    """
    if 200 <= status_code < 300:
        return
    if status_code == HTTP_SERVICE_UNAVAILABLE:
        raise TransientServerError(
            f"{provider} service unavailable (503): {detail}", status_code=status_code
        )
    if status_code == HTTP_TOO_MANY_REQUESTS:
        raise QuotaExceededError(
            f"{provider} quota exceeded (429): {detail}", status_code=status_code
        )
    raise FatalApiError(
        f"{provider} API error: {status_code} - {detail}", status_code=status_code
    )


def strip_code_fences(response: str) -> str:
    """
    Remove a markdown code fence wrapped around the whole response.

    Examples:
        >>> strip_code_fences('```\\nHola\\n```')
        'Hola'
        >>> strip_code_fences('Hola')
        'Hola'
    """
    cleaned = response.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")[1:]  # Remove opening fence and language tag
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        cleaned = "\n".join(lines).strip()
    return cleaned


def extract_gemini_text(data: Any) -> str:
    """
    Read the generated text from a generateContent response body.

    Args:
        data: Decoded JSON body

    Returns:
        Generated text, stripped

    Raises:
        FatalApiError: If candidates[0].content.parts[0].text is missing or empty
    """
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
        finish_reason = None
        if isinstance(data, dict) and data.get("candidates"):
            candidate = data["candidates"][0]
            if isinstance(candidate, dict):
                finish_reason = candidate.get("finishReason")
        raise FatalApiError(
            "Invalid response from Gemini API - missing candidates[0].content.parts[0].text"
            + (f" (finishReason={finish_reason})" if finish_reason else "")
        ) from e

    if not isinstance(text, str) or not text.strip():
        raise FatalApiError("Invalid response from Gemini API - empty generated text")
    return text.strip()


class BaseTranslationClient(ABC):
    """
    Shared prompt building and response splitting for translation clients.

    A batch is sent as one prompt: entry texts joined with a delimiter
    line. The reply must contain the same number of delimiter-separated
    segments. Subclasses implement _send() and issue exactly one remote
    call per translate_batch(); retries are owned by the retry controller.
    """

    provider_name = "base"

    def __init__(
        self, delimiter: Optional[str] = None, timeout: Optional[float] = None
    ):
        self.delimiter = (delimiter or settings.translation_segment_delimiter).strip()
        self.timeout = timeout or settings.translation_request_timeout

    @property
    def joiner(self) -> str:
        """Delimiter on its own line, used to combine segments."""
        return f"\n{self.delimiter}\n"

    def build_request(
        self, batch: Batch, target_language: str, api_key: str
    ) -> TranslationRequest:
        """
        Build the request for one batch.

        Args:
            batch: Batch to translate
            target_language: Target language name
            api_key: Provider API key

        Returns:
            TranslationRequest with the delimiter-joined batch text
        """
        texts = extract_text_for_translation(list(batch.entries))
        return TranslationRequest(
            target_language=target_language,
            combined_text=self.joiner.join(texts),
            api_key=api_key,
            segment_count=len(texts),
        )

    def build_prompt(self, request: TranslationRequest) -> str:
        """
        Build the free-text prompt embedding language, delimiter and text.

        Args:
            request: Translation request

        Returns:
            Prompt string
        """
        count = request.segment_count
        return (
            f"Translate the following subtitle text to {request.target_language}.\n\n"
            f"The text contains exactly {count} segment(s). Segments are separated "
            f"by the marker {self.delimiter} on its own line.\n\n"
            f"RULES:\n"
            f"- Return exactly {count} translated segment(s), in the same order\n"
            f"- Separate translated segments with the same marker {self.delimiter} "
            f"on its own line\n"
            f"- Do not merge, split, skip or number segments\n"
            f"- Keep line breaks inside a segment\n"
            f"- Preserve HTML-style formatting tags (like <i>, <b>) exactly as they appear\n"
            f"- Return only the translated text, nothing else\n\n"
            f"{request.combined_text}"
        )

    def split_response(
        self,
        response_text: str,
        expected_count: int,
        batch_label: Optional[str] = None,
    ) -> List[str]:
        """
        Split a model reply back into per-entry segments.

        Blank lines inside a segment are collapsed so each translation stays
        one SRT block. Empty segments are not translations and count as
        missing.

        Args:
            response_text: Generated text
            expected_count: Number of entries in the batch
            batch_label: Batch label for error messages

        Returns:
            Translated segments in order

        Raises:
            SegmentCountMismatchError: If the number of non-empty segments
                differs from expected_count
        """
        cleaned = strip_code_fences(response_text)
        segments = [
            BLANK_LINES_PATTERN.sub("\n", segment.strip())
            for segment in cleaned.split(self.delimiter)
        ]

        # A dangling delimiter after the last segment is not a segment
        if len(segments) > 1 and not segments[-1]:
            segments = segments[:-1]

        actual_count = len(segments)
        if actual_count == expected_count:
            actual_count = sum(1 for segment in segments if segment)

        if actual_count != expected_count:
            logger.warning(
                f"⚠️  Segment count mismatch in batch {batch_label}: expected "
                f"{expected_count}, got {actual_count}"
            )
            logger.debug(
                f"Response sample (for debugging):\n{truncate_for_logging(response_text)}"
            )
            raise SegmentCountMismatchError(
                expected_count=expected_count,
                actual_count=actual_count,
                batch_label=batch_label,
                response_sample=truncate_for_logging(response_text),
            )
        return segments

    async def translate_batch(
        self, batch: Batch, target_language: str, api_key: str
    ) -> List[str]:
        """
        Translate one batch with a single remote call.

        Args:
            batch: Batch to translate
            target_language: Target language name
            api_key: Provider API key

        Returns:
            One translated text per batch entry

        Raises:
            TransientServerError: On HTTP 503 or transport failure
            QuotaExceededError: On HTTP 429
            FatalApiError: On other non-2xx statuses or a malformed body
            SegmentCountMismatchError: If the reply has the wrong segment count
        """
        request = self.build_request(batch, target_language, api_key)
        logger.info(
            f"🌐 Sending batch {batch.label} ({request.segment_count} entries) "
            f"to {self.provider_name} for translation to {target_language}"
        )
        response_text = await self._send(request, self.build_prompt(request))
        return self.split_response(response_text, request.segment_count, batch.label)

    @abstractmethod
    async def _send(self, request: TranslationRequest, prompt: str) -> str:
        """Issue one remote call and return the generated text."""

    async def aclose(self) -> None:
        """Release network resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


class GeminiTranslationClient(BaseTranslationClient):
    """Translation client for the Gemini generateContent REST endpoint."""

    provider_name = "Gemini"

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        delimiter: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(delimiter=delimiter, timeout=timeout)
        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_api_base_url).rstrip("/")
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.timeout)
        logger.debug(f"Initialized Gemini client with model: {self.model}")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def _send(self, request: TranslationRequest, prompt: str) -> str:
        payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": request.api_key,
        }

        try:
            response = await self.http_client.post(
                self.endpoint, headers=headers, json=payload
            )
        except httpx.TransportError as e:
            raise TransientServerError(f"Gemini request failed: {e!r}") from e

        raise_for_api_status(response.status_code, response.reason_phrase, "Gemini")

        try:
            data = response.json()
        except ValueError as e:
            raise FatalApiError(
                "Invalid response from Gemini API - body is not JSON",
                status_code=response.status_code,
            ) from e

        return extract_gemini_text(data)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()


class OpenAITranslationClient(BaseTranslationClient):
    """Translation client for OpenAI-compatible chat completion endpoints."""

    provider_name = "OpenAI"

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: Optional[float] = None,
        delimiter: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(delimiter=delimiter, timeout=timeout)
        self.model = model or settings.openai_model
        self.base_url = base_url or settings.openai_base_url
        self.temperature = (
            temperature if temperature is not None else settings.openai_temperature
        )
        self._clients: Dict[str, AsyncOpenAI] = {}

    def _get_client(self, api_key: str) -> AsyncOpenAI:
        """
        Return an SDK client for the job's API key.

        max_retries=0 keeps the SDK from retrying on its own; every attempt
        must go through the retry controller's accounting.
        """
        client = self._clients.get(api_key)
        if client is None:
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
            self._clients[api_key] = client
            logger.debug(f"Initialized OpenAI async client with model: {self.model}")
        return client

    async def _send(self, request: TranslationRequest, prompt: str) -> str:
        api_params: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": (
                        "You are a professional subtitle translator. "
                        "Follow the segment marker rules exactly."
                    ),
                },
                {"role": "user", "content": prompt},
            ],
        }
        # Nano/reasoning models only support the default temperature
        if "nano" not in self.model.lower():
            api_params["temperature"] = self.temperature

        client = self._get_client(request.api_key)
        try:
            response = await client.chat.completions.create(**api_params)
        except RateLimitError as e:
            raise QuotaExceededError(f"OpenAI quota exceeded (429): {e}") from e
        except APIStatusError as e:
            raise_for_api_status(e.status_code, str(e), "OpenAI")
            raise FatalApiError(f"OpenAI API error: {e}", status_code=e.status_code) from e
        except APIConnectionError as e:
            raise TransientServerError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise FatalApiError("OpenAI API returned no choices in response")

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise FatalApiError(
                f"OpenAI API returned empty content "
                f"(finish_reason={response.choices[0].finish_reason})"
            )
        return content.strip()

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


def create_translation_client(provider: Optional[str] = None) -> BaseTranslationClient:
    """
    Create the translation client for a provider.

    Args:
        provider: 'gemini' or 'openai'; defaults to settings.translation_provider

    Returns:
        Translation client instance

    Raises:
        ValueError: If the provider is unknown
    """
    provider = (provider or settings.translation_provider).lower()
    if provider == "gemini":
        return GeminiTranslationClient()
    if provider == "openai":
        return OpenAITranslationClient()
    raise ValueError(f"Unknown translation provider: {provider}")
