import logging
import re
import uuid
from typing import Any, Callable

from google import genai
from google.genai import types

from storybook.core.metrics import track_gemini_call

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class GeminiError(Exception):
    """Base exception for Gemini-related errors (transport and server faults)."""

    def __init__(self, message: str, request_id: str | None = None, model: str | None = None):
        super().__init__(message)
        self.request_id = request_id
        self.model = model


class GeminiRateLimitError(GeminiError):
    """Raised when the API rejects a request for quota or frequency reasons."""

    pass


class GeminiContentFilterError(GeminiError):
    """Raised when content is blocked by safety filters."""

    def __init__(
        self,
        message: str,
        request_id: str | None = None,
        model: str | None = None,
        blocked_categories: list[str] | None = None,
    ):
        super().__init__(message, request_id, model)
        self.blocked_categories = blocked_categories or []


class GeminiEmptyResponseError(GeminiError):
    """Raised when a response carries no content parts."""

    pass


class GeminiNoImageDataError(GeminiError):
    """Raised when a response has content but no inline image."""

    pass


_SAFETY_FINISH_MARKERS = ("SAFETY", "PROHIBITED", "BLOCKLIST", "SPII")
_STATUS_429 = re.compile(r"\b429\b")


class GeminiClient:
    """Thin synchronous wrapper over ``genai.Client`` for text, JSON and image calls.

    The client does not retry; callers wrap calls with
    :func:`storybook.services.retry.with_retry`.
    """

    def __init__(
        self,
        api_key: str,
        text_model: str,
        image_model: str,
        image_aspect_ratio: str = "1:1",
        client: Any | None = None,
    ):
        if not api_key and client is None:
            raise RuntimeError("GEMINI_API_KEY must be configured")

        self._text_model = text_model
        self._image_model = image_model
        self._image_aspect_ratio = image_aspect_ratio

        self.last_request_id: str | None = None
        self.last_model: str | None = None

        self._client = client or genai.Client(api_key=api_key)

    @property
    def text_model(self) -> str:
        return self._text_model

    @property
    def image_model(self) -> str:
        return self._image_model

    def _classify_error(self, error_text: str, code: int | None = None) -> str:
        if code == 429 or "RESOURCE_EXHAUSTED" in error_text or _STATUS_429.search(error_text):
            return "rate_limit"
        if "SAFETY" in error_text.upper() or "blocked" in error_text.lower():
            return "content_filter"
        return "transport"

    def _call(
        self,
        func: Callable[[], types.GenerateContentResponse],
        model_name: str,
        request_type: str,
    ) -> tuple[types.GenerateContentResponse, str]:
        """Run one SDK call, translating failures into the Gemini error taxonomy.

        Returns the response together with the id of this call, which the
        extractors stamp onto any error raised while reading the response.
        """
        request_id = str(uuid.uuid4())
        self.last_model = model_name
        try:
            with track_gemini_call(request_type):
                response = func()
        except Exception as exc:  # noqa: BLE001
            error_text = str(exc)
            error_type = self._classify_error(error_text, getattr(exc, "code", None))
            self.last_request_id = request_id
            logger.warning(
                "gemini.%s failed request_id=%s model=%s type=%s error=%s",
                request_type,
                request_id,
                model_name,
                error_type,
                repr(exc),
            )
            if error_type == "rate_limit":
                raise GeminiRateLimitError(
                    f"Rate limit exceeded: {error_text}",
                    request_id=request_id,
                    model=model_name,
                ) from exc
            if error_type == "content_filter":
                raise GeminiContentFilterError(
                    f"Request blocked by safety filters: {error_text}",
                    request_id=request_id,
                    model=model_name,
                ) from exc
            raise GeminiError(
                f"Gemini {request_type} failed: {exc!r}",
                request_id=request_id,
                model=model_name,
            ) from exc

        request_id = getattr(response, "response_id", None) or request_id
        self.last_request_id = request_id
        return response, request_id

    def _parts_or_raise(
        self,
        response: types.GenerateContentResponse,
        model_name: str,
        request_id: str | None,
    ) -> list:
        """Return the first candidate's parts, or raise the matching empty-response error."""
        candidate = (response.candidates or [None])[0]
        parts = None
        if candidate is not None and candidate.content is not None:
            parts = candidate.content.parts
        if parts:
            return list(parts)

        finish_reason = str(getattr(candidate, "finish_reason", None) or "").upper()
        prompt_feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(prompt_feedback, "block_reason", None) if prompt_feedback else None
        if block_reason or any(marker in finish_reason for marker in _SAFETY_FINISH_MARKERS):
            blocked_categories: list[str] = []
            for rating in getattr(candidate, "safety_ratings", None) or []:
                if getattr(rating, "blocked", False):
                    blocked_categories.append(str(getattr(rating, "category", "UNKNOWN")))
            raise GeminiContentFilterError(
                "The model returned no content; the request was blocked by content-safety review",
                request_id=request_id,
                model=model_name,
                blocked_categories=blocked_categories,
            )
        raise GeminiEmptyResponseError(
            "Gemini returned empty content",
            request_id=request_id,
            model=model_name,
        )

    def _extract_text(
        self,
        response: types.GenerateContentResponse,
        model_name: str,
        request_id: str | None,
    ) -> str:
        texts = [part.text for part in self._parts_or_raise(response, model_name, request_id) if part.text]
        return "\n".join(texts).strip()

    def _extract_image(
        self,
        response: types.GenerateContentResponse,
        model_name: str,
        request_id: str | None,
    ) -> tuple[bytes, str]:
        for part in self._parts_or_raise(response, model_name, request_id):
            inline_data = part.inline_data
            if inline_data and inline_data.data:
                mime_type = inline_data.mime_type or "image/png"
                return inline_data.data, mime_type

        raise GeminiNoImageDataError(
            "Gemini returned no image data",
            request_id=request_id,
            model=model_name,
        )

    def generate_text(self, prompt: str, model: str | None = None) -> str:
        """Generate free-form text. An empty string means the model produced no text parts."""
        model_name = model or self._text_model
        response, request_id = self._call(
            func=lambda: self._client.models.generate_content(
                model=model_name,
                contents=[prompt],
            ),
            model_name=model_name,
            request_type="generate_text",
        )
        return self._extract_text(response, model_name, request_id)

    def generate_json_text(
        self,
        prompt: str,
        response_schema: types.Schema,
        model: str | None = None,
    ) -> str:
        """Request JSON output constrained by ``response_schema`` and return the raw text."""
        model_name = model or self._text_model
        response, request_id = self._call(
            func=lambda: self._client.models.generate_content(
                model=model_name,
                contents=[prompt],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=response_schema,
                ),
            ),
            model_name=model_name,
            request_type="generate_json",
        )
        return self._extract_text(response, model_name, request_id)

    def generate_image(self, prompt: str, model: str | None = None) -> tuple[bytes, str]:
        """Generate a single image.

        Returns:
            Tuple of (image_bytes, mime_type)

        Raises:
            GeminiContentFilterError: the response was blocked by safety review
            GeminiEmptyResponseError: the response had no content parts
            GeminiNoImageDataError: the response had parts but none carried an image
            GeminiError: transport failure (``GeminiRateLimitError`` for quota errors)
        """
        model_name = model or self._image_model
        response, request_id = self._call(
            func=lambda: self._client.models.generate_content(
                model=model_name,
                contents=[prompt],
                config=types.GenerateContentConfig(
                    image_config=types.ImageConfig(aspect_ratio=self._image_aspect_ratio),
                ),
            ),
            model_name=model_name,
            request_type="generate_image",
        )
        return self._extract_image(response, model_name, request_id)
