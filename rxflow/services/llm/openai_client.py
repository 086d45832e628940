from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any, Callable

import openai
from openai import OpenAI

from rxflow.core.config import Settings
from rxflow.core.errors import ParseError, PermanentJobFailure, TransientExternalError
from rxflow.services.llm.prompts import (
    CLASSIFY_IMAGE_SYSTEM,
    EXTRACT_FROM_IMAGE_USER,
    EXTRACT_FROM_TEXT_USER_TEMPLATE,
    EXTRACTION_SCHEMA,
    EXTRACTION_SYSTEM,
)
from rxflow.services.llm.results import (
    ExtractionOutcome,
    HumanReview,
    extract_json_object,
    parse_model_output,
)

logger = logging.getLogger(__name__)

HANDWRITTEN_REASON = "handwritten detected"
UNPARSEABLE_REASON = "unparseable model output"

_IMAGE_MIME = {"jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png"}

ClientFactory = Callable[[str], Any]


def default_client_factory(settings: Settings) -> ClientFactory:
    def build(api_key: str) -> OpenAI:
        # OpenAI SDK v1+
        return OpenAI(
            api_key=api_key,
            timeout=settings.openai_timeout_sec,
            max_retries=settings.openai_max_retries,
        )

    return build


def _image_data_url(path: str | Path) -> str:
    p = Path(path)
    mime = _IMAGE_MIME.get(p.suffix.lstrip(".").lower(), "image/png")
    b64 = base64.b64encode(p.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{b64}"


class OpenAIExtractor:
    """
    Classification and structured extraction over the OpenAI chat API.

    Every call goes through one JSON-mode chat completion; the raw text is
    handed to parse_model_output so free text around the JSON is tolerated.
    A client is built per credential because each tenant brings its own key.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        model: str = "gpt-4o-mini",
        fallback_api_key: str | None = None,
    ) -> None:
        self.client_factory = client_factory
        self.model = model
        self.fallback_api_key = fallback_api_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIExtractor":
        return cls(
            default_client_factory(settings),
            model=settings.openai_model,
            fallback_api_key=settings.openai_api_key,
        )

    # ----------------------------
    # Public API
    # ----------------------------

    def classify_image(self, path: str | Path, credential: str | None) -> bool:
        """True when the prescription is handwritten (or the classifier is unsure)."""
        raw = self._chat(
            credential,
            [
                {"role": "system", "content": CLASSIFY_IMAGE_SYSTEM},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Is this prescription handwritten?"},
                        {"type": "image_url", "image_url": {"url": _image_data_url(path)}},
                    ],
                },
            ],
        )
        try:
            payload = extract_json_object(raw)
        except ParseError as e:
            logger.warning("classifier output unparseable, routing to human review: %s", e)
            return True

        flag = payload.get("is_handwritten", payload.get("isHandwritten"))
        if isinstance(flag, str):
            return flag.strip().lower() in ("true", "1", "yes", "sim")
        return bool(flag)

    def extract_from_image(self, path: str | Path, credential: str | None) -> ExtractionOutcome:
        raw = self._chat(
            credential,
            [
                {"role": "system", "content": EXTRACTION_SYSTEM},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": EXTRACT_FROM_IMAGE_USER},
                        {"type": "image_url", "image_url": {"url": _image_data_url(path)}},
                    ],
                },
            ],
        )
        return self._to_outcome(raw)

    def classify_and_extract_image(self, path: str | Path, credential: str | None) -> ExtractionOutcome:
        """Handwritten images short-circuit before the (expensive) extraction call."""
        if self.classify_image(path, credential):
            return HumanReview(reason=HANDWRITTEN_REASON)
        return self.extract_from_image(path, credential)

    def extract_from_text(self, text: str, credential: str | None) -> ExtractionOutcome:
        raw = self._chat(
            credential,
            [
                {"role": "system", "content": EXTRACTION_SYSTEM},
                {"role": "user", "content": EXTRACT_FROM_TEXT_USER_TEMPLATE.format(text=text) + EXTRACTION_SCHEMA},
            ],
        )
        return self._to_outcome(raw)

    # ----------------------------
    # Helpers
    # ----------------------------

    def _to_outcome(self, raw: str) -> ExtractionOutcome:
        try:
            return parse_model_output(raw)
        except ParseError as e:
            logger.warning("extraction output unparseable, routing to human review: %s", e)
            return HumanReview(reason=UNPARSEABLE_REASON)

    def _chat(self, credential: str | None, messages: list[dict[str, Any]]) -> str:
        api_key = credential or self.fallback_api_key
        if not api_key:
            raise PermanentJobFailure("missing OpenAI credential")

        client = self.client_factory(api_key)
        try:
            chat = client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as e:
            # APITimeoutError is an APIConnectionError
            raise TransientExternalError(f"OpenAI unavailable: {e}") from e
        except openai.AuthenticationError as e:
            raise PermanentJobFailure("invalid OpenAI credential") from e

        return (chat.choices[0].message.content or "").strip()
