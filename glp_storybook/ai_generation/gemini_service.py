"""
Gemini image generation through the google-genai SDK.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from google import genai
from google.genai import types

from .prompting import GenerationRequest

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_IMAGE_MODEL = "gemini-2.5-flash-image-preview"


class GeminiImageGenerator:
    """
    Sends a composed request (prompt plus up to three reference images) to Gemini.

    The raw ``GenerateContentResponse`` is returned untouched; interpreting it is
    the response interpreter's job.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        client: genai.Client | None = None,
    ) -> None:
        self._api_key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        if not self._api_key and client is None:
            raise ValueError("Gemini API key is required. Set GEMINI_API_KEY or pass api_key.")

        self._model = model or os.getenv("GLP_STORYBOOK_IMAGE_MODEL") or DEFAULT_GEMINI_IMAGE_MODEL
        self._client = client or genai.Client(api_key=self._api_key)

    @property
    def model(self) -> str:
        return self._model

    def generate_image(self, request: GenerationRequest) -> Any:
        contents: list[Any] = [request.text_prompt]
        contents.extend(
            types.Part.from_bytes(data=image.data, mime_type=image.mime_type)
            for image in request.images
        )

        logger.info(
            "Calling %s for page %s with %d reference image(s).",
            self._model,
            request.page_number,
            len(request.images),
        )
        return self._client.models.generate_content(
            model=self._model,
            contents=contents,
            config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
        )
