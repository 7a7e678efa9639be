"""
Integration with Replicate for storybook image generation.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable as IterableABC
from typing import Any, Callable, Mapping

import replicate
import requests

from .avatars import DEFAULT_TIMEOUT, ReferenceImage
from .prompting import GenerationRequest

logger = logging.getLogger(__name__)

DEFAULT_REPLICATE_MODEL = "google/nano-banana"


def _build_nano_banana_input(
    *,
    request: GenerationRequest,
) -> dict[str, Any]:
    return {
        "prompt": request.text_prompt,
        "image_input": [image.as_data_url() for image in request.images],
        "output_format": "png",
    }


def _build_flux_kontext_input(
    *,
    request: GenerationRequest,
) -> dict[str, Any]:
    # Kontext takes a single input image; the first attachment is the strongest anchor.
    payload: dict[str, Any] = {
        "prompt": request.text_prompt,
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": True,
        "aspect_ratio": "1:1",
    }
    if request.images:
        payload["input_image"] = request.images[0].as_data_url()
    return payload


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "google/nano-banana": _build_nano_banana_input,
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
}


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    request: GenerationRequest,
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(set(_MODEL_INPUT_BUILDERS)))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    return builder(request=request)


class ReplicateImageGenerator:
    """
    Convenience wrapper around the Replicate client for storybook image generation.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model[:version]`` format. Falls back to
        ``REPLICATE_MODEL`` and then to ``google/nano-banana``.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
        download_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = (
            model_identifier or os.getenv("REPLICATE_MODEL") or DEFAULT_REPLICATE_MODEL
        )
        self._client = client or replicate.Client(api_token=self._api_token)
        self._download_timeout = download_timeout

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    def generate_image(self, request: GenerationRequest, **model_kwargs: Any) -> dict[str, Any]:
        """
        Run the configured model and return the outputs as inline image parts.

        The result mirrors the ``candidates[].content.parts[].inline_data`` layout
        so the response interpreter handles every backend the same way. Errors
        raised by Replicate propagate unchanged.
        """
        replicate_input = _build_replicate_input_payload(
            model_identifier=self._model_identifier,
            request=request,
        )
        # Allow the caller to tweak model-specific knobs (e.g., seed, aspect_ratio).
        replicate_input.update(model_kwargs)

        logger.info(
            "Calling Replicate model %s for page %s with %d reference image(s).",
            self._model_identifier,
            request.page_number,
            len(request.images),
        )
        outputs = self._client.run(self._model_identifier, input=replicate_input)

        parts = [
            {"inline_data": {"mime_type": image.mime_type, "data": image.data}}
            for image in self._read_outputs(outputs)
        ]
        return {"candidates": [{"content": {"parts": parts}}] if parts else []}

    def _read_outputs(self, outputs: Any) -> list[ReferenceImage]:
        images: list[ReferenceImage] = []
        for item in normalize_image_outputs(outputs):
            if isinstance(item, bytes):
                images.append(ReferenceImage(data=item, mime_type="image/png"))
            elif hasattr(item, "read"):
                images.append(ReferenceImage(data=item.read(), mime_type="image/png"))
            else:
                response = requests.get(str(item), timeout=self._download_timeout)
                response.raise_for_status()
                mime_type = response.headers.get("Content-Type", "image/png").split(";")[0]
                images.append(ReferenceImage(data=response.content, mime_type=mime_type))
        return images


def normalize_image_outputs(raw: Any) -> list[Any]:
    """
    Flatten Replicate outputs into a list of bytes, file-like outputs, or URL strings.
    """

    if raw is None:
        return []

    if isinstance(raw, (str, bytes)) or hasattr(raw, "read"):
        return [raw]

    if isinstance(raw, Mapping):
        return normalize_image_outputs(raw.get("images") or raw.get("output"))

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if not collected:
            return []

        if all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        normalized: list[Any] = []
        for item in collected:
            if item is None:
                continue
            normalized.extend(normalize_image_outputs(item))
        return normalized

    return [str(raw)]
