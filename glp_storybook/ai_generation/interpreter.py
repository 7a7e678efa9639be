"""
Interpretation of image model responses into success or fallback outcomes.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

from glp_storybook.common import (
    MODEL_AUTH_ERROR,
    MODEL_FEATURE_UNSUPPORTED,
    MODEL_GENERIC_ERROR,
    MODEL_NETWORK_ERROR,
    MODEL_QUOTA_EXCEEDED,
    ResponseFormatError,
    StorybookError,
)
from glp_storybook.story_generation.models import CharacterMapping

from .avatars import ReferenceImage
from .fallback import (
    AUTH_ERROR,
    FEATURE_UNSUPPORTED,
    GENERIC_ERROR,
    NETWORK_ERROR,
    QUOTA_EXCEEDED,
    PlaceholderDescriptor,
    build_fallback_seed,
    build_placeholder,
)
from .prompting import default_reference_position

logger = logging.getLogger(__name__)

# Checked in order; the first group with a matching keyword wins.
# Substring matching on prose is fragile: switch to structured codes if the
# image API starts returning them.
_KEYWORD_GROUPS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (FEATURE_UNSUPPORTED, ("not supported", "feature")),
    (QUOTA_EXCEEDED, ("quota", "limit")),
    (AUTH_ERROR, ("api key", "auth")),
    (NETWORK_ERROR, ("network", "connection")),
)

CATEGORY_ERROR_CODES: dict[str, str] = {
    FEATURE_UNSUPPORTED: MODEL_FEATURE_UNSUPPORTED,
    QUOTA_EXCEEDED: MODEL_QUOTA_EXCEEDED,
    AUTH_ERROR: MODEL_AUTH_ERROR,
    NETWORK_ERROR: MODEL_NETWORK_ERROR,
    GENERIC_ERROR: MODEL_GENERIC_ERROR,
}


@dataclass(frozen=True)
class ImageOutcome:
    """A generated illustration; ``position_hints`` are keyed by ``character_id``."""

    data: bytes
    mime_type: str = "image/png"
    position_hints: Mapping[str, str] = field(default_factory=dict)
    kind: str = field(default="image", init=False)

    def as_reference_image(self, label: str = "page 1 reference") -> ReferenceImage:
        return ReferenceImage(data=self.data, mime_type=self.mime_type, label=label)

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "mime_type": self.mime_type,
            "size_bytes": len(self.data),
            "position_hints": dict(self.position_hints),
        }


@dataclass(frozen=True)
class FallbackOutcome:
    """A deterministic stand-in for an illustration that could not be generated."""

    category: str
    seed: str
    descriptor: PlaceholderDescriptor
    error: StorybookError
    kind: str = field(default="fallback", init=False)

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "category": self.category,
            "seed": self.seed,
            "descriptor": self.descriptor.as_dict(),
            "error": self.error.to_dict(),
        }


GenerationOutcome = Union[ImageOutcome, FallbackOutcome]


def classify_error_message(message: str | None) -> str:
    """
    Map free-text error prose to a fallback category, ``generic-error`` if nothing matches.
    """
    text = (message or "").lower()
    for category, keywords in _KEYWORD_GROUPS:
        if any(keyword in text for keyword in keywords):
            return category
    return GENERIC_ERROR


def error_for_exception(exc: BaseException) -> StorybookError:
    """
    Classify an upstream exception into a ``MODEL_*`` :class:`StorybookError`.
    """
    if isinstance(exc, StorybookError):
        return exc
    text = describe_exception(exc)
    return StorybookError.for_model_code(CATEGORY_ERROR_CODES[classify_error_message(text)], text)


def describe_exception(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def build_fallback(
    category: str,
    *,
    story_id: str,
    page_number: int,
    primary_character_name: str | None,
    details: Any = None,
) -> FallbackOutcome:
    seed = build_fallback_seed(story_id, page_number, primary_character_name, category)
    return FallbackOutcome(
        category=category,
        seed=seed,
        descriptor=build_placeholder(
            seed, story_label=story_id, character_name=primary_character_name
        ),
        error=StorybookError.for_model_code(CATEGORY_ERROR_CODES[category], details),
    )


class ResponseInterpreter:
    """
    Turns whatever the image model produced (or raised) into a :data:`GenerationOutcome`.
    """

    def interpret(
        self,
        response: Any,
        *,
        story_id: str,
        page_number: int,
        primary_character_name: str | None,
        mappings: Sequence[CharacterMapping] = (),
    ) -> GenerationOutcome:
        if isinstance(response, BaseException):
            error_text = describe_exception(response)
        else:
            parts, error_text = _extract_parts(response)
            image = _first_inline_image(parts)
            if image is not None:
                data, mime_type = image
                hints: dict[str, str] = {}
                if page_number == 1:
                    hints = extract_position_hints(_joined_text(parts), mappings)
                return ImageOutcome(data=data, mime_type=mime_type, position_hints=hints)

            text = _joined_text(parts)
            error_text = " ".join(filter(None, (error_text, text))) or "Model returned no image data."

        category = classify_error_message(error_text)
        logger.warning(
            "Page %s illustration fell back (%s): %s", page_number, category, error_text
        )
        return build_fallback(
            category,
            story_id=story_id,
            page_number=page_number,
            primary_character_name=primary_character_name,
            details=error_text,
        )


def match_character_lines(
    lines: Sequence[str],
    mappings: Sequence[CharacterMapping],
) -> dict[str, str]:
    """
    Find ``Name: description`` lines whose header names a character as a whole word.

    Returns descriptions keyed by ``character_id``; the first matching line wins
    and each line is claimed by at most one character.
    """
    found: dict[str, str] = {}
    claimed: set[int] = set()
    # Longer names first so "Alice Rose" is not taken by "Alice".
    for mapping in sorted(mappings, key=lambda item: len(item.name), reverse=True):
        pattern = re.compile(rf"(?<!\w){re.escape(mapping.name)}(?!\w)", re.IGNORECASE)
        for index, raw_line in enumerate(lines):
            if index in claimed:
                continue
            head, colon, tail = raw_line.strip(" \t-•*").partition(":")
            head = head.strip(" *_")
            if colon and tail.strip() and pattern.match(head):
                found[mapping.character_id] = tail.strip()
                claimed.add(index)
                break
    return found


def extract_position_hints(
    text: str,
    mappings: Sequence[CharacterMapping],
) -> dict[str, str]:
    """
    Read ``Name: description`` lines from model text, keyed by ``character_id``.

    Characters not mentioned get :func:`default_reference_position`.
    """
    lines = (text or "").replace("\r", "\n").split("\n")
    hints = match_character_lines(lines, mappings)
    for mapping in mappings:
        hints.setdefault(mapping.character_id, default_reference_position(mapping))
    return hints


def _get(source: Any, *names: str) -> Any:
    for name in names:
        if isinstance(source, Mapping):
            if name in source:
                return source[name]
        elif hasattr(source, name):
            return getattr(source, name)
    return None


def _has(source: Any, name: str) -> bool:
    if isinstance(source, Mapping):
        return name in source
    return hasattr(source, name)


def _extract_parts(response: Any) -> tuple[list[Any], str | None]:
    if response is None or not _has(response, "candidates"):
        raise ResponseFormatError(
            "Image model response is missing 'candidates'.",
            details=type(response).__name__,
        )

    candidates = _get(response, "candidates") or []
    parts: list[Any] = []
    notes: list[str] = []
    for candidate in candidates:
        content = _get(candidate, "content")
        if content is not None:
            parts.extend(_get(content, "parts") or [])
        finish_reason = _get(candidate, "finish_reason", "finishReason")
        if finish_reason and str(finish_reason).upper() not in {"STOP", "FINISHREASON.STOP"}:
            notes.append(f"finish reason {finish_reason}")

    feedback = _get(response, "prompt_feedback", "promptFeedback")
    if feedback is not None:
        block_reason = _get(feedback, "block_reason", "blockReason")
        if block_reason:
            notes.append(f"blocked: {block_reason}")

    return parts, "; ".join(notes) or None


def _first_inline_image(parts: Sequence[Any]) -> tuple[bytes, str] | None:
    for part in parts:
        inline = _get(part, "inline_data", "inlineData")
        if inline is None:
            continue
        data = _get(inline, "data")
        if not data:
            continue
        mime_type = _get(inline, "mime_type", "mimeType") or "image/png"
        if isinstance(data, str):
            try:
                data = base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ResponseFormatError(
                    "Inline image data is not valid base64.", details=str(exc)
                ) from exc
        return bytes(data), str(mime_type)
    return None


def _joined_text(parts: Sequence[Any]) -> str:
    texts = [str(_get(part, "text")) for part in parts if _get(part, "text")]
    return "\n".join(texts).strip()
