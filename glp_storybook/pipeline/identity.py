"""
Vision analysis of the page-1 illustration for later-page continuity.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from glp_storybook.ai_generation.avatars import ReferenceImage
from glp_storybook.ai_generation.interpreter import match_character_lines
from glp_storybook.common import (
    CompletionCallable,
    call_chat_completion,
    system_message,
    user_message,
)
from glp_storybook.story_generation.models import CharacterMapping

logger = logging.getLogger(__name__)

DEFAULT_VISION_MODEL = "gemini/gemini-1.5-pro"

_SECTION_NAMES = ("LIGHTING", "COLOR_PALETTE", "BACKGROUND_STYLE", "CHARACTER_POSITIONS", "SCENE_DESCRIPTION")
_SECTION_PATTERN = re.compile(
    r"^\s*\**(?P<name>" + "|".join(_SECTION_NAMES) + r")\**\s*:\s*(?P<rest>.*)$",
    re.IGNORECASE | re.MULTILINE,
)
_MAX_PALETTE_COLORS = 6


@dataclass(frozen=True)
class ReferenceAnalysis:
    """
    What a vision model saw in the reference page.
    """

    character_positions: Mapping[str, str] = field(default_factory=dict)
    lighting: str | None = None
    color_palette: tuple[str, ...] = ()
    background_style: str | None = None
    scene_description: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "character_positions": dict(self.character_positions),
            "lighting": self.lighting,
            "color_palette": list(self.color_palette),
            "background_style": self.background_style,
            "scene_description": self.scene_description,
        }


def build_analysis_prompt(mappings: Sequence[CharacterMapping]) -> str:
    characters = "\n".join(
        f"- {mapping.name} ({mapping.role} character): {mapping.visual_description}"
        for mapping in mappings
    )
    return (
        "Analyze this children's storybook illustration and describe it so later pages "
        "can stay visually consistent.\n\n"
        f"CHARACTERS TO IDENTIFY:\n{characters}\n\n"
        "Format your response exactly as:\n"
        "LIGHTING: [direction, warmth, and illumination style]\n"
        "COLOR_PALETTE: [color1, color2, color3, ...]\n"
        "BACKGROUND_STYLE: [environment and artistic approach]\n"
        "CHARACTER_POSITIONS:\n"
        "- [Character Name]: [where they stand in the image and how they look]\n"
        "SCENE_DESCRIPTION: [overall composition and mood]"
    )


def parse_reference_analysis(text: str, mappings: Sequence[CharacterMapping]) -> ReferenceAnalysis:
    """
    Parse the labelled sections of a vision response.

    ``character_positions`` is keyed by ``character_id``; characters the
    response does not mention are left out.
    """
    sections = _split_sections(text or "")

    position_lines = sections.get("CHARACTER_POSITIONS", "").splitlines()
    positions = match_character_lines(position_lines, mappings)

    palette = tuple(
        color.strip()
        for color in re.split(r"[,;]", sections.get("COLOR_PALETTE", ""))
        if color.strip()
    )[:_MAX_PALETTE_COLORS]

    return ReferenceAnalysis(
        character_positions=positions,
        lighting=sections.get("LIGHTING") or None,
        color_palette=palette,
        background_style=sections.get("BACKGROUND_STYLE") or None,
        scene_description=sections.get("SCENE_DESCRIPTION") or None,
    )


class ReferenceImageAnalyzer:
    """
    Ask a multimodal chat model where each character appears in the reference page.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        completion_fn: CompletionCallable | None = None,
        max_tokens: int = 600,
        temperature: float = 0.2,
    ) -> None:
        self._model = model or os.getenv("GLP_STORYBOOK_VISION_MODEL") or DEFAULT_VISION_MODEL
        self._api_key = (
            api_key
            or os.getenv("GLP_STORYBOOK_TEXT_API_KEY")
            or os.getenv("GEMINI_API_KEY")
            or os.getenv("LITELLM_API_KEY")
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._max_tokens = max_tokens
        self._temperature = temperature

    def analyze(
        self,
        image: ReferenceImage,
        mappings: Sequence[CharacterMapping],
    ) -> ReferenceAnalysis | None:
        """
        Return the parsed analysis, or ``None`` if the vision call fails.

        Analysis only refines position hints, so a failure here never fails the page.
        """
        messages: Sequence[dict[str, Any]] = [
            system_message(
                "You are an illustration continuity director. Describe only what is "
                "visible in the image. Do not invent names, backstory, or personality."
            ),
            user_message(build_analysis_prompt(mappings), image_urls=[image.as_data_url()]),
        ]

        try:
            result = self._completion_fn(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                api_key=self._api_key,
            )
        except Exception:
            logger.exception("Failed to analyze the reference page; keeping interpreter hints.")
            return None

        analysis = parse_reference_analysis(result.text, mappings)
        logger.info(
            "Reference page analysis located %d of %d characters.",
            len(analysis.character_positions),
            len(mappings),
        )
        return analysis


def _split_sections(text: str) -> dict[str, str]:
    sections: dict[str, str] = {}
    matches = list(_SECTION_PATTERN.finditer(text))
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        body = (match.group("rest") + text[match.end() : end]).strip()
        sections[match.group("name").upper()] = body
    return sections
