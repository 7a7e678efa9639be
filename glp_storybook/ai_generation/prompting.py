"""
Prompt construction for character-consistent story illustrations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from glp_storybook.common import PromptError
from glp_storybook.story_generation.models import (
    MAX_REFERENCE_IMAGES,
    ROLE_PRIMARY,
    CharacterMapping,
    StoryPageDraft,
)
from glp_storybook.story_generation.scene_builder import (
    TONE_VISUAL_APPROACH,
    NarrativeContext,
    SceneContext,
)

from .avatars import ImageFetcher, ReferenceImage, fetch_reference_image

logger = logging.getLogger(__name__)

SAFETY_CLAUSE = (
    "- Safe, age-appropriate content for young children; nothing frightening, violent, or mature.\n"
    "- Kind, inclusive depiction of every character; no stereotypes.\n"
    "- No written text, letters, logos, or watermarks inside the illustration."
)

_ART_DIRECTION = {
    "animated": (
        "- Professional 3D animated picture-book aesthetic with rounded, child-friendly character designs.\n"
        "- Vibrant, saturated colors with soft directional lighting from the upper left.\n"
        "- Rich environmental details that support the narrative."
    ),
    "real": (
        "- Photorealistic picture-book photography with natural lighting and textures.\n"
        "- Natural skin, hair, and clothing materials with a gentle depth of field.\n"
        "- Realistic, uncluttered environments that support the narrative."
    ),
}

_RENDERING_STYLE = {
    "animated": "3D animated picture-book illustration",
    "real": "photorealistic picture-book photography",
}


@dataclass(frozen=True)
class ReferenceContext:
    """
    The page-1 anchor handed to every later page.

    ``image`` is ``None`` when page 1 fell back to a placeholder; later pages then
    rely on the character positions alone. The style fields are filled when the
    reference page was analysed by a vision model.
    """

    image: ReferenceImage | None = None
    source_page: int = 1
    lighting: str | None = None
    color_palette: tuple[str, ...] = ()
    background_style: str | None = None
    scene_description: str | None = None

    @property
    def has_image(self) -> bool:
        return self.image is not None

    def style_lines(self) -> list[str]:
        lines: list[str] = []
        if self.lighting:
            lines.append(f"Reference lighting: {self.lighting}")
        if self.color_palette:
            lines.append(f"Reference color palette: {', '.join(self.color_palette)}")
        if self.background_style:
            lines.append(f"Reference background style: {self.background_style}")
        if self.scene_description:
            lines.append(f"Reference composition: {self.scene_description}")
        return lines


@dataclass(frozen=True)
class GenerationRequest:
    """Text prompt plus ordered reference images for one image model call."""

    text_prompt: str
    images: tuple[ReferenceImage, ...] = ()
    page_number: int = 1

    def __post_init__(self) -> None:
        if len(self.images) > MAX_REFERENCE_IMAGES:
            raise PromptError(
                f"A generation request accepts at most {MAX_REFERENCE_IMAGES} images; "
                f"received {len(self.images)}."
            )


def default_reference_position(mapping: CharacterMapping) -> str:
    """Location phrase used when nothing finer is known about where a character stands."""
    return f"placed in the {mapping.role} position"


def primary_character_name(mappings: Sequence[CharacterMapping]) -> str | None:
    for mapping in mappings:
        if mapping.role == ROLE_PRIMARY:
            return mapping.name
    return None


class PromptComposer:
    """
    Builds the image model request for a single story page.

    Page 1 attaches the characters' own avatars. Every later page attaches only
    the illustration produced for page 1 and points each character at where it
    appears in that image.
    """

    def __init__(
        self,
        *,
        fetch_image: ImageFetcher | None = None,
        visual_mode: str = "animated",
    ) -> None:
        self._fetch_image: ImageFetcher = fetch_image or fetch_reference_image
        self._visual_mode = visual_mode if visual_mode in _ART_DIRECTION else "animated"

    def compose(
        self,
        page: StoryPageDraft,
        mappings: Sequence[CharacterMapping],
        scene: SceneContext,
        narrative: NarrativeContext,
        reference_context: ReferenceContext | None = None,
    ) -> GenerationRequest:
        if page is None or not page.text or not page.text.strip():
            number = getattr(page, "page_number", "?")
            raise PromptError(f"Page {number} has no text to illustrate.")

        if page.page_number == 1:
            images, character_lines = self._first_page_characters(mappings)
        else:
            images, character_lines = self._later_page_characters(mappings, reference_context)

        main_character = primary_character_name(mappings) or "the child"
        sections = [
            self._task_section(page, main_character, continuing=page.page_number > 1),
            _format_section("PAGE TEXT TO ILLUSTRATE", [f'"{page.text.strip()}"']),
        ]
        if character_lines:
            sections.append(_format_section("CHARACTERS", character_lines))
        else:
            sections.append(
                _format_section(
                    "CHARACTERS",
                    ["No specific characters were selected; focus on the setting and objects in the page text."],
                )
            )
        if page.visual_context is not None:
            staging = self._staging_lines(page)
            if staging:
                sections.append(_format_section("PAGE STAGING", staging))
        sections.append(self._scene_section(scene, narrative))
        sections.append(
            self._continuity_section(
                narrative,
                reference_context if page.page_number > 1 else None,
            )
        )
        sections.append(f"CHILD SAFETY\n{SAFETY_CLAUSE}")

        return GenerationRequest(
            text_prompt="\n\n".join(sections),
            images=tuple(images),
            page_number=page.page_number,
        )

    def _first_page_characters(
        self,
        mappings: Sequence[CharacterMapping],
    ) -> tuple[list[ReferenceImage], list[str]]:
        images: list[ReferenceImage] = []
        attached: dict[str, int] = {}

        for mapping in sorted(
            (item for item in mappings if item.uses_avatar),
            key=lambda item: item.avatar_index,
        ):
            if len(images) >= MAX_REFERENCE_IMAGES:
                break
            try:
                image = self._fetch_image(mapping.avatar_url or "")
            except Exception as exc:
                logger.warning(
                    "Could not load avatar for %s; describing them in text instead: %s",
                    mapping.name,
                    exc,
                )
                continue
            images.append(
                ReferenceImage(data=image.data, mime_type=image.mime_type, label=mapping.name)
            )
            attached[mapping.character_id] = len(images)

        lines: list[str] = []
        for mapping in mappings:
            position = attached.get(mapping.character_id)
            if position is not None:
                lines.append(
                    f"{mapping.name} ({mapping.role} character): match attached reference image "
                    f"{position} exactly; keep the same face, hair, colors, clothing, and proportions."
                )
            else:
                lines.append(
                    f"{mapping.name} ({mapping.role} character) has no reference image. "
                    f"Appearance: {mapping.visual_description}"
                )
        return images, lines

    def _later_page_characters(
        self,
        mappings: Sequence[CharacterMapping],
        reference_context: ReferenceContext | None,
    ) -> tuple[list[ReferenceImage], list[str]]:
        anchor = reference_context.image if reference_context is not None else None
        images = [anchor] if anchor is not None else []

        lines: list[str] = []
        for mapping in mappings:
            position = (mapping.position_in_reference or default_reference_position(mapping)).rstrip(". ")
            if anchor is not None:
                lines.append(
                    f"{mapping.name} ({mapping.role} character) in the attached reference image: "
                    f"{position}. Keep them visually identical to it."
                )
            else:
                lines.append(
                    f"{mapping.name} ({mapping.role} character), as established on page 1: {position}. "
                    f"Appearance: {mapping.visual_description}"
                )
        return images, lines

    def _task_section(self, page: StoryPageDraft, main_character: str, *, continuing: bool) -> str:
        if continuing:
            task = (
                "Create a children's storybook illustration that continues the story with perfect "
                "character consistency. Use the reference page as the definitive guide for how every "
                "character looks."
            )
        else:
            task = (
                "Create a children's storybook illustration that introduces the characters. "
                "Give each character distinctive, memorable features that can be kept identical on "
                "later pages."
            )
        return (
            f"TASK\n{task}\n\n"
            f"ART DIRECTION\n{_ART_DIRECTION[self._visual_mode]}\n"
            f"- Clear focal hierarchy with {main_character} as the primary focus."
        )

    @staticmethod
    def _staging_lines(page: StoryPageDraft) -> list[str]:
        visual = page.visual_context
        lines: list[str] = []
        if visual.characters:
            lines.append(f"Characters on this page: {', '.join(visual.characters)}")
        if visual.setting:
            lines.append(f"Setting: {visual.setting}")
        if visual.action:
            lines.append(f"Action: {visual.action}")
        if visual.previous_page_visual_notes:
            lines.append(f"Carry over from the previous page: {visual.previous_page_visual_notes}")
        return lines

    @staticmethod
    def _scene_section(scene: SceneContext, narrative: NarrativeContext) -> str:
        lines = [
            f"Setting: {scene.setting}",
            f"Mood: {scene.mood}",
            f"Color palette: {', '.join(scene.color_palette)}",
            f"Visual style: {scene.visual_style}",
        ]
        if narrative.tone:
            approach = TONE_VISUAL_APPROACH.get(narrative.tone, "engaging and age-appropriate")
            lines.append(f"Tone: {narrative.tone} ({approach})")
        return _format_section("SCENE & MOOD", lines)

    def compose_refinement(
        self,
        page_number: int,
        current_image: ReferenceImage,
        mappings: Sequence[CharacterMapping],
        instruction: str,
        *,
        previous_refinements: Sequence[str] = (),
        reference_context: ReferenceContext | None = None,
    ) -> GenerationRequest:
        """
        Build a request that edits an existing page illustration.

        The current illustration is always the first image. For later pages the
        page-1 reference is attached second so characters stay on model.
        """
        instruction = (instruction or "").strip()
        if not instruction:
            raise PromptError(f"Refinement of page {page_number} needs an instruction.")

        images = [current_image]
        anchor = reference_context.image if reference_context is not None else None
        if anchor is not None and page_number > 1:
            images.append(anchor)

        sections = [
            f"TASK\nModify the attached illustration (image 1) following this instruction: {instruction}",
            _format_section(
                "EDITING RULES",
                [
                    "Make only the requested change and preserve everything else exactly.",
                    f"Keep the same rendering style: {_RENDERING_STYLE[self._visual_mode]}.",
                    "Keep composition, lighting, and color scheme unless the instruction says otherwise.",
                    "The result should feel natural and cohesive, not edited.",
                ],
            ),
        ]
        if mappings:
            sections.append(
                _format_section(
                    "CHARACTER CONSISTENCY",
                    [
                        f"{mapping.name} ({mapping.role} character): {mapping.visual_description}"
                        for mapping in mappings
                    ],
                )
            )
        if len(images) > 1:
            sections.append(
                _format_section(
                    "CHARACTER REFERENCE",
                    ["Image 2 is the story's reference page; characters must match it exactly."],
                )
            )
        history = [item.strip() for item in previous_refinements if item and item.strip()]
        if history:
            sections.append(
                "PREVIOUS REFINEMENTS APPLIED\n"
                + "\n".join(f"{index}. {item}" for index, item in enumerate(history, start=1))
                + f"\nBuild on these changes while applying: {instruction}"
            )
        sections.append(f"CHILD SAFETY\n{SAFETY_CLAUSE}")

        return GenerationRequest(
            text_prompt="\n\n".join(sections),
            images=tuple(images),
            page_number=page_number,
        )

    @staticmethod
    def _continuity_section(
        narrative: NarrativeContext,
        reference_context: ReferenceContext | None,
    ) -> str:
        lines = [
            f"This is page {narrative.page_number} of {narrative.total_pages} in a story about "
            f"learning {narrative.concept}.",
            f"Story phase: {narrative.story_phase}.",
        ]
        if narrative.previous_text:
            lines.append(f'The previous page said: "{_truncate(narrative.previous_text)}"')
        if narrative.next_text:
            lines.append(f'The next page will say: "{_truncate(narrative.next_text)}"')
        if reference_context is not None and reference_context.has_image:
            lines.append(
                "Match the lighting, color grading, and rendering style of the reference page."
            )
        elif narrative.page_number == 1:
            lines.append("Establish lighting and a background style that later pages can keep.")
        else:
            lines.append("Keep characters, lighting, and style consistent with earlier pages.")
        if reference_context is not None:
            lines.extend(reference_context.style_lines())
        return _format_section("NARRATIVE CONTINUITY", lines)


def _truncate(text: str, limit: int = 160) -> str:
    cleaned = " ".join(text.split())
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: limit - 3].rstrip() + "..."


def _format_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
