"""
Scene and narrative context shared by every illustration of a story.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from .models import StoryPageDraft

DEFAULT_TONE = "gentle"

_TONE_SETTINGS: dict[str, tuple[str, tuple[str, ...]]] = {
    "playful": (
        "joyful and energetic",
        ("bright yellow", "cheerful orange", "vibrant blue", "grass green"),
    ),
    "gentle": (
        "calm and nurturing",
        ("soft pink", "warm cream", "gentle blue", "sage green"),
    ),
    "encouraging": (
        "uplifting and confident",
        ("sunny gold", "sky blue", "forest green", "coral pink"),
    ),
    "educational": (
        "focused and engaging",
        ("deep blue", "warm red", "natural green", "golden yellow"),
    ),
}

TONE_VISUAL_APPROACH: dict[str, str] = {
    "playful": "bright, energetic scene with joyful expressions and dynamic poses",
    "gentle": "soft, calm atmosphere with nurturing expressions and peaceful composition",
    "encouraging": "uplifting scene with confident poses and hopeful lighting",
    "educational": "clear, focused composition highlighting learning elements",
}

_VISUAL_STYLES = {
    "animated": "Professional 3D animated picture-book style with child-friendly appeal",
    "real": "Photorealistic picture-book photography with natural light and textures",
}


@dataclass(frozen=True)
class SceneContext:
    """
    Art direction held constant across a story's illustrations.
    """

    setting: str
    mood: str
    color_palette: tuple[str, ...]
    visual_style: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "setting": self.setting,
            "mood": self.mood,
            "color_palette": list(self.color_palette),
            "visual_style": self.visual_style,
        }


@dataclass(frozen=True)
class NarrativeContext:
    """
    Where a page sits in the story, for continuity instructions.
    """

    page_number: int
    total_pages: int
    concept: str
    tone: str | None = None
    previous_text: str | None = None
    next_text: str | None = None

    @property
    def story_phase(self) -> str:
        if self.page_number == 1:
            return "Introduction/Setup"
        if self.page_number == self.total_pages:
            return "Resolution"
        progress = self.page_number / max(self.total_pages, 1) * 100
        if progress < 30:
            return "Early Development"
        if progress < 70:
            return "Middle Development"
        return "Resolution"


def build_scene_context(
    concept: str,
    tone: str | None = None,
    *,
    visual_mode: str = "animated",
    setting: str | None = None,
) -> SceneContext:
    """
    Derive the story-wide scene context from the learning concept and tone.

    Unknown or missing tones fall back to ``gentle``.
    """
    mood, colors = _TONE_SETTINGS.get(tone or DEFAULT_TONE, _TONE_SETTINGS[DEFAULT_TONE])
    return SceneContext(
        setting=setting or f"A welcoming story world that naturally illustrates learning about {concept}",
        mood=mood,
        color_palette=colors,
        visual_style=_VISUAL_STYLES.get(visual_mode, _VISUAL_STYLES["animated"]),
    )


def build_narrative_context(
    pages: Sequence[StoryPageDraft],
    index: int,
    *,
    concept: str,
    tone: str | None = None,
) -> NarrativeContext:
    """
    Build the narrative context for ``pages[index]`` from its neighbours.
    """
    if not 0 <= index < len(pages):
        raise IndexError(f"Page index {index} is outside a {len(pages)}-page story.")

    page = pages[index]
    previous_text = pages[index - 1].text if index > 0 else None
    next_text = pages[index + 1].text if index < len(pages) - 1 else None
    return NarrativeContext(
        page_number=page.page_number,
        total_pages=len(pages),
        concept=concept,
        tone=tone,
        previous_text=previous_text,
        next_text=next_text,
    )
