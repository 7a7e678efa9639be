"""
Story models, text generation, and regeneration for illustrated storybooks.
"""

from .models import (
    Character,
    CharacterMapping,
    ChildProfile,
    StoryContext,
    StoryPageDraft,
    StoryStyleOptions,
    VisualContext,
    VisualProfile,
    drafts_from_texts,
    validate_pages,
)
from .scene_builder import NarrativeContext, SceneContext, build_narrative_context, build_scene_context
from .prompting import StoryPrompt, build_page_prompt, build_story_prompt
from .story_service import StoryTextGenerator, parse_story_pages
from .regeneration import RegenerationCoordinator

__all__ = [
    "Character",
    "CharacterMapping",
    "ChildProfile",
    "StoryContext",
    "StoryPageDraft",
    "StoryStyleOptions",
    "VisualContext",
    "VisualProfile",
    "drafts_from_texts",
    "validate_pages",
    "NarrativeContext",
    "SceneContext",
    "build_narrative_context",
    "build_scene_context",
    "StoryPrompt",
    "build_page_prompt",
    "build_story_prompt",
    "StoryTextGenerator",
    "parse_story_pages",
    "RegenerationCoordinator",
]
