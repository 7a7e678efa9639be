"""
End-to-end orchestration for storybook text and illustration generation.
"""

from .continuity import IllustrationContinuityState
from .identity import ReferenceAnalysis, ReferenceImageAnalyzer
from glp_storybook.story_generation.models import validate_pages

from .pipeline import (
    GenerationRun,
    PageResult,
    SequentialGenerationController,
    StorybookOrchestrator,
    StoryPackage,
)
from .store import (
    CharacterStore,
    InMemoryCharacterStore,
    StoryRequest,
    load_story_request,
    story_request_from_mapping,
)

__all__ = [
    "IllustrationContinuityState",
    "ReferenceAnalysis",
    "ReferenceImageAnalyzer",
    "GenerationRun",
    "PageResult",
    "SequentialGenerationController",
    "StorybookOrchestrator",
    "StoryPackage",
    "validate_pages",
    "CharacterStore",
    "InMemoryCharacterStore",
    "StoryRequest",
    "load_story_request",
    "story_request_from_mapping",
]
