"""
Character-consistent illustrated storybook generation.
"""

from .pipeline import (
    SequentialGenerationController,
    StorybookOrchestrator,
    StoryPackage,
    load_story_request,
)
from .story_generation import RegenerationCoordinator

__all__ = [
    "SequentialGenerationController",
    "StorybookOrchestrator",
    "StoryPackage",
    "load_story_request",
    "RegenerationCoordinator",
]
