"""
Character allocation, prompt composition, and image generation for storybook pages.
"""

from .allocation import CharacterAllocator, allocate_characters, describe_character
from .avatars import ReferenceImage, fetch_reference_image
from .fallback import (
    FALLBACK_CATEGORIES,
    PlaceholderDescriptor,
    build_fallback_seed,
    build_placeholder,
    render_placeholder,
)
from .interpreter import (
    FallbackOutcome,
    GenerationOutcome,
    ImageOutcome,
    ResponseInterpreter,
    classify_error_message,
    error_for_exception,
)
from .prompting import GenerationRequest, PromptComposer, ReferenceContext

__all__ = [
    "CharacterAllocator",
    "allocate_characters",
    "describe_character",
    "ReferenceImage",
    "fetch_reference_image",
    "FALLBACK_CATEGORIES",
    "PlaceholderDescriptor",
    "build_fallback_seed",
    "build_placeholder",
    "render_placeholder",
    "FallbackOutcome",
    "GenerationOutcome",
    "ImageOutcome",
    "ResponseInterpreter",
    "classify_error_message",
    "error_for_exception",
    "GenerationRequest",
    "PromptComposer",
    "ReferenceContext",
]
