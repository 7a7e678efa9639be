"""
Prompt construction utilities for storybook text generation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .models import StoryContext, StoryStyleOptions

SYSTEM_PROMPT = """You are a warm, skilled children's picture-book author.
You write short illustrated stories that help young children, including children
who communicate through gestalt language processing, learn an everyday concept.

Writing directives:
- Treat the main character as the unmistakable hero of every page.
- Always use the characters' real names; never write "the child" or "the main character".
- Keep every page a single, concrete, visually describable scene.
- Keep language safe, kind, inclusive, and age-appropriate; avoid frightening peril.
- Do not include author notes, process explanations, or meta commentary.
"""

_DENSITY_GUIDANCE = {
    "one-word": "Very brief, one key word or phrase per page",
    "one-sentence": "One simple sentence per page",
    "multiple-sentences": "Multiple sentences per page (2-4)",
}

_COMMUNICATION_GUIDANCE = {
    "visual-heavy": "Let the pictures carry the story; keep words to the essentials",
    "balanced": "Balance words and pictures evenly",
    "text-heavy": "Let the words carry most of the story, with vivid description",
}


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the chat model.
    """

    system: str
    user: str

    def as_messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


def style_requirements(style: StoryStyleOptions, main_character: str) -> list[str]:
    """
    Render the advanced wizard settings as prompt bullet points.
    """
    lines: list[str] = []
    if style.density:
        lines.append(f"Text Density: {_DENSITY_GUIDANCE[style.density]}")
    if style.narrative == "first-person":
        lines.append(f'Narrative Style: Written from {main_character}\'s perspective using "I" and "me"')
    elif style.narrative == "third-person":
        lines.append(
            f'Narrative Style: Third-person narration using character names like "{main_character}" and "they"'
        )
    if style.complexity:
        lines.append(
            f"Language Complexity: {style.complexity} vocabulary and sentence structure appropriate for children"
        )
    if style.communication_style:
        lines.append(f"Communication Style: {_COMMUNICATION_GUIDANCE[style.communication_style]}")
    if style.tone:
        lines.append(f"Tone: {style.tone} and engaging for young readers")
    return lines


def build_story_prompt(
    context: StoryContext,
    page_count: int,
    *,
    custom_instruction: str | None = None,
) -> StoryPrompt:
    """
    Build the prompt pair that asks for a complete ``page_count`` page story.
    """
    main_character = context.main_character
    all_characters = context.all_character_names
    names = ", ".join(all_characters)

    sections = [
        "Create an engaging children's story with the following specifications:",
        f'Title: "{context.title}"\n'
        f"Story Theme: {context.description or context.concept}\n"
        f"Main Character: {main_character}\n"
        f"All Characters: {names}\n"
        f"Number of Pages: {page_count}",
        "CRITICAL REQUIREMENTS:\n"
        f"- Use the actual character names ({names}) throughout the story, never generic terms\n"
        f"- {main_character} is the hero and appears on every page\n"
        "- Refer to each character by name whenever they appear",
    ]

    learning = [
        f"Learning Focus: {context.concept}",
        f'Educational Goal: Naturally teach "{context.concept}" through {main_character}\'s adventure',
        "Integration: Weave the concept into the story naturally, never forced",
    ]
    if context.style.goal:
        learning.append(f"Specific Learning Objective: {context.style.goal}")
    sections.append("\n".join(learning))

    style_lines = style_requirements(context.style, main_character)
    if style_lines:
        sections.append("Story Style Requirements:\n" + "\n".join(f"- {line}" for line in style_lines))

    supporting = ", ".join(all_characters[1:]) or "none"
    sections.append(
        "Story Structure Instructions:\n"
        f"1. Write exactly {page_count} distinct pages\n"
        "2. Each page is a complete thought or scene\n"
        f"3. Use {main_character}'s name at least once per page\n"
        f"4. Include other character names when they appear: {supporting}\n"
        "5. Create a clear beginning, middle, and end\n"
        "6. Make every page visually descriptive for illustration"
    )

    if custom_instruction:
        sections.append(f"Additional instructions: {custom_instruction.strip()}")

    sections.append(
        "Output Format:\n"
        "Return ONLY the story text, one page per line:\n"
        f"Page 1: [First scene with {main_character}]\n"
        f"Page 2: [Second scene continuing {main_character}'s story]\n"
        "And so on..."
    )

    return StoryPrompt(system=SYSTEM_PROMPT, user="\n\n".join(sections))


def build_page_prompt(
    context: StoryContext,
    page_number: int,
    total_pages: int,
    *,
    previous_pages: Sequence[str] = (),
    custom_instruction: str | None = None,
) -> StoryPrompt:
    """
    Build the prompt pair that asks for a single page, given the pages before it.

    Used both to regenerate one page and to fill in pages missing from a
    story response.
    """
    main_character = context.main_character
    lines = [
        f'Write page {page_number} of {total_pages} for the story "{context.title}".',
        "",
        f"Characters: {', '.join(context.all_character_names)}",
        f"Main character: {main_character}",
        f"Learning concept: {context.concept}",
    ]
    style_lines = style_requirements(context.style, main_character)
    if style_lines:
        lines.append("Style: " + "; ".join(style_lines))

    if previous_pages:
        lines.append("")
        lines.append("Previous pages for context:")
        lines.extend(f"Page {index}: {text}" for index, text in enumerate(previous_pages, start=1))

    if custom_instruction:
        lines.append("")
        lines.append(f"Specific instructions: {custom_instruction.strip()}")

    lines.append("")
    lines.append(
        f"Write only the story text for page {page_number}. Use the character names "
        f"(especially {main_character}) and make it engaging for children. "
        f'Do not include "Page {page_number}:" in your response.'
    )
    return StoryPrompt(system=SYSTEM_PROMPT, user="\n".join(lines))
