"""
Service layer for producing story page text via LiteLLM-compatible models.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Sequence

from glp_storybook.ai_generation.interpreter import error_for_exception
from glp_storybook.common import (
    ChatResult,
    CompletionCallable,
    StorybookError,
    call_chat_completion,
)
from glp_storybook.common.errors import MODEL_GENERIC_ERROR

from .models import StoryContext, StoryStyleOptions
from .prompting import StoryPrompt, build_page_prompt, build_story_prompt

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "gemini/gemini-1.5-pro"

_PAGE_MARKER = re.compile(r"Page\s+\d+\s*:?\**\s*([^\n]+)", re.IGNORECASE)
_PAGE_PREFIX = re.compile(r"^\**\s*Page\s+\d+\s*:?\**\s*", re.IGNORECASE)
_BARE_LABEL = re.compile(r"^(Page\s+\d+|\d+\.?)\s*$", re.IGNORECASE)
_MIN_LINE_LENGTH = 20


def clean_page_text(text: str) -> str:
    """
    Strip a leading ``Page N:`` marker and quotes wrapping the whole page.
    """
    cleaned = _PAGE_PREFIX.sub("", text.strip()).strip()
    if len(cleaned) >= 2 and cleaned.startswith('"') and cleaned.endswith('"'):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def parse_story_pages(text: str, page_count: int) -> list[str]:
    """
    Split a model response into at most ``page_count`` page texts.

    Explicit ``Page N:`` markers win when there are enough of them; otherwise
    every substantial line is treated as a page and titles or bare labels are
    dropped.
    """
    markers = _PAGE_MARKER.findall(text or "")
    if markers and len(markers) >= page_count:
        candidates = list(markers)
    else:
        lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
        candidates = [
            line
            for line in lines
            if not line.lower().startswith(("title:", "story:"))
            and not _BARE_LABEL.match(line)
            and len(line) >= _MIN_LINE_LENGTH
        ]
        if candidates and "learns about" in candidates[0].lower() and len(candidates[0]) < 100:
            candidates = candidates[1:]

    pages = [clean_page_text(candidate) for candidate in candidates]
    return [page for page in pages if page][:page_count]


class StoryTextGenerator:
    """
    Turns a story request into per-page text, and rewrites single pages on demand.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
        temperature: float = 0.7,
        max_output_tokens: int | None = 1400,
    ) -> None:
        self._api_key = (
            api_key
            or os.getenv("GLP_STORYBOOK_TEXT_API_KEY")
            or os.getenv("GEMINI_API_KEY")
            or os.getenv("LITELLM_API_KEY")
        )
        self._model = (
            model
            or os.getenv("GLP_STORYBOOK_TEXT_MODEL")
            or os.getenv("LITELLM_STORY_MODEL")
            or os.getenv("LITELLM_MODEL")
            or DEFAULT_TEXT_MODEL
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    def generate_story_text(
        self,
        title: str,
        concept: str,
        character_names: Sequence[str],
        page_count: int,
        style_options: StoryStyleOptions | None = None,
        *,
        description: str = "",
        child_name: str | None = None,
        custom_instruction: str | None = None,
    ) -> list[str]:
        """
        Produce exactly ``page_count`` page texts for a new story.
        """
        context = StoryContext(
            story_id=concept,
            title=title,
            concept=concept,
            description=description,
            child_name=child_name,
            character_names=tuple(character_names),
            style=style_options or StoryStyleOptions(),
        )
        return self.generate_for_context(
            context, page_count, custom_instruction=custom_instruction
        )

    def generate_for_context(
        self,
        context: StoryContext,
        page_count: int,
        *,
        custom_instruction: str | None = None,
    ) -> list[str]:
        if page_count < 1:
            raise ValueError("page_count must be at least 1.")

        prompt = build_story_prompt(context, page_count, custom_instruction=custom_instruction)
        logger.info("Generating %d story pages for '%s' with %s.", page_count, context.title, self._model)
        pages = parse_story_pages(self._complete(prompt), page_count)

        if len(pages) < page_count:
            logger.warning(
                "Only parsed %d of %d pages for '%s'; requesting the rest one by one.",
                len(pages),
                page_count,
                context.title,
            )
        while len(pages) < page_count:
            pages.append(self._continue_story(context, pages, page_count))

        return _ensure_main_character(pages, context.main_character)

    def regenerate_page_text(
        self,
        context: StoryContext,
        page_number: int,
        total_pages: int,
        *,
        previous_pages: Sequence[str] = (),
        custom_instruction: str | None = None,
    ) -> str:
        """
        Rewrite a single page, using the text of the pages before it as context.
        """
        prompt = build_page_prompt(
            context,
            page_number,
            total_pages,
            previous_pages=previous_pages,
            custom_instruction=custom_instruction,
        )
        text = clean_page_text(self._complete(prompt))
        if not text:
            raise StorybookError.for_model_code(
                MODEL_GENERIC_ERROR, f"Text model returned an empty page {page_number}."
            )
        return text

    def _continue_story(self, context: StoryContext, pages: Sequence[str], page_count: int) -> str:
        page_number = len(pages) + 1
        try:
            text = self.regenerate_page_text(
                context, page_number, page_count, previous_pages=pages
            )
        except StorybookError:
            logger.exception("Could not generate missing page %d; using a stock continuation.", page_number)
            text = (
                f"{context.main_character} continued their journey, discovering new things "
                "and learning important lessons along the way."
            )
        return text

    def _complete(self, prompt: StoryPrompt, **response_kwargs: Any) -> str:
        try:
            result: ChatResult = self._completion_fn(
                model=self._model,
                messages=prompt.as_messages(),
                temperature=self._temperature,
                max_tokens=self._max_output_tokens,
                api_key=self._api_key,
                **response_kwargs,
            )
        except StorybookError:
            raise
        except Exception as exc:
            raise error_for_exception(exc) from exc

        if not result.text:
            raise StorybookError.for_model_code(
                MODEL_GENERIC_ERROR, "Text model response did not contain any text content."
            )
        if result.truncated:
            logger.warning("Text model stopped at the token limit; the last page may be cut short.")
        return result.text


def _ensure_main_character(pages: list[str], main_character: str) -> list[str]:
    if main_character == "the main character" or any(main_character in page for page in pages):
        return pages
    logger.warning("Generated story never names %s; replacing generic references.", main_character)
    return [
        re.sub(r"the child", main_character, page, flags=re.IGNORECASE)
        if main_character not in page
        else page
        for page in pages
    ]
