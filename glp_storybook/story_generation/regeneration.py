"""
Regeneration and editing of story pages after the first draft.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from glp_storybook.ai_generation.interpreter import ImageOutcome

from .models import CharacterMapping, StoryContext, StoryPageDraft, validate_pages
from .scene_builder import SceneContext, build_narrative_context
from .story_service import StoryTextGenerator

if TYPE_CHECKING:
    from glp_storybook.ai_generation.interpreter import GenerationOutcome
    from glp_storybook.ai_generation.prompting import ReferenceContext
    from glp_storybook.pipeline.pipeline import SequentialGenerationController

logger = logging.getLogger(__name__)


class RegenerationCoordinator:
    """
    Rewrites story text on request, one page or the whole story at a time.

    Every rewrite uses the same :class:`StoryContext` the story was created
    with. Text changes never trigger new illustrations; call
    :meth:`regenerate_illustration` or :meth:`refine_illustration` for that.
    """

    def __init__(
        self,
        context: StoryContext,
        *,
        text_generator: StoryTextGenerator | None = None,
        illustration_controller: "SequentialGenerationController | None" = None,
    ) -> None:
        self._context = context
        self._text_generator = text_generator or StoryTextGenerator()
        self._illustration_controller = illustration_controller

    @property
    def context(self) -> StoryContext:
        return self._context

    def regenerate_story(
        self,
        pages: Sequence[StoryPageDraft],
        custom_instruction: str | None = None,
    ) -> list[StoryPageDraft]:
        """
        Replace every page's text, keeping the page count and numbering.

        Pages must be numbered 1..N in order; new texts are assigned by position.
        """
        if not pages:
            return []
        validate_pages(pages)

        texts = self._text_generator.generate_for_context(
            self._context, len(pages), custom_instruction=custom_instruction
        )
        logger.info("Regenerated all %d pages of '%s'.", len(pages), self._context.title)
        return [page.with_generated_text(text) for page, text in zip(pages, texts)]

    def regenerate_page(
        self,
        page_number: int,
        pages: Sequence[StoryPageDraft],
        custom_instruction: str | None = None,
    ) -> StoryPageDraft:
        """
        Rewrite a single page using the text of all earlier pages as context.
        """
        target = _find_page(page_number, pages)
        previous = [
            page.text
            for page in sorted(pages, key=lambda item: item.page_number)
            if page.page_number < page_number
        ]
        text = self._text_generator.regenerate_page_text(
            self._context,
            page_number,
            len(pages),
            previous_pages=previous,
            custom_instruction=custom_instruction,
        )
        logger.info("Regenerated page %d of '%s'.", page_number, self._context.title)
        return target.with_generated_text(text)

    @staticmethod
    def apply_page(
        updated_page: StoryPageDraft,
        pages: Sequence[StoryPageDraft],
    ) -> list[StoryPageDraft]:
        _find_page(updated_page.page_number, pages)
        return [
            updated_page if page.page_number == updated_page.page_number else page
            for page in pages
        ]

    def edit_page(
        self,
        page_number: int,
        pages: Sequence[StoryPageDraft],
        text: str,
    ) -> list[StoryPageDraft]:
        """Record a direct user edit; the edited page is flagged ``is_edited``."""
        if not text or not text.strip():
            raise ValueError("Edited page text must not be empty.")
        target = _find_page(page_number, pages)
        return self.apply_page(target.with_user_edit(text.strip()), pages)

    def regenerate_illustration(
        self,
        page_number: int,
        pages: Sequence[StoryPageDraft],
        mappings: Sequence[CharacterMapping],
        scene: SceneContext,
        anchor: "ReferenceContext | None",
    ) -> "GenerationOutcome":
        """
        Produce a fresh illustration for one page against an existing page-1 anchor.
        """
        if self._illustration_controller is None:
            raise RuntimeError("No illustration controller was configured for regeneration.")

        ordered = sorted(pages, key=lambda item: item.page_number)
        target = _find_page(page_number, ordered)
        narrative = build_narrative_context(
            ordered,
            ordered.index(target),
            concept=self._context.concept,
            tone=self._context.style.tone,
        )
        return self._illustration_controller.generate_page(
            target,
            mappings,
            scene,
            narrative,
            story_id=self._context.story_id,
            reference_context=anchor,
        )

    def refine_illustration(
        self,
        page_number: int,
        outcome: "GenerationOutcome",
        mappings: Sequence[CharacterMapping],
        instruction: str,
        previous_refinements: Sequence[str] = (),
        anchor: "ReferenceContext | None" = None,
    ) -> "GenerationOutcome":
        """
        Apply a free-text edit to a page's current illustration.

        ``previous_refinements`` lists the instructions already applied to this
        page, oldest first. Only real illustrations can be refined; a fallback
        must be regenerated instead.
        """
        if self._illustration_controller is None:
            raise RuntimeError("No illustration controller was configured for regeneration.")
        if not isinstance(outcome, ImageOutcome):
            raise ValueError(
                f"Page {page_number} has no illustration to refine; regenerate it instead."
            )

        refined = self._illustration_controller.refine_page(
            page_number,
            outcome.as_reference_image(label=f"page {page_number} illustration"),
            mappings,
            instruction,
            story_id=self._context.story_id,
            previous_refinements=previous_refinements,
            reference_context=anchor,
        )
        logger.info(
            "Refined page %d of '%s' after %d earlier refinement(s).",
            page_number,
            self._context.title,
            len(previous_refinements),
        )
        return refined


def _find_page(page_number: int, pages: Sequence[StoryPageDraft]) -> StoryPageDraft:
    for page in pages:
        if page.page_number == page_number:
            return page
    raise ValueError(f"Page {page_number} is not part of this story.")
