"""
Orchestrates the storybook pipeline from story request to text and illustrations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator, Protocol, Sequence

import yaml

from glp_storybook.ai_generation import (
    CharacterAllocator,
    FallbackOutcome,
    GenerationOutcome,
    GenerationRequest,
    ImageOutcome,
    PromptComposer,
    ReferenceContext,
    ReferenceImage,
    ResponseInterpreter,
)
from glp_storybook.ai_generation.prompting import primary_character_name
from glp_storybook.story_generation import (
    CharacterMapping,
    StoryContext,
    StoryPageDraft,
    StoryTextGenerator,
    drafts_from_texts,
    validate_pages,
)
from glp_storybook.story_generation.scene_builder import (
    NarrativeContext,
    SceneContext,
    build_narrative_context,
    build_scene_context,
)

from .continuity import IllustrationContinuityState
from .identity import ReferenceImageAnalyzer
from .store import CharacterStore, InMemoryCharacterStore, StoryRequest

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]
CancelCheck = Callable[[], bool]


class ImageGenerator(Protocol):
    def generate_image(self, request: GenerationRequest) -> Any:
        ...


@dataclass(frozen=True)
class PageResult:
    """The final, recorded state of one page."""

    page_number: int
    text: str
    outcome: GenerationOutcome

    @property
    def is_fallback(self) -> bool:
        return isinstance(self.outcome, FallbackOutcome)

    def to_dict(self) -> dict[str, Any]:
        return {
            "page_number": self.page_number,
            "text": self.text,
            "outcome": self.outcome.as_dict(),
        }


@dataclass
class GenerationRun:
    """
    Page results plus the mappings as they stood at the end of the run.

    Unpacks as ``results, mappings``.
    """

    results: list[PageResult]
    mappings: tuple[CharacterMapping, ...]
    reference: ReferenceContext | None = None
    cancelled: bool = False

    def __iter__(self) -> Iterator[Any]:
        yield self.results
        yield self.mappings


@dataclass
class StoryPackage:
    """Aggregated output of the storybook pipeline."""

    context: StoryContext
    pages: list[PageResult]
    mappings: tuple[CharacterMapping, ...]
    scene: SceneContext | None = None
    cancelled: bool = False
    drafts: list[StoryPageDraft] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "story": {
                "story_id": self.context.story_id,
                "title": self.context.title,
                "concept": self.context.concept,
                "child_name": self.context.child_name,
                "characters": list(self.context.all_character_names),
                "visual_mode": self.context.visual_mode,
            },
            "scene": self.scene.as_dict() if self.scene else None,
            "characters": [mapping.as_dict() for mapping in self.mappings],
            "cancelled": self.cancelled,
            "pages": [page.to_dict() for page in self.pages],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)


class SequentialGenerationController:
    """
    Illustrates a story one page at a time.

    Page 1 is generated from the characters' avatars; its result (image or
    fallback) becomes the reference for every later page. A failed model call
    turns into a fallback outcome and the run carries on.
    """

    def __init__(
        self,
        image_generator: ImageGenerator,
        *,
        composer: PromptComposer | None = None,
        interpreter: ResponseInterpreter | None = None,
        reference_analyzer: ReferenceImageAnalyzer | None = None,
    ) -> None:
        self._image_generator = image_generator
        self._composer = composer or PromptComposer()
        self._interpreter = interpreter or ResponseInterpreter()
        self._reference_analyzer = reference_analyzer

    def run(
        self,
        pages: Sequence[StoryPageDraft],
        mappings: Sequence[CharacterMapping],
        scene: SceneContext,
        context: StoryContext,
        *,
        progress_callback: ProgressCallback | None = None,
        should_cancel: CancelCheck | None = None,
    ) -> GenerationRun:
        pages_list = list(pages)
        validate_pages(pages_list)

        total_pages = len(pages_list)
        state = IllustrationContinuityState(mappings)
        results: list[PageResult] = []
        cancelled = False

        for index, page in enumerate(pages_list):
            if should_cancel is not None and should_cancel():
                cancelled = True
                logger.info("Run cancelled before page %d of %d.", page.page_number, total_pages)
                self._notify(
                    progress_callback,
                    "run:cancelled",
                    current_page=len(results),
                    total_pages=total_pages,
                )
                break

            self._notify(
                progress_callback,
                "page:generating",
                current_page=page.page_number,
                total_pages=total_pages,
                message=f"Creating illustration for page {page.page_number}...",
            )
            narrative = build_narrative_context(
                pages_list, index, concept=context.concept, tone=context.style.tone
            )
            outcome = self.generate_page(
                page,
                state.mappings,
                scene,
                narrative,
                story_id=context.story_id,
                reference_context=state.reference_context,
            )

            if page.page_number == 1:
                analysis = None
                if isinstance(outcome, ImageOutcome) and self._reference_analyzer is not None:
                    analysis = self._reference_analyzer.analyze(
                        outcome.as_reference_image(), state.mappings
                    )
                state.record_reference_page(outcome, analysis=analysis)

            results.append(PageResult(page_number=page.page_number, text=page.text, outcome=outcome))

            if isinstance(outcome, FallbackOutcome):
                self._notify(
                    progress_callback,
                    "page:fallback",
                    current_page=page.page_number,
                    category=outcome.category,
                    seed=outcome.seed,
                )
            logger.info("Recorded page %d of %d (%s).", page.page_number, total_pages, outcome.kind)
            self._notify(
                progress_callback,
                "page:recorded",
                current_page=page.page_number,
                total_pages=total_pages,
                percent=round(page.page_number / total_pages * 100),
                message=f"Page {page.page_number} of {total_pages} ready",
            )

        if not cancelled:
            self._notify(
                progress_callback,
                "run:complete",
                total_pages=total_pages,
                fallbacks=sum(1 for result in results if result.is_fallback),
            )

        return GenerationRun(
            results=results,
            mappings=state.mappings,
            reference=state.reference_context,
            cancelled=cancelled,
        )

    def generate_page(
        self,
        page: StoryPageDraft,
        mappings: Sequence[CharacterMapping],
        scene: SceneContext,
        narrative: NarrativeContext,
        *,
        story_id: str,
        reference_context: ReferenceContext | None = None,
    ) -> GenerationOutcome:
        """
        Compose, call the image model once, and interpret the result for one page.

        Prompt and response-format errors propagate; everything the model call
        raises becomes a fallback outcome.
        """
        request = self._composer.compose(page, mappings, scene, narrative, reference_context)
        try:
            response: Any = self._image_generator.generate_image(request)
        except Exception as exc:
            response = exc

        return self._interpreter.interpret(
            response,
            story_id=story_id,
            page_number=page.page_number,
            primary_character_name=primary_character_name(mappings),
            mappings=mappings,
        )

    def refine_page(
        self,
        page_number: int,
        current_image: ReferenceImage,
        mappings: Sequence[CharacterMapping],
        instruction: str,
        *,
        story_id: str,
        previous_refinements: Sequence[str] = (),
        reference_context: ReferenceContext | None = None,
    ) -> GenerationOutcome:
        """
        Edit an existing illustration with a free-text instruction.

        Like :meth:`generate_page`, a failed model call becomes a fallback outcome.
        """
        request = self._composer.compose_refinement(
            page_number,
            current_image,
            mappings,
            instruction,
            previous_refinements=previous_refinements,
            reference_context=reference_context,
        )
        try:
            response: Any = self._image_generator.generate_image(request)
        except Exception as exc:
            response = exc

        outcome = self._interpreter.interpret(
            response,
            story_id=story_id,
            page_number=page_number,
            primary_character_name=primary_character_name(mappings),
        )
        logger.info("Refined page %d (%s).", page_number, outcome.kind)
        return outcome

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)


class StorybookOrchestrator:
    """
    High-level coordinator that chains allocation, story text, and illustration.
    """

    def __init__(
        self,
        *,
        image_generator: ImageGenerator,
        story_generator: StoryTextGenerator | None = None,
        allocator: CharacterAllocator | None = None,
        reference_analyzer: ReferenceImageAnalyzer | None = None,
        composer: PromptComposer | None = None,
    ) -> None:
        self._story_generator = story_generator
        self._allocator = allocator or CharacterAllocator()
        self._image_generator = image_generator
        self._reference_analyzer = reference_analyzer
        self._composer = composer

    def run(
        self,
        request: StoryRequest,
        *,
        store: CharacterStore | None = None,
        progress_callback: ProgressCallback | None = None,
        should_cancel: CancelCheck | None = None,
    ) -> StoryPackage:
        store = store or InMemoryCharacterStore(request.characters)

        self._notify(progress_callback, "characters:allocating", selected=len(request.selected_ids))
        characters = store.fetch_characters(request.selected_ids)
        mappings = self._allocator.allocate(characters, request.selected_ids, request.child)
        context = self._complete_context(request.context, mappings)
        self._notify(
            progress_callback,
            "characters:ready",
            characters=[mapping.name for mapping in mappings],
        )

        drafts = list(request.pages)
        if not drafts:
            self._notify(progress_callback, "story:generating", page_count=request.page_count)
            texts = self._text_generator().generate_for_context(context, request.page_count)
            drafts = drafts_from_texts(texts)
            self._notify(progress_callback, "story:generated", page_count=len(drafts))

        scene = build_scene_context(
            context.concept, context.style.tone, visual_mode=context.visual_mode
        )
        controller = SequentialGenerationController(
            self._image_generator,
            composer=self._composer or PromptComposer(visual_mode=context.visual_mode),
            reference_analyzer=self._reference_analyzer,
        )
        run = controller.run(
            drafts,
            mappings,
            scene,
            context,
            progress_callback=progress_callback,
            should_cancel=should_cancel,
        )

        package = StoryPackage(
            context=context,
            pages=run.results,
            mappings=run.mappings,
            scene=scene,
            cancelled=run.cancelled,
            drafts=drafts,
        )
        self._notify(
            progress_callback,
            "pipeline:complete",
            total_pages=len(package.pages),
            cancelled=run.cancelled,
        )
        return package

    def _text_generator(self) -> StoryTextGenerator:
        if self._story_generator is None:
            self._story_generator = StoryTextGenerator()
        return self._story_generator

    @staticmethod
    def _complete_context(
        context: StoryContext,
        mappings: Sequence[CharacterMapping],
    ) -> StoryContext:
        if context.character_names or not mappings:
            return context
        return replace(context, character_names=tuple(mapping.name for mapping in mappings))

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)
