"""
Continuity helpers to keep storybook illustrations consistent across pages.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from glp_storybook.ai_generation.interpreter import GenerationOutcome, ImageOutcome
from glp_storybook.ai_generation.prompting import ReferenceContext, default_reference_position
from glp_storybook.story_generation.models import CharacterMapping

from .identity import ReferenceAnalysis

logger = logging.getLogger(__name__)


class IllustrationContinuityState:
    """
    Tracks the page-1 anchor and character positions while pages render in order.

    Before page 1 is recorded there is no reference context and mappings carry
    no positions. Recording page 1 fixes both for the rest of the run.
    """

    def __init__(self, mappings: Sequence[CharacterMapping]) -> None:
        self._mappings: tuple[CharacterMapping, ...] = tuple(mappings)
        self._reference: ReferenceContext | None = None

    @property
    def mappings(self) -> tuple[CharacterMapping, ...]:
        return self._mappings

    @property
    def reference_context(self) -> ReferenceContext | None:
        return self._reference

    @property
    def has_anchor(self) -> bool:
        return self._reference is not None

    def record_reference_page(
        self,
        outcome: GenerationOutcome,
        *,
        analysis: ReferenceAnalysis | None = None,
    ) -> tuple[CharacterMapping, ...]:
        """
        Fix the anchor image and every character's position from page 1's outcome.

        Vision analysis wins over interpreter hints; the role placement fills any
        gap. The analysis' lighting, palette and composition travel with the
        anchor. A fallback leaves no anchor image, so later pages rely on text alone.
        """
        if isinstance(outcome, ImageOutcome):
            hints: Mapping[str, str] = outcome.position_hints
            if analysis is not None:
                self._reference = ReferenceContext(
                    image=outcome.as_reference_image(),
                    source_page=1,
                    lighting=analysis.lighting,
                    color_palette=tuple(analysis.color_palette),
                    background_style=analysis.background_style,
                    scene_description=analysis.scene_description,
                )
            else:
                self._reference = ReferenceContext(image=outcome.as_reference_image(), source_page=1)
        else:
            self._reference = ReferenceContext(image=None, source_page=1)
            hints = {}
            analysis = None

        analysed: Mapping[str, str] = analysis.character_positions if analysis else {}
        self._mappings = tuple(
            mapping.with_position(
                analysed.get(mapping.character_id)
                or hints.get(mapping.character_id)
                or default_reference_position(mapping)
            )
            for mapping in self._mappings
        )

        logger.info(
            "Recorded page-1 reference (%s) for %d character(s).",
            "image" if self._reference.has_image else "text only",
            len(self._mappings),
        )
        return self._mappings
