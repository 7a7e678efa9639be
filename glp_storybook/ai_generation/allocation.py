"""
Assignment of the image model's reference slots to story characters.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from glp_storybook.common import AllocationError
from glp_storybook.story_generation.models import (
    MAX_REFERENCE_IMAGES,
    NO_AVATAR_INDEX,
    ROLE_PRIMARY,
    ROLE_SECONDARY,
    ROLE_SUPPORTING,
    Character,
    CharacterMapping,
    ChildProfile,
)

logger = logging.getLogger(__name__)

CHILD_APPEARANCE = (
    "{name} has warm, child-friendly features that embody curiosity and joy. "
    "Style: age-appropriate design that represents the learning journey. "
    "Key features: bright, curious eyes; friendly, approachable demeanor; "
    "expressive gestures; natural, engaging personality."
)

GENERIC_APPEARANCE = (
    "{name} has distinctive, warm and expressive features suitable for children's "
    "storytelling, with a consistent color scheme and a memorable, child-appropriate design."
)


def describe_character(character: Character) -> str:
    """
    Build the textual appearance contract used when no avatar controls a character.
    """
    profile = character.visual_profile
    if not profile.appearance:
        return GENERIC_APPEARANCE.format(name=character.name)

    parts = [profile.appearance.rstrip(".") + "."]
    if profile.style:
        parts.append(f"Style: {profile.style.rstrip('.')}.")
    if profile.key_features:
        parts.append(f"Key features: {'; '.join(profile.key_features)}.")
    return " ".join(parts)


def role_for_position(position: int) -> str:
    if position == 0:
        return ROLE_PRIMARY
    if position == 1:
        return ROLE_SECONDARY
    return ROLE_SUPPORTING


class CharacterAllocator:
    """
    Distributes at most ``slot_budget`` avatar reference slots across characters.

    Allocation is deterministic: the child (when cast) always takes slot 0 and
    the primary role, then selected characters with avatars take the remaining
    slots in selection order. Everyone else is described in text.
    """

    def __init__(self, *, slot_budget: int = MAX_REFERENCE_IMAGES) -> None:
        if not 0 <= slot_budget <= MAX_REFERENCE_IMAGES:
            raise ValueError(
                f"slot_budget must be between 0 and {MAX_REFERENCE_IMAGES}, received {slot_budget}."
            )
        self._slot_budget = slot_budget

    def allocate(
        self,
        characters: Iterable[Character],
        selected_ids: Sequence[str],
        child_profile: ChildProfile | None = None,
    ) -> list[CharacterMapping]:
        selected = self._resolve_selection(characters, selected_ids)

        mappings: list[CharacterMapping] = []
        next_slot = 0

        if child_profile is not None and child_profile.include_as_character:
            if not child_profile.name:
                raise AllocationError(
                    "A child profile included as a character must have a name.",
                    details=child_profile.id,
                )
            mappings.append(
                CharacterMapping(
                    character_id=child_profile.id,
                    name=child_profile.name,
                    role=ROLE_PRIMARY,
                    avatar_index=next_slot if self._slot_budget else NO_AVATAR_INDEX,
                    visual_description=CHILD_APPEARANCE.format(name=child_profile.name),
                )
            )
            next_slot = min(next_slot + 1, self._slot_budget)

        for character in selected:
            avatar_index = NO_AVATAR_INDEX
            if character.has_avatar and next_slot < self._slot_budget:
                avatar_index = next_slot
                next_slot += 1
            elif character.has_avatar:
                logger.info(
                    "Reference slots exhausted; %s will be described in text only.",
                    character.name,
                )

            mappings.append(
                CharacterMapping(
                    character_id=character.id,
                    name=character.name,
                    role=role_for_position(len(mappings)),
                    avatar_index=avatar_index,
                    visual_description=describe_character(character),
                    avatar_url=character.avatar_url if avatar_index >= 0 else None,
                )
            )

        logger.debug(
            "Allocated %d/%d reference slots across %d characters.",
            next_slot,
            self._slot_budget,
            len(mappings),
        )
        return mappings

    @staticmethod
    def _resolve_selection(
        characters: Iterable[Character],
        selected_ids: Sequence[str],
    ) -> list[Character]:
        by_id: dict[str, Character] = {}
        for character in characters:
            by_id.setdefault(character.id, character)

        seen: set[str] = set()
        resolved: list[Character] = []
        for identifier in selected_ids:
            if identifier in seen:
                raise AllocationError(
                    f"Character {identifier!r} was selected more than once.",
                    details=list(selected_ids),
                )
            seen.add(identifier)

            character = by_id.get(identifier)
            if character is None:
                raise AllocationError(
                    f"Selected character {identifier!r} is not available.",
                    details=sorted(by_id),
                )
            resolved.append(character)
        return resolved


def allocate_characters(
    characters: Iterable[Character],
    selected_ids: Sequence[str],
    child_profile: ChildProfile | None = None,
) -> list[CharacterMapping]:
    """Convenience wrapper around :class:`CharacterAllocator` with the default budget."""
    return CharacterAllocator().allocate(characters, selected_ids, child_profile)
