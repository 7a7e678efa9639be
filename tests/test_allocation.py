"""
Unit tests for reference slot allocation.

Tests cover:
- Slot budget and role assignment for mixed avatar/no-avatar casts
- Character descriptions used when no avatar is attached
- Rejection of invalid selections
"""

import pytest

from glp_storybook.ai_generation.allocation import (
    GENERIC_APPEARANCE,
    CharacterAllocator,
    allocate_characters,
    describe_character,
)
from glp_storybook.common import ALLOCATION_ERROR, AllocationError
from glp_storybook.story_generation.models import Character, ChildProfile, VisualProfile


def _summary(mappings):
    return [(m.name, m.role, m.avatar_index) for m in mappings]


class TestCharacterAllocator:
    """Tests for CharacterAllocator.allocate."""

    def test_child_plus_mixed_cast(self, cast, child):
        """The child takes slot 0; avatars fill the rest in selection order."""
        mappings = allocate_characters(cast, ["alice", "bob", "charlie", "dana"], child)

        assert _summary(mappings) == [
            ("Maya", "primary", 0),
            ("Alice", "secondary", 1),
            ("Bob", "supporting", 2),
            ("Charlie", "supporting", -1),
            ("Dana", "supporting", -1),
        ]

    def test_without_child_first_selection_is_primary(self, cast):
        mappings = allocate_characters(cast, ["charlie", "dana", "alice", "bob"])

        assert _summary(mappings) == [
            ("Charlie", "primary", -1),
            ("Dana", "secondary", 0),
            ("Alice", "supporting", 1),
            ("Bob", "supporting", 2),
        ]

    def test_never_more_than_three_slots(self, child):
        characters = [
            Character(id=f"c{i}", name=f"Friend {i}", avatar_url=f"https://img.test/{i}.png")
            for i in range(6)
        ]
        mappings = allocate_characters(characters, [c.id for c in characters], child)

        slotted = [m for m in mappings if m.avatar_index >= 0]
        assert len(slotted) == 3
        assert sorted(m.avatar_index for m in slotted) == [0, 1, 2]

    def test_exactly_one_primary(self, cast, child):
        mappings = allocate_characters(cast, ["dana", "alice"], child)

        assert [m.role for m in mappings].count("primary") == 1
        assert mappings[0].name == "Maya"

    def test_avatar_url_only_kept_for_slotted_characters(self, cast, child):
        mappings = allocate_characters(cast, ["alice", "bob", "charlie", "dana"], child)
        by_name = {m.name: m for m in mappings}

        assert by_name["Alice"].avatar_url == "https://img.test/alice.png"
        assert by_name["Alice"].uses_avatar
        assert by_name["Dana"].avatar_url is None
        assert not by_name["Dana"].uses_avatar
        # The child holds slot 0 without an image of its own.
        assert not by_name["Maya"].uses_avatar

    def test_child_excluded_from_cast(self, cast):
        child = ChildProfile(id="child-1", name="Maya", include_as_character=False)
        mappings = allocate_characters(cast, ["alice"], child)

        assert _summary(mappings) == [("Alice", "primary", 0)]

    def test_empty_selection(self, cast):
        assert allocate_characters(cast, []) == []

    def test_zero_budget_describes_everyone_in_text(self, cast, child):
        mappings = CharacterAllocator(slot_budget=0).allocate(cast, ["alice", "bob"], child)

        assert all(m.avatar_index == -1 for m in mappings)

    def test_budget_above_three_rejected(self):
        with pytest.raises(ValueError):
            CharacterAllocator(slot_budget=4)


class TestInvalidSelection:
    """Tests for selections the allocator refuses."""

    def test_unknown_id(self, cast):
        with pytest.raises(AllocationError) as exc_info:
            allocate_characters(cast, ["alice", "zed"])

        assert exc_info.value.code == ALLOCATION_ERROR
        assert "zed" in exc_info.value.message

    def test_duplicate_id(self, cast):
        with pytest.raises(AllocationError):
            allocate_characters(cast, ["alice", "alice"])

    def test_child_without_name(self, cast):
        with pytest.raises(AllocationError):
            allocate_characters(cast, ["alice"], ChildProfile(id="child-1", name=""))


class TestDescribeCharacter:
    """Tests for describe_character."""

    def test_full_visual_profile(self):
        character = Character(
            id="leo",
            name="Leo",
            visual_profile=VisualProfile(
                appearance="A small orange lion cub",
                style="soft watercolor",
                key_features=("fluffy mane", "green bandana"),
            ),
        )

        assert describe_character(character) == (
            "A small orange lion cub. Style: soft watercolor. "
            "Key features: fluffy mane; green bandana."
        )

    def test_generic_sentence_without_profile(self):
        character = Character(id="pip", name="Pip")

        assert describe_character(character) == GENERIC_APPEARANCE.format(name="Pip")
