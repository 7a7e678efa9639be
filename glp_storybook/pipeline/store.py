"""
Character lookup and story request loading.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence

import yaml

from glp_storybook.story_generation.models import (
    Character,
    ChildProfile,
    StoryContext,
    StoryPageDraft,
)

DEFAULT_PAGE_COUNT = 5


class CharacterStore(Protocol):
    def fetch_characters(self, ids: Sequence[str]) -> list[Character]:
        ...


class InMemoryCharacterStore:
    """
    Serves characters from a fixed collection, keyed by id.

    Unknown ids are skipped; the allocator reports them.
    """

    def __init__(self, characters: Iterable[Character] = ()) -> None:
        self._characters: dict[str, Character] = {}
        for character in characters:
            self.add(character)

    def add(self, character: Character) -> None:
        self._characters[character.id] = character

    def fetch_characters(self, ids: Sequence[str]) -> list[Character]:
        return [self._characters[identifier] for identifier in ids if identifier in self._characters]

    def __len__(self) -> int:
        return len(self._characters)


@dataclass(frozen=True)
class StoryRequest:
    """
    Everything needed to create one story: context, cast, and optionally the page texts.
    """

    context: StoryContext
    selected_ids: tuple[str, ...] = ()
    child: ChildProfile | None = None
    characters: tuple[Character, ...] = ()
    pages: tuple[StoryPageDraft, ...] = ()
    page_count: int = DEFAULT_PAGE_COUNT


def story_request_from_mapping(data: Mapping[str, Any]) -> StoryRequest:
    """
    Build a :class:`StoryRequest` from a dict-like object (e.g., parsed JSON/YAML).
    """
    if not isinstance(data, Mapping):
        raise ValueError("Story request must be a mapping.")

    story_data = data.get("story") or data
    context = StoryContext.from_mapping(story_data)

    child_data = data.get("child") or data.get("child_profile")
    child = ChildProfile.from_mapping(child_data) if child_data else None
    if child is not None and child.include_as_character and child.name and not context.child_name:
        context = replace(context, child_name=child.name)

    characters = tuple(Character.from_mapping(entry) for entry in data.get("characters") or [])
    raw_selection = data.get("selected_character_ids") or data.get("selected_ids")
    if raw_selection is None:
        selected_ids = tuple(character.id for character in characters)
    else:
        selected_ids = tuple(str(item).strip() for item in raw_selection)

    pages = tuple(
        StoryPageDraft.from_mapping(entry, page_number=index)
        if isinstance(entry, Mapping)
        else StoryPageDraft(page_number=index, text=str(entry))
        for index, entry in enumerate(data.get("pages") or [], start=1)
    )

    page_count = int(data.get("page_count") or len(pages) or DEFAULT_PAGE_COUNT)
    if page_count < 1:
        raise ValueError("page_count must be at least 1.")

    return StoryRequest(
        context=context,
        selected_ids=selected_ids,
        child=child,
        characters=characters,
        pages=pages,
        page_count=page_count,
    )


def load_story_request(path: Path | str) -> StoryRequest:
    """
    Load a story request from a YAML or JSON file.
    """
    return story_request_from_mapping(_load_mapping_file(Path(path)))


def _load_mapping_file(path: Path) -> Mapping[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(text)
    if path.suffix.lower() == ".json":
        return json.loads(text)
    raise ValueError("Unsupported story request format. Use YAML or JSON.")
