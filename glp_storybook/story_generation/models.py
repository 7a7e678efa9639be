"""
Structured representations of characters, story pages, and story settings.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Sequence

from glp_storybook.common.errors import PromptError

ROLE_PRIMARY = "primary"
ROLE_SECONDARY = "secondary"
ROLE_SUPPORTING = "supporting"

NO_AVATAR_INDEX = -1
MAX_REFERENCE_IMAGES = 3

DENSITY_OPTIONS = ("one-word", "one-sentence", "multiple-sentences")
NARRATIVE_OPTIONS = ("first-person", "third-person")
COMPLEXITY_OPTIONS = ("very-simple", "simple", "moderate", "complex")
COMMUNICATION_STYLE_OPTIONS = ("visual-heavy", "balanced", "text-heavy")
TONE_OPTIONS = ("playful", "gentle", "encouraging", "educational")
VISUAL_MODES = ("animated", "real")


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def _normalize_string_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()

    if isinstance(value, str):
        parts = [item.strip() for item in value.replace("\r", "\n").replace("\n", ",").split(",")]
    elif isinstance(value, Sequence):
        parts = [str(item).strip() for item in value if item is not None]
    else:
        raise TypeError("Expected a string or a sequence of strings.")

    return tuple(filter(None, parts))


def _coerce_choice(value: Any, choices: Sequence[str], *, name: str) -> str | None:
    text = _coerce_optional_str(value)
    if text is None:
        return None

    normalized = text.lower().replace("_", "-").replace(" ", "-")
    if normalized not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}; got {value!r}.")
    return normalized


@dataclass(frozen=True)
class VisualProfile:
    """
    Visual consistency notes stored alongside a character.
    """

    appearance: str | None = None
    style: str | None = None
    personality: str | None = None
    key_features: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "VisualProfile":
        if not data:
            return cls()
        return cls(
            appearance=_coerce_optional_str(data.get("appearance")),
            style=_coerce_optional_str(data.get("style")),
            personality=_coerce_optional_str(data.get("personality")),
            key_features=_normalize_string_list(
                data.get("key_features") or data.get("keyFeatures")
            ),
        )


@dataclass(frozen=True)
class Character:
    """
    A character that can appear in a story.

    Attributes
    ----------
    id:
        Stable identifier used by selections.
    name:
        Display name used in story text and prompts.
    avatar_url:
        Optional fetchable reference image (URL, data URL, or local path).
    visual_profile:
        Appearance notes used when no avatar can be attached.
    kind:
        ``"user"`` for parent-created characters, ``"gestalts"`` for the built-in cast.
    """

    id: str
    name: str
    avatar_url: str | None = None
    visual_profile: VisualProfile = field(default_factory=VisualProfile)
    kind: str = "user"

    @property
    def has_avatar(self) -> bool:
        return bool(self.avatar_url and self.avatar_url.strip())

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Character":
        """
        Build a character from a dict-like object (e.g., parsed JSON/YAML).
        """
        identifier = _coerce_optional_str(data.get("id"))
        name = _coerce_optional_str(data.get("name"))
        if identifier is None or name is None:
            raise ValueError(f"Character entries require non-empty 'id' and 'name': {data!r}")

        return cls(
            id=identifier,
            name=name,
            avatar_url=_coerce_optional_str(data.get("avatar_url") or data.get("avatarUrl")),
            visual_profile=VisualProfile.from_mapping(
                data.get("visual_profile") or data.get("visualProfile")
            ),
            kind=_coerce_optional_str(data.get("kind") or data.get("type")) or "user",
        )


@dataclass(frozen=True)
class ChildProfile:
    """The child a story is written for; optionally cast as the hero."""

    id: str
    name: str
    include_as_character: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ChildProfile":
        include = data.get("include_as_character", data.get("includeAsCharacter", True))
        return cls(
            id=str(data.get("id") or "child").strip(),
            name=str(data.get("name") or "").strip(),
            include_as_character=bool(include),
        )


@dataclass(frozen=True)
class CharacterMapping:
    """
    How one character is represented in image generation requests.

    ``avatar_index`` is the character's reference slot (0-2) or ``-1`` when the
    character is controlled by ``visual_description`` alone.
    ``position_in_reference`` is only known once page 1 has been generated.
    """

    character_id: str
    name: str
    role: str
    avatar_index: int
    visual_description: str
    avatar_url: str | None = None
    position_in_reference: str | None = None

    @property
    def uses_avatar(self) -> bool:
        return self.avatar_index >= 0 and bool(self.avatar_url)

    def with_position(self, position: str | None) -> "CharacterMapping":
        return replace(self, position_in_reference=position)

    def as_dict(self) -> dict[str, Any]:
        return {
            "character_id": self.character_id,
            "name": self.name,
            "role": self.role,
            "avatar_index": self.avatar_index,
            "visual_description": self.visual_description,
            "avatar_url": self.avatar_url,
            "position_in_reference": self.position_in_reference,
        }


@dataclass(frozen=True)
class VisualContext:
    """Optional per-page staging hints supplied alongside the page text."""

    characters: tuple[str, ...] = ()
    setting: str | None = None
    action: str | None = None
    previous_page_visual_notes: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "VisualContext | None":
        if not data:
            return None
        return cls(
            characters=_normalize_string_list(data.get("characters")),
            setting=_coerce_optional_str(data.get("setting")),
            action=_coerce_optional_str(data.get("action")),
            previous_page_visual_notes=_coerce_optional_str(
                data.get("previous_page_visual_notes") or data.get("previousPageVisualNotes")
            ),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "characters": list(self.characters),
            "setting": self.setting,
            "action": self.action,
            "previous_page_visual_notes": self.previous_page_visual_notes,
        }


@dataclass(frozen=True)
class StoryPageDraft:
    """
    Text of one story page before (or after) illustration.

    ``is_edited`` is only ever set by :meth:`with_user_edit`; any AI generated
    text produces a draft with ``is_edited=False``.
    """

    page_number: int
    text: str
    is_edited: bool = False
    visual_context: VisualContext | None = None

    def with_user_edit(self, text: str) -> "StoryPageDraft":
        return replace(self, text=text, is_edited=True)

    def with_generated_text(self, text: str) -> "StoryPageDraft":
        return replace(self, text=text, is_edited=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, page_number: int) -> "StoryPageDraft":
        return cls(
            page_number=int(data.get("page_number") or data.get("pageNumber") or page_number),
            text=str(data.get("text") or ""),
            is_edited=bool(data.get("is_edited") or data.get("isEdited")),
            visual_context=VisualContext.from_mapping(
                data.get("visual_context") or data.get("visualContext")
            ),
        )

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "page_number": self.page_number,
            "text": self.text,
            "is_edited": self.is_edited,
        }
        if self.visual_context is not None:
            payload["visual_context"] = self.visual_context.as_dict()
        return payload


def drafts_from_texts(texts: Sequence[str]) -> list[StoryPageDraft]:
    """Number freshly generated page texts from 1."""
    return [
        StoryPageDraft(page_number=index, text=text, is_edited=False)
        for index, text in enumerate(texts, start=1)
    ]


def validate_pages(pages: Sequence[StoryPageDraft]) -> None:
    """
    Raise :class:`PromptError` unless pages are numbered 1..N in order with text.
    """
    for expected, page in enumerate(pages, start=1):
        if page.page_number != expected:
            raise PromptError(
                f"Pages must be numbered contiguously from 1; expected page {expected}, "
                f"found page {page.page_number}.",
                details=[item.page_number for item in pages],
            )
        if not page.text or not page.text.strip():
            raise PromptError(f"Page {page.page_number} has no text to illustrate.")


@dataclass(frozen=True)
class StoryStyleOptions:
    """
    Advanced story settings chosen by the parent in the story wizard.
    """

    density: str | None = None
    narrative: str | None = None
    complexity: str | None = None
    communication_style: str | None = None
    tone: str | None = None
    goal: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "StoryStyleOptions":
        if not data:
            return cls()
        return cls(
            density=_coerce_choice(data.get("density"), DENSITY_OPTIONS, name="density"),
            narrative=_coerce_choice(data.get("narrative"), NARRATIVE_OPTIONS, name="narrative"),
            complexity=_coerce_choice(
                data.get("complexity"), COMPLEXITY_OPTIONS, name="complexity"
            ),
            communication_style=_coerce_choice(
                data.get("communication_style") or data.get("communicationStyle"),
                COMMUNICATION_STYLE_OPTIONS,
                name="communication_style",
            ),
            tone=_coerce_choice(data.get("tone"), TONE_OPTIONS, name="tone"),
            goal=_coerce_optional_str(data.get("goal")),
        )


@dataclass(frozen=True)
class StoryContext:
    """
    Everything the pipeline needs to know about the story being generated.

    Passed explicitly to every component instead of being looked up from the
    signed-in user or the active child profile.
    """

    story_id: str
    title: str
    concept: str
    description: str = ""
    child_name: str | None = None
    character_names: tuple[str, ...] = ()
    style: StoryStyleOptions = field(default_factory=StoryStyleOptions)
    visual_mode: str = "animated"

    @property
    def main_character(self) -> str:
        if self.child_name:
            return self.child_name
        if self.character_names:
            return self.character_names[0]
        return "the main character"

    @property
    def all_character_names(self) -> tuple[str, ...]:
        names = list(self.character_names)
        if self.child_name and self.child_name not in names:
            names.insert(0, self.child_name)
        return tuple(names) or (self.main_character,)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryContext":
        title = _coerce_optional_str(data.get("title"))
        concept = _coerce_optional_str(data.get("concept"))
        if title is None or concept is None:
            raise ValueError("Story requests must include non-empty 'title' and 'concept'.")

        visual_mode = _coerce_choice(
            data.get("visual_mode") or data.get("story_mode"), VISUAL_MODES, name="visual_mode"
        )
        return cls(
            story_id=_coerce_optional_str(data.get("story_id") or data.get("id")) or concept,
            title=title,
            concept=concept,
            description=_coerce_optional_str(data.get("description")) or "",
            child_name=_coerce_optional_str(data.get("child_name")),
            character_names=_normalize_string_list(data.get("character_names")),
            style=StoryStyleOptions.from_mapping(data.get("advanced") or data.get("style")),
            visual_mode=visual_mode or "animated",
        )
