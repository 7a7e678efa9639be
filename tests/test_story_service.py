"""
Unit tests for story text prompts, parsing, and the text generator.
"""

import pytest
from conftest import FakeCompletion

from glp_storybook.common import MODEL_NETWORK_ERROR, StorybookError
from glp_storybook.story_generation.prompting import build_page_prompt, build_story_prompt
from glp_storybook.story_generation.story_service import (
    StoryTextGenerator,
    clean_page_text,
    parse_story_pages,
)


class TestParseStoryPages:
    def test_page_markers(self):
        text = (
            "Title: Maya Shares\n"
            "Page 1: Maya finds a ball.\n"
            "Page 2: Alice wants to play.\n"
            "Page 3: They play together."
        )

        assert parse_story_pages(text, 3) == [
            "Maya finds a ball.",
            "Alice wants to play.",
            "They play together.",
        ]

    def test_extra_pages_are_trimmed(self):
        text = "\n".join(f"Page {n}: Maya does thing number {n}." for n in range(1, 6))

        assert len(parse_story_pages(text, 3)) == 3

    def test_line_fallback_skips_titles_and_labels(self):
        text = (
            "Maya learns about sharing\n"
            "\n"
            "1.\n"
            "Maya finds a shiny red ball under the old oak tree.\n"
            "Alice comes over and asks if she can play with it."
        )

        assert parse_story_pages(text, 3) == [
            "Maya finds a shiny red ball under the old oak tree.",
            "Alice comes over and asks if she can play with it.",
        ]

    def test_clean_page_text(self):
        assert clean_page_text('Page 4: "Maya smiles."') == "Maya smiles."
        assert clean_page_text("**Page 2:** Maya waves.") == "Maya waves."


class TestStoryPrompts:
    def test_story_prompt_includes_style_and_names(self, story_context):
        prompt = build_story_prompt(story_context, 5, custom_instruction="make it funnier")

        assert "Number of Pages: 5" in prompt.user
        assert "All Characters: Maya, Alice" in prompt.user
        assert "One simple sentence per page" in prompt.user
        assert "Tone: playful" in prompt.user
        assert "Additional instructions: make it funnier" in prompt.user
        assert [m["role"] for m in prompt.as_messages()] == ["system", "user"]

    def test_page_prompt_lists_previous_pages(self, story_context):
        prompt = build_page_prompt(
            story_context, 3, 5, previous_pages=["First page.", "Second page."]
        )

        assert "Write page 3 of 5" in prompt.user
        assert "Page 1: First page." in prompt.user
        assert "Page 2: Second page." in prompt.user


class TestStoryTextGenerator:
    def test_generate_story_text(self):
        completion = FakeCompletion(["Page 1: Maya wakes up.\nPage 2: Maya shares her toast."])
        generator = StoryTextGenerator(model="test/model", api_key="k", completion_fn=completion)

        pages = generator.generate_story_text("Maya Shares", "sharing", ["Maya"], 2)

        assert pages == ["Maya wakes up.", "Maya shares her toast."]
        call = completion.calls[0]
        assert call["model"] == "test/model"
        assert call["api_key"] == "k"
        assert call["messages"][0]["role"] == "system"

    def test_missing_pages_requested_individually(self):
        completion = FakeCompletion(
            ["Page 1: Maya wakes up.", "Page 2: Maya shares her toast with Alice."]
        )
        generator = StoryTextGenerator(completion_fn=completion)

        pages = generator.generate_story_text("Maya Shares", "sharing", ["Maya", "Alice"], 2)

        assert pages == ["Maya wakes up.", "Maya shares her toast with Alice."]
        assert "Write page 2 of 2" in completion.calls[1]["messages"][1]["content"]

    def test_failed_continuation_uses_stock_page(self):
        completion = FakeCompletion(["Page 1: Maya wakes up.", RuntimeError("connection reset")])
        generator = StoryTextGenerator(completion_fn=completion)

        pages = generator.generate_story_text("Maya Shares", "sharing", ["Maya"], 2)

        assert pages[1].startswith("Maya continued their journey")

    def test_model_failure_is_classified(self):
        generator = StoryTextGenerator(completion_fn=FakeCompletion([ConnectionError("network down")]))

        with pytest.raises(StorybookError) as exc_info:
            generator.generate_story_text("Maya Shares", "sharing", ["Maya"], 2)

        assert exc_info.value.code == MODEL_NETWORK_ERROR
        assert exc_info.value.retryable

    def test_page_count_must_be_positive(self):
        with pytest.raises(ValueError):
            StoryTextGenerator(completion_fn=FakeCompletion([])).generate_story_text(
                "T", "sharing", ["Maya"], 0
            )

    def test_generic_child_reference_replaced(self):
        completion = FakeCompletion(["Page 1: The child finds a ball.\nPage 2: the child shares it."])
        generator = StoryTextGenerator(completion_fn=completion)

        pages = generator.generate_story_text("T", "sharing", [], 2, child_name="Maya")

        assert pages == ["Maya finds a ball.", "Maya shares it."]

    def test_regenerate_page_text(self, story_context):
        completion = FakeCompletion(['Page 2: "Alice and Maya build a fort."'])
        generator = StoryTextGenerator(completion_fn=completion)

        text = generator.regenerate_page_text(
            story_context, 2, 3, previous_pages=["Maya wakes up."], custom_instruction="add a dog"
        )

        assert text == "Alice and Maya build a fort."
        assert "Specific instructions: add a dog" in completion.calls[0]["messages"][1]["content"]
