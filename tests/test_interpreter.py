"""
Unit tests for response interpretation and fallback classification.

Tests cover:
- Keyword classification order
- Success responses as mappings and as SDK-like objects
- Deterministic fallbacks
- Malformed responses
"""

import base64
from types import SimpleNamespace

import pytest
from conftest import image_response

from glp_storybook.ai_generation.allocation import allocate_characters
from glp_storybook.ai_generation.interpreter import (
    FallbackOutcome,
    ImageOutcome,
    ResponseInterpreter,
    classify_error_message,
    error_for_exception,
    extract_position_hints,
)
from glp_storybook.common import (
    MODEL_AUTH_ERROR,
    MODEL_QUOTA_EXCEEDED,
    ResponseFormatError,
    StorybookError,
)
from glp_storybook.story_generation.models import CharacterMapping


def _mapping(character_id, name, role):
    return CharacterMapping(
        character_id=character_id,
        name=name,
        role=role,
        avatar_index=-1,
        visual_description=f"{name} in a yellow raincoat",
    )


class TestClassifyErrorMessage:
    """Tests for classify_error_message."""

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("This feature is not supported for images", "feature-unsupported"),
            ("Quota exceeded for project", "quota-exceeded"),
            ("Rate limit reached", "quota-exceeded"),
            ("Invalid API key provided", "auth-error"),
            ("Unauthorized: auth failed", "auth-error"),
            ("Network unreachable", "network-error"),
            ("Connection reset by peer", "network-error"),
            ("Something odd happened", "generic-error"),
            ("", "generic-error"),
            (None, "generic-error"),
        ],
    )
    def test_categories(self, message, expected):
        assert classify_error_message(message) == expected

    def test_earlier_group_wins(self):
        """Quota is checked before network, feature before everything."""
        assert classify_error_message("connection dropped: quota exceeded") == "quota-exceeded"
        assert classify_error_message("api key lacks the image feature") == "feature-unsupported"

    def test_error_for_exception(self):
        error = error_for_exception(RuntimeError("invalid api key"))

        assert error.code == MODEL_AUTH_ERROR
        assert error.retryable is False
        assert "RuntimeError" in error.details

    def test_error_for_exception_passes_storybook_errors_through(self):
        original = StorybookError.for_model_code(MODEL_QUOTA_EXCEEDED)

        assert error_for_exception(original) is original


class TestInterpretSuccess:
    def test_mapping_response(self):
        outcome = ResponseInterpreter().interpret(
            image_response(b"png-bytes"),
            story_id="sharing",
            page_number=2,
            primary_character_name="Maya",
        )

        assert isinstance(outcome, ImageOutcome)
        assert outcome.kind == "image"
        assert outcome.data == b"png-bytes"
        assert outcome.position_hints == {}

    def test_sdk_object_with_base64_payload(self):
        encoded = base64.b64encode(b"png-bytes").decode("ascii")
        response = SimpleNamespace(
            candidates=[
                SimpleNamespace(
                    content=SimpleNamespace(
                        parts=[SimpleNamespace(inline_data=SimpleNamespace(mime_type="image/jpeg", data=encoded))]
                    ),
                    finish_reason="STOP",
                )
            ]
        )

        outcome = ResponseInterpreter().interpret(
            response, story_id="s", page_number=3, primary_character_name="Maya"
        )

        assert isinstance(outcome, ImageOutcome)
        assert outcome.data == b"png-bytes"
        assert outcome.mime_type == "image/jpeg"

    def test_page_one_hints(self, cast, child):
        mappings = allocate_characters(cast, ["alice", "bob"], child)
        response = image_response(text="Maya: center foreground, waving\n- Alice: left, holding a kite")

        outcome = ResponseInterpreter().interpret(
            response,
            story_id="s",
            page_number=1,
            primary_character_name="Maya",
            mappings=mappings,
        )

        assert outcome.position_hints == {
            "child-1": "center foreground, waving",
            "alice": "left, holding a kite",
            "bob": "placed in the supporting position",
        }


class TestInterpretFailure:
    def test_exception_becomes_fallback(self):
        outcome = ResponseInterpreter().interpret(
            RuntimeError("quota exceeded"),
            story_id="sharing",
            page_number=1,
            primary_character_name="Maya Rose",
        )

        assert isinstance(outcome, FallbackOutcome)
        assert outcome.kind == "fallback"
        assert outcome.category == "quota-exceeded"
        assert outcome.seed == "sharing-page01-MayaRose-quota-exceeded"
        assert outcome.error.code == MODEL_QUOTA_EXCEEDED
        assert outcome.error.retryable is True

    def test_text_only_response_is_classified(self):
        response = {"candidates": [{"content": {"parts": [{"text": "Image feature not supported here"}]}}]}

        outcome = ResponseInterpreter().interpret(
            response, story_id="s", page_number=4, primary_character_name=None
        )

        assert outcome.category == "feature-unsupported"
        assert outcome.seed == "s-page04-thechild-feature-unsupported"

    def test_empty_candidates_is_generic(self):
        outcome = ResponseInterpreter().interpret(
            {"candidates": []}, story_id="s", page_number=1, primary_character_name="Maya"
        )

        assert outcome.category == "generic-error"

    def test_blocked_prompt_feedback(self):
        response = {"candidates": [], "prompt_feedback": {"block_reason": "SAFETY"}}

        outcome = ResponseInterpreter().interpret(
            response, story_id="s", page_number=1, primary_character_name="Maya"
        )

        assert isinstance(outcome, FallbackOutcome)
        assert "SAFETY" in outcome.error.details

    def test_same_inputs_same_descriptor(self):
        interpreter = ResponseInterpreter()
        first = interpreter.interpret(
            ConnectionError("connection refused"), story_id="s", page_number=2, primary_character_name="Maya"
        )
        second = interpreter.interpret(
            OSError("network is down"), story_id="s", page_number=2, primary_character_name="Maya"
        )

        assert first.category == second.category == "network-error"
        assert first.descriptor == second.descriptor


class TestMalformedResponse:
    def test_missing_candidates(self):
        with pytest.raises(ResponseFormatError):
            ResponseInterpreter().interpret(
                {"output": "nope"}, story_id="s", page_number=1, primary_character_name="Maya"
            )

    def test_none_response(self):
        with pytest.raises(ResponseFormatError):
            ResponseInterpreter().interpret(None, story_id="s", page_number=1, primary_character_name="Maya")

    def test_invalid_base64(self):
        response = {"candidates": [{"content": {"parts": [{"inline_data": {"data": "***not base64***"}}]}}]}

        with pytest.raises(ResponseFormatError):
            ResponseInterpreter().interpret(response, story_id="s", page_number=1, primary_character_name="Maya")


class TestExtractPositionHints:
    def test_role_placement_when_text_empty(self, cast):
        mappings = allocate_characters(cast, ["alice"])

        assert extract_position_hints("", mappings) == {"alice": "placed in the primary position"}

    def test_name_must_match_whole_word(self):
        mappings = [
            _mapping("al", "Al", "primary"),
            _mapping("alice", "Alice", "secondary"),
        ]

        hints = extract_position_hints("Alice: left side, smiling", mappings)

        assert hints == {
            "alice": "left side, smiling",
            "al": "placed in the primary position",
        }

    def test_name_only_matches_line_header(self):
        mappings = [_mapping("bob", "Bob", "primary")]

        hints = extract_position_hints("Scene: Bob waves from the right", mappings)

        assert hints == {"bob": "placed in the primary position"}

    def test_same_names_keyed_by_id(self):
        mappings = [
            _mapping("sam-1", "Sam", "primary"),
            _mapping("sam-2", "Sam", "secondary"),
        ]

        hints = extract_position_hints("- Sam: left\n- **Sam**: right", mappings)

        assert hints == {"sam-1": "left", "sam-2": "right"}


class TestFallbackLabel:
    def test_label_uses_original_names(self):
        outcome = ResponseInterpreter().interpret(
            RuntimeError("boom"),
            story_id="sharing toys",
            page_number=2,
            primary_character_name="Maya Rose",
        )

        assert outcome.seed == "sharingtoys-page02-MayaRose-generic-error"
        assert outcome.descriptor.label.splitlines()[:3] == [
            "Story Page 2",
            "Sharing Toys Story",
            "with Maya Rose",
        ]
