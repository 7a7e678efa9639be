"""
Unit tests for reference page analysis and continuity state.
"""

from conftest import FakeCompletion

from glp_storybook.ai_generation.allocation import allocate_characters
from glp_storybook.ai_generation.avatars import ReferenceImage
from glp_storybook.ai_generation.interpreter import ImageOutcome, build_fallback
from glp_storybook.pipeline import IllustrationContinuityState, ReferenceImageAnalyzer
from glp_storybook.pipeline.identity import ReferenceAnalysis, parse_reference_analysis
from glp_storybook.story_generation.models import CharacterMapping

ANALYSIS_TEXT = """LIGHTING: Soft morning light from the upper left
COLOR_PALETTE: sky blue, sunny yellow; grass green
BACKGROUND_STYLE: A rounded 3D park with tall trees
CHARACTER_POSITIONS:
- Maya: center foreground, yellow raincoat
- Alice: left side, holding a kite
SCENE_DESCRIPTION: Two friends meeting in a park
"""


class TestParseReferenceAnalysis:
    def test_sections(self, cast, child):
        mappings = allocate_characters(cast, ["alice", "bob"], child)

        analysis = parse_reference_analysis(ANALYSIS_TEXT, mappings)

        assert analysis.lighting == "Soft morning light from the upper left"
        assert analysis.color_palette == ("sky blue", "sunny yellow", "grass green")
        assert analysis.background_style == "A rounded 3D park with tall trees"
        assert analysis.scene_description == "Two friends meeting in a park"
        assert analysis.character_positions == {
            "child-1": "center foreground, yellow raincoat",
            "alice": "left side, holding a kite",
        }

    def test_short_name_does_not_claim_longer_one(self, cast):
        mappings = allocate_characters(cast, ["alice"]) + [
            CharacterMapping(
                character_id="al",
                name="Al",
                role="supporting",
                avatar_index=-1,
                visual_description="A small robot",
            )
        ]

        analysis = parse_reference_analysis(
            "CHARACTER_POSITIONS:\n- Alice: left side\n- Al: right side", mappings
        )

        assert analysis.character_positions == {"alice": "left side", "al": "right side"}

    def test_unstructured_text(self, cast):
        analysis = parse_reference_analysis("I see a park.", allocate_characters(cast, ["alice"]))

        assert analysis == ReferenceAnalysis()


class TestReferenceImageAnalyzer:
    def test_sends_image_as_data_url(self, cast, child):
        completion = FakeCompletion([ANALYSIS_TEXT])
        analyzer = ReferenceImageAnalyzer(model="vision/test", completion_fn=completion)
        mappings = allocate_characters(cast, ["alice"], child)

        analysis = analyzer.analyze(ReferenceImage(data=b"img", mime_type="image/png"), mappings)

        assert analysis.character_positions["alice"] == "left side, holding a kite"
        content = completion.calls[0]["messages"][1]["content"]
        assert content[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,aW1n"}}
        assert completion.calls[0]["model"] == "vision/test"

    def test_failure_returns_none(self, cast):
        analyzer = ReferenceImageAnalyzer(completion_fn=FakeCompletion([RuntimeError("boom")]))

        assert analyzer.analyze(ReferenceImage(data=b"img"), allocate_characters(cast, ["alice"])) is None


class TestIllustrationContinuityState:
    def test_image_outcome_sets_anchor_and_positions(self, cast, child):
        mappings = allocate_characters(cast, ["alice", "bob"], child)
        state = IllustrationContinuityState(mappings)
        outcome = ImageOutcome(data=b"page-one", position_hints={"bob": "right side, waving"})

        assert state.reference_context is None
        updated = state.record_reference_page(
            outcome, analysis=ReferenceAnalysis(character_positions={"alice": "left side"})
        )

        assert state.reference_context.image.data == b"page-one"
        assert {m.name: m.position_in_reference for m in updated} == {
            "Maya": "placed in the primary position",
            "Alice": "left side",
            "Bob": "right side, waving",
        }

    def test_fallback_leaves_text_only_anchor(self, cast, child):
        mappings = allocate_characters(cast, ["alice"], child)
        state = IllustrationContinuityState(mappings)
        fallback = build_fallback(
            "quota-exceeded", story_id="s", page_number=1, primary_character_name="Maya"
        )

        state.record_reference_page(fallback)

        assert state.has_anchor
        assert not state.reference_context.has_image
        assert state.mappings[1].position_in_reference == "placed in the secondary position"
        assert state.reference_context.style_lines() == []

    def test_analysis_style_travels_with_anchor(self, cast, child):
        mappings = allocate_characters(cast, ["alice"], child)
        state = IllustrationContinuityState(mappings)
        analysis = parse_reference_analysis(ANALYSIS_TEXT, mappings)

        state.record_reference_page(ImageOutcome(data=b"page-one"), analysis=analysis)

        reference = state.reference_context
        assert reference.lighting == "Soft morning light from the upper left"
        assert reference.color_palette == ("sky blue", "sunny yellow", "grass green")
        assert reference.background_style == "A rounded 3D park with tall trees"
        assert reference.scene_description == "Two friends meeting in a park"
        assert state.mappings[0].position_in_reference == "center foreground, yellow raincoat"
