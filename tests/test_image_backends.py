"""
Unit tests for the Replicate and Gemini image generation adapters.
"""

from types import SimpleNamespace

import pytest

from glp_storybook.ai_generation.avatars import ReferenceImage
from glp_storybook.ai_generation.gemini_service import GeminiImageGenerator
from glp_storybook.ai_generation.interpreter import ImageOutcome, ResponseInterpreter
from glp_storybook.ai_generation.prompting import GenerationRequest
from glp_storybook.ai_generation.replicate_service import (
    ReplicateImageGenerator,
    normalize_image_outputs,
)


class FakeFileOutput:
    def __init__(self, data):
        self._data = data

    def read(self):
        return self._data


class FakeReplicateClient:
    def __init__(self, output):
        self.output = output
        self.calls = []

    def run(self, model, input):
        self.calls.append((model, input))
        return self.output


class FakeModels:
    def __init__(self):
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        return {"candidates": []}


@pytest.fixture
def request_with_images():
    return GenerationRequest(
        text_prompt="Draw Maya",
        images=(ReferenceImage(data=b"a", mime_type="image/png"), ReferenceImage(data=b"b")),
        page_number=1,
    )


class TestReplicateImageGenerator:
    def test_nano_banana_payload_and_response(self, request_with_images):
        client = FakeReplicateClient([FakeFileOutput(b"png-bytes")])
        generator = ReplicateImageGenerator(client=client, model_identifier="google/nano-banana")

        response = generator.generate_image(request_with_images)

        model, payload = client.calls[0]
        assert model == "google/nano-banana"
        assert payload["prompt"] == "Draw Maya"
        assert payload["image_input"] == ["data:image/png;base64,YQ==", "data:image/jpeg;base64,Yg=="]
        outcome = ResponseInterpreter().interpret(
            response, story_id="s", page_number=2, primary_character_name="Maya"
        )
        assert isinstance(outcome, ImageOutcome)
        assert outcome.data == b"png-bytes"

    def test_kontext_takes_first_image(self, request_with_images):
        client = FakeReplicateClient(b"raw")
        generator = ReplicateImageGenerator(
            client=client, model_identifier="black-forest-labs/flux-kontext-pro"
        )

        generator.generate_image(request_with_images)

        assert client.calls[0][1]["input_image"] == "data:image/png;base64,YQ=="

    def test_no_output_gives_empty_candidates(self, request_with_images):
        generator = ReplicateImageGenerator(client=FakeReplicateClient(None))

        assert generator.generate_image(request_with_images) == {"candidates": []}

    def test_unknown_model(self, request_with_images):
        generator = ReplicateImageGenerator(client=FakeReplicateClient(None), model_identifier="acme/paint")

        with pytest.raises(ValueError):
            generator.generate_image(request_with_images)

    def test_requires_token(self, monkeypatch):
        monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)

        with pytest.raises(ValueError):
            ReplicateImageGenerator()

    def test_normalize_outputs(self):
        assert normalize_image_outputs(["https://x/1.png", None, ["https://x/2.png"]]) == [
            "https://x/1.png",
            "https://x/2.png",
        ]
        assert normalize_image_outputs(list("https://x/3.png")) == ["https://x/3.png"]


class TestGeminiImageGenerator:
    def test_sends_prompt_and_parts(self, request_with_images):
        models = FakeModels()
        generator = GeminiImageGenerator(client=SimpleNamespace(models=models), model="gemini-test")

        generator.generate_image(request_with_images)

        call = models.calls[0]
        assert call["model"] == "gemini-test"
        assert call["contents"][0] == "Draw Maya"
        assert len(call["contents"]) == 3
