"""
Pytest configuration and fixtures for storybook tests.

This module provides:
- Network blocking fixture so no test reaches a real model
- Fake model capabilities and a small sample cast
"""

import os
import socket
from typing import Any
from unittest.mock import patch

import pytest

# Use litellm's bundled model cost map so importing it never reaches the network.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from glp_storybook.ai_generation.avatars import ReferenceImage
from glp_storybook.common import ChatResult
from glp_storybook.story_generation.models import (
    Character,
    ChildProfile,
    StoryContext,
    StoryPageDraft,
    StoryStyleOptions,
    VisualProfile,
)


class NetworkBlockedError(Exception):
    """Raised when a test attempts to make a network connection."""


def _block_socket_connect(*args, **kwargs):
    raise NetworkBlockedError(
        "Network access is blocked in unit tests. Inject a fake model callable instead."
    )


@pytest.fixture(autouse=True)
def block_network():
    """Block all socket connections for every test."""
    with patch.object(socket.socket, "connect", _block_socket_connect):
        with patch.object(socket, "create_connection", _block_socket_connect):
            yield


class FakeImageGenerator:
    """
    Records every request and replays scripted responses in order.

    A scripted item that is an exception instance is raised instead of returned.
    """

    def __init__(self, responses: list[Any] | None = None):
        self.requests = []
        self._responses = list(responses or [])

    def generate_image(self, request):
        self.requests.append(request)
        response = self._responses.pop(0) if self._responses else image_response()
        if isinstance(response, BaseException):
            raise response
        return response


class FakeCompletion:
    """A LiteLLM-compatible completion callable returning scripted texts."""

    def __init__(self, texts: list[Any]):
        self.calls = []
        self._texts = list(texts)

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        text = self._texts.pop(0)
        if isinstance(text, BaseException):
            raise text
        return ChatResult(text=text, raw=None)


def image_response(data: bytes = b"\x89PNG-fake", text: str | None = None) -> dict:
    parts: list[dict] = [{"inline_data": {"mime_type": "image/png", "data": data}}]
    if text:
        parts.append({"text": text})
    return {"candidates": [{"content": {"parts": parts}}]}


def fake_fetch(source: str) -> ReferenceImage:
    return ReferenceImage(data=f"avatar:{source}".encode(), mime_type="image/png")


@pytest.fixture
def cast():
    """Example cast: three avatars and one text-only character."""
    return [
        Character(id="alice", name="Alice", avatar_url="https://img.test/alice.png"),
        Character(id="bob", name="Bob", avatar_url="https://img.test/bob.png"),
        Character(
            id="charlie",
            name="Charlie",
            visual_profile=VisualProfile(appearance="A tall giraffe with a red scarf"),
        ),
        Character(id="dana", name="Dana", avatar_url="https://img.test/dana.png"),
    ]


@pytest.fixture
def child():
    return ChildProfile(id="child-1", name="Maya")


@pytest.fixture
def story_context():
    return StoryContext(
        story_id="sharing",
        title="Maya Learns to Share",
        concept="sharing",
        child_name="Maya",
        character_names=("Maya", "Alice"),
        style=StoryStyleOptions(tone="playful", density="one-sentence"),
    )


@pytest.fixture
def pages():
    return [
        StoryPageDraft(page_number=1, text="Maya finds a big red ball in the park."),
        StoryPageDraft(page_number=2, text="Alice wants to play with the ball too."),
        StoryPageDraft(page_number=3, text="Maya rolls the ball to Alice and they laugh."),
    ]


@pytest.fixture
def fake_image_generator():
    return FakeImageGenerator()
