"""
Deterministic placeholder synthesis for pages whose illustration failed.
"""

from __future__ import annotations

import hashlib
import io
import re
from dataclasses import dataclass
from typing import Any

from PIL import Image, ImageDraw, ImageFont

FEATURE_UNSUPPORTED = "feature-unsupported"
QUOTA_EXCEEDED = "quota-exceeded"
AUTH_ERROR = "auth-error"
NETWORK_ERROR = "network-error"
GENERIC_ERROR = "generic-error"

FALLBACK_CATEGORIES = (
    FEATURE_UNSUPPORTED,
    QUOTA_EXCEEDED,
    AUTH_ERROR,
    NETWORK_ERROR,
    GENERIC_ERROR,
)

# category -> (background, caption)
_CATEGORY_STYLE: dict[str, tuple[str, str]] = {
    FEATURE_UNSUPPORTED: ("7C3AED", "Illustration style not supported"),
    QUOTA_EXCEEDED: ("F97316", "Illustration queued (processing...)"),
    AUTH_ERROR: ("B91C1C", "Illustration service not configured"),
    NETWORK_ERROR: ("0EA5E9", "Illustration offline, try again soon"),
    GENERIC_ERROR: ("6B7280", "Image generation temporarily unavailable"),
}

_ACCENT_COLORS = (
    "7C3AED",  # introduction
    "3B82F6",  # development
    "10B981",  # adventure
    "F59E0B",  # challenge
    "EF4444",  # resolution
    "EC4899",
    "14B8A6",
    "84CC16",
)

_SEED_PATTERN = re.compile(
    r"^(?P<story>.*?)-page(?P<page>\d+)-(?P<name>.*)-(?P<category>"
    + "|".join(re.escape(category) for category in FALLBACK_CATEGORIES)
    + r")$"
)


@dataclass(frozen=True)
class PlaceholderDescriptor:
    """
    Everything needed to draw a stand-in illustration; a pure function of ``seed``.
    """

    seed: str
    category: str
    label: str
    background_color: str
    accent_color: str
    text_color: str = "FFFFFF"

    def as_dict(self) -> dict[str, Any]:
        return {
            "seed": self.seed,
            "category": self.category,
            "label": self.label,
            "background_color": self.background_color,
            "accent_color": self.accent_color,
            "text_color": self.text_color,
        }


def build_fallback_seed(
    story_id: str,
    page_number: int,
    primary_character_name: str | None,
    category: str,
) -> str:
    """
    Compose ``{story}-page{NN}-{primary}-{category}``; whitespace is removed from names.
    """
    story = _compact(story_id) or "story"
    primary = _compact(primary_character_name or "") or "thechild"
    return f"{story}-page{page_number:02d}-{primary}-{category}"


def build_placeholder(
    seed: str,
    *,
    story_label: str | None = None,
    character_name: str | None = None,
) -> PlaceholderDescriptor:
    """
    Derive the placeholder color scheme and label from a fallback seed.

    The seed has its whitespace squeezed out, so callers that still hold the
    original story id and character name should pass them for the label.
    """
    match = _SEED_PATTERN.match(seed)
    if match is None:
        category = GENERIC_ERROR
        label_lines = ["Story Illustration"]
    else:
        category = match.group("category")
        label_lines = [f"Story Page {int(match.group('page'))}"]
        story = _display_name(story_label or match.group("story"))
        if story:
            label_lines.append(f"{story} Story")
        name = _display_name(character_name or match.group("name"))
        if name:
            label_lines.append(f"with {name}")

    background, caption = _CATEGORY_STYLE[category]
    label_lines.append(f"({caption})")

    digest = hashlib.blake2b(seed.encode("utf-8"), digest_size=8).digest()
    accent = _ACCENT_COLORS[int.from_bytes(digest, "big") % len(_ACCENT_COLORS)]

    return PlaceholderDescriptor(
        seed=seed,
        category=category,
        label="\n".join(label_lines),
        background_color=background,
        accent_color=accent,
    )


def render_placeholder(descriptor: PlaceholderDescriptor, *, size: int = 1024) -> bytes:
    """
    Draw ``descriptor`` as a square PNG and return the encoded bytes.
    """
    image = Image.new("RGB", (size, size), _hex_to_rgb(descriptor.background_color))
    draw = ImageDraw.Draw(image)

    radius = size // 5
    center = size // 2
    draw.ellipse(
        (center - radius, size // 4 - radius // 2, center + radius, size // 4 + radius * 3 // 2),
        fill=_hex_to_rgb(descriptor.accent_color),
    )

    font = ImageFont.load_default()
    left, top, right, bottom = draw.multiline_textbbox((0, 0), descriptor.label, font=font, align="center")
    text_width, text_height = right - left, bottom - top
    draw.multiline_text(
        ((size - text_width) // 2, size * 2 // 3 - text_height // 2),
        descriptor.label,
        fill=_hex_to_rgb(descriptor.text_color),
        font=font,
        align="center",
    )

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _compact(value: str) -> str:
    return re.sub(r"\s+", "", value or "")


def _display_name(value: str | None) -> str:
    words = re.split(r"[\s_-]+", (value or "").strip())
    return " ".join(word[:1].upper() + word[1:] for word in words if word)


def _hex_to_rgb(value: str) -> tuple[int, int, int]:
    value = value.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
