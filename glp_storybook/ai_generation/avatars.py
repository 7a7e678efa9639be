"""
Loading of avatar and reference images for image model requests.
"""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import requests

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class ReferenceImage:
    """An image attached to a generation request."""

    data: bytes
    mime_type: str = "image/jpeg"
    label: str = ""

    def as_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


ImageFetcher = Callable[[str], ReferenceImage]


def fetch_reference_image(source: str, *, timeout: float = DEFAULT_TIMEOUT) -> ReferenceImage:
    """
    Load an image from an http(s) URL, a ``data:`` URL, or a local path.
    """
    candidate = source.strip()
    if not candidate:
        raise ValueError("Image source must be a non-empty string.")

    if candidate.lower().startswith("data:"):
        return _decode_data_url(candidate)

    if candidate.lower().startswith(("http://", "https://")):
        response = requests.get(candidate, timeout=timeout)
        response.raise_for_status()
        content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        mime_type = content_type if content_type.startswith("image/") else _guess_mime(candidate)
        return ReferenceImage(data=response.content, mime_type=mime_type)

    image_path = Path(candidate).expanduser()
    if not image_path.exists():
        raise FileNotFoundError(f"Image not found at '{image_path}'.")
    return ReferenceImage(data=image_path.read_bytes(), mime_type=_guess_mime(image_path.name))


def _decode_data_url(value: str) -> ReferenceImage:
    header, _, payload = value.partition(",")
    if not payload or ";base64" not in header:
        raise ValueError("Only base64 encoded data URLs are supported.")
    mime_type = header[len("data:") :].split(";")[0] or "image/png"
    return ReferenceImage(data=base64.b64decode(payload), mime_type=mime_type)


def _guess_mime(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or "image/jpeg"
