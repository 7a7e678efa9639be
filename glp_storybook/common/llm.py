"""
Thin LiteLLM wrapper shared by story writing and reference page analysis.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from litellm import completion

from .errors import MODEL_GENERIC_ERROR, StorybookError

ChatMessage = Mapping[str, Any]

_TRUNCATED_FINISH_REASONS = frozenset({"length", "max_tokens"})


@dataclass
class ChatResult:
    """
    Text of the first choice of a chat completion, plus the raw response.
    """

    text: str
    raw: Any
    finish_reason: str | None = None

    @property
    def truncated(self) -> bool:
        return (self.finish_reason or "").lower() in _TRUNCATED_FINISH_REASONS


CompletionCallable = Callable[..., ChatResult]


def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Run one LiteLLM ``completion`` call and return the first choice's text.

    Options left as ``None`` are not sent, so provider defaults apply.
    """
    optional = {"temperature": temperature, "max_tokens": max_tokens, "api_key": api_key}
    payload: dict[str, Any] = {"model": model, "messages": list(messages)}
    payload.update({key: value for key, value in optional.items() if value is not None})
    payload.update(extra_kwargs)

    response = completion(**payload)

    try:
        choice = response["choices"][0]
        content = choice["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise StorybookError.for_model_code(
            MODEL_GENERIC_ERROR, f"Unexpected LiteLLM response from {model}."
        ) from exc

    return ChatResult(
        text=_content_text(content),
        raw=response,
        finish_reason=_lookup(choice, "finish_reason"),
    )


def system_message(text: str) -> dict[str, Any]:
    return {"role": "system", "content": text}


def user_message(text: str, *, image_urls: Sequence[str] = ()) -> dict[str, Any]:
    """
    Build a user chat message, attaching images as ``image_url`` content parts.
    """
    if not image_urls:
        return {"role": "user", "content": text}

    content: list[dict[str, Any]] = [{"type": "text", "text": text}]
    content.extend({"type": "image_url", "image_url": {"url": url}} for url in image_urls)
    return {"role": "user", "content": content}


def _content_text(content: Any) -> str:
    # Some providers answer with a list of typed parts instead of a string.
    if isinstance(content, (list, tuple)):
        pieces = [
            str(part.get("text") or "") if isinstance(part, Mapping) else str(part)
            for part in content
        ]
        return "\n".join(piece for piece in pieces if piece).strip()
    return str(content or "").strip()


def _lookup(source: Any, name: str) -> Any:
    try:
        return source[name]
    except (KeyError, IndexError, TypeError):
        return getattr(source, name, None)
