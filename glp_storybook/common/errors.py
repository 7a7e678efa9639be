"""
Error taxonomy shared by the storybook generation pipeline.
"""

from __future__ import annotations

from typing import Any

ALLOCATION_ERROR = "ALLOCATION_ERROR"
PROMPT_ERROR = "PROMPT_ERROR"
MODEL_FEATURE_UNSUPPORTED = "MODEL_FEATURE_UNSUPPORTED"
MODEL_QUOTA_EXCEEDED = "MODEL_QUOTA_EXCEEDED"
MODEL_AUTH_ERROR = "MODEL_AUTH_ERROR"
MODEL_NETWORK_ERROR = "MODEL_NETWORK_ERROR"
MODEL_GENERIC_ERROR = "MODEL_GENERIC_ERROR"

# code -> (user-facing message, retryable)
_MODEL_ERRORS: dict[str, tuple[str, bool]] = {
    MODEL_FEATURE_UNSUPPORTED: (
        "The image model does not support this request.",
        False,
    ),
    MODEL_QUOTA_EXCEEDED: (
        "Rate limit or quota exceeded. Please try again later.",
        True,
    ),
    MODEL_AUTH_ERROR: ("Invalid or missing API key.", False),
    MODEL_NETWORK_ERROR: ("Network problem while contacting the model.", True),
    MODEL_GENERIC_ERROR: ("Failed to generate content.", True),
}


class StorybookError(Exception):
    """
    Base error for the storybook pipeline.

    Attributes
    ----------
    code:
        Stable machine-readable code (e.g. ``MODEL_QUOTA_EXCEEDED``).
    message:
        Human readable message.
    retryable:
        Whether the caller may retry the failed operation, possibly after backoff.
    details:
        Optional raw detail, typically the upstream error text.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        retryable: bool = False,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.details = details

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, "
            f"retryable={self.retryable!r})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StorybookError):
            return NotImplemented
        return (self.code, self.message, self.retryable, self.details) == (
            other.code,
            other.message,
            other.retryable,
            other.details,
        )

    def __hash__(self) -> int:
        return hash((self.code, self.message, self.retryable))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            payload["details"] = str(self.details)
        return payload

    @classmethod
    def for_model_code(cls, code: str, details: Any = None) -> "StorybookError":
        """
        Build the error for one of the ``MODEL_*`` codes with its canonical message.
        """
        try:
            message, retryable = _MODEL_ERRORS[code]
        except KeyError as exc:
            raise ValueError(f"Unknown model error code: {code!r}") from exc
        return cls(code, message, retryable=retryable, details=details)


class AllocationError(StorybookError):
    """Invalid or contradictory character selection."""

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(ALLOCATION_ERROR, message, retryable=False, details=details)


class PromptError(StorybookError):
    """A generation request could not be built from the given inputs."""

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(PROMPT_ERROR, message, retryable=False, details=details)


class ResponseFormatError(PromptError):
    """The image model response is missing fields required to interpret it."""
