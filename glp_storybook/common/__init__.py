"""
Common utilities shared across the storybook modules.
"""

from .errors import (
    ALLOCATION_ERROR,
    MODEL_AUTH_ERROR,
    MODEL_FEATURE_UNSUPPORTED,
    MODEL_GENERIC_ERROR,
    MODEL_NETWORK_ERROR,
    MODEL_QUOTA_EXCEEDED,
    PROMPT_ERROR,
    AllocationError,
    PromptError,
    ResponseFormatError,
    StorybookError,
)
from .llm import ChatResult, CompletionCallable, call_chat_completion, system_message, user_message

__all__ = [
    "ALLOCATION_ERROR",
    "PROMPT_ERROR",
    "MODEL_FEATURE_UNSUPPORTED",
    "MODEL_QUOTA_EXCEEDED",
    "MODEL_AUTH_ERROR",
    "MODEL_NETWORK_ERROR",
    "MODEL_GENERIC_ERROR",
    "AllocationError",
    "PromptError",
    "ResponseFormatError",
    "StorybookError",
    "ChatResult",
    "CompletionCallable",
    "call_chat_completion",
    "system_message",
    "user_message",
]
