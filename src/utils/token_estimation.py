"""Rough token estimation used before a chat completion is made.

Real token counts are only known after the completion; the estimate is used
for admission and also covers the system prompt and the expected response.
"""

import math
from typing import Iterable, Optional

import constants


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate number of tokens in a text."""
    if not text:
        return 0
    return math.ceil(len(text) / constants.CHARACTERS_PER_TOKEN)


def estimate_message_tokens(contents: Iterable[str]) -> int:
    """Estimate tokens of chat messages, including per-message overhead."""
    return sum(
        estimate_tokens(content) + constants.TOKENS_PER_MESSAGE_OVERHEAD
        for content in contents
    )


def estimate_request_tokens(
    message: Optional[str] = None,
    messages: Iterable[str] = (),
    history: Iterable[str] = (),
) -> int:
    """Estimate tokens of a whole chat request including the expected response."""
    return (
        estimate_tokens(message)
        + estimate_message_tokens(messages)
        + estimate_message_tokens(history)
        + constants.SYSTEM_PROMPT_TOKEN_ALLOWANCE
        + constants.RESPONSE_TOKEN_BUFFER
    )
