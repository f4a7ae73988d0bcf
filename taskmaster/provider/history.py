"""Message-history truncation applied before every step"""

import json
import logging

from .types import Message

logger = logging.getLogger(__name__)

TOKENS_PER_CHAR = 0.25


def content_text(message: Message) -> str:
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
            else:
                parts.append(json.dumps(part, default=str))
        return "".join(parts)
    return str(content)


def estimate_token_count(messages: list[Message]) -> float:
    """About a quarter token per character of content"""
    return sum(len(content_text(m)) * TOKENS_PER_CHAR for m in messages)


def truncate_by_count(messages: list[Message], max_count: int) -> list[Message]:
    """Keep every system message plus the most recent others, in order.

    Tool results at the head of the kept tail are dropped too, since their
    assistant call fell outside the window. The result can then be a few
    messages short of ``max_count``.
    """
    system = [m for m in messages if m.get("role") == "system"]
    others = [m for m in messages if m.get("role") != "system"]
    keep = max(1, max_count - len(system))
    start = max(0, len(others) - keep)
    while start < len(others) - 1 and others[start].get("role") == "tool":
        start += 1
    return [*system, *others[start:]]


def truncate_by_tokens(messages: list[Message], max_tokens: int) -> list[Message]:
    """Drop the oldest non-system messages until the estimate fits.

    The newest non-system message always survives, and the kept tail never
    starts with a tool result whose assistant call was dropped.
    """
    system = [m for m in messages if m.get("role") == "system"]
    others = [m for m in messages if m.get("role") != "system"]
    budget = max_tokens - estimate_token_count(system)

    start = 0
    remaining = estimate_token_count(others)
    while start < len(others) - 1 and remaining > budget:
        remaining -= len(content_text(others[start])) * TOKENS_PER_CHAR
        start += 1
    while start < len(others) - 1 and others[start].get("role") == "tool":
        start += 1
    return [*system, *others[start:]]


def prepare_history(messages: list[Message], max_messages: int, max_tokens: int) -> list[Message]:
    """Apply the count guard, then the token guard; either may fire"""
    if len(messages) > max_messages:
        logger.info(f"Truncating {len(messages)} messages to {max_messages}")
        messages = truncate_by_count(messages, max_messages)

    token_count = estimate_token_count(messages)
    if token_count > max_tokens:
        logger.info(f"Truncating {int(token_count)} tokens to ~{max_tokens}")
        messages = truncate_by_tokens(messages, max_tokens)

    return messages
