"""Structural sanitation of inbound conversations."""

import logging
from collections.abc import Mapping

from edge_gateway.models.chat import CHAT_ROLES, ChatMessage

logger = logging.getLogger("edge.chat")


def sanitize_messages(candidates: object, max_messages: int) -> list[ChatMessage]:
    """Keep well-formed messages and truncate to the most recent ``max_messages``.

    A candidate survives only if it is a mapping with a role from the closed
    set and non-empty string content. Content is passed through verbatim.
    Unknown roles are dropped rather than coerced.
    """
    if not isinstance(candidates, list):
        return []

    accepted: list[ChatMessage] = []
    for candidate in candidates:
        if not isinstance(candidate, Mapping):
            continue
        role = candidate.get("role")
        content = candidate.get("content")
        if not isinstance(role, str) or role not in CHAT_ROLES:
            continue
        if not isinstance(content, str) or not content.strip():
            continue
        accepted.append(ChatMessage(role=role, content=str(content)))

    dropped = len(candidates) - len(accepted)
    if dropped:
        logger.warning(
            "chat_messages_dropped",
            extra={"dropped_messages": dropped, "message_count": len(candidates)},
        )

    if max_messages <= 0:
        return []
    return accepted[-max_messages:]


def enforce_limit(messages: list[ChatMessage], max_messages: int) -> list[ChatMessage]:
    """Truncate while pinning index 0; older messages after it are evicted first."""
    if len(messages) <= max_messages:
        return messages
    if max_messages <= 1:
        return messages[:1]
    return [messages[0], *messages[len(messages) - (max_messages - 1):]]
