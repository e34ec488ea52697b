from __future__ import annotations

import logging

from .transcript import Message, RawRecord

logger = logging.getLogger(__name__)


def find_current_transaction(messages: list[Message], records: list[RawRecord]) -> list[Message]:
    """Walk parent pointers back from the newest assistant message.

    The walk closes as soon as a user message becomes the head of the collected
    chain. Records without text (tool results, tool calls) are skipped through
    their own parent pointer. Unknown ids and cycles end the walk early and the
    partial chain is returned.
    """
    if not messages:
        return []

    tail = next((m for m in reversed(messages) if m.role == "assistant"), None)
    if tail is None:
        # no assistant anchor, nothing bounds the exchange
        return list(messages)

    # first occurrence wins for repeated ids
    by_id: dict[str, Message] = {}
    for m in messages:
        if m.id:
            by_id.setdefault(m.id, m)
    parent_of: dict[str, str | None] = {}
    for r in records:
        if r.id:
            parent_of.setdefault(r.id, r.parent_id)

    chain: list[Message] = []
    visited: set[str] = set()
    current: str | None = tail.id

    while current and current not in visited:
        visited.add(current)
        msg = by_id.get(current)
        if msg is None:
            current = parent_of.get(current)
            continue

        chain.insert(0, msg)
        # the prepended message is always the new head
        if msg.role == "user":
            break

        current = msg.parent_id or parent_of.get(current)

    logger.debug("transaction: %s", " -> ".join(m.role for m in chain))
    return chain


def cap_transaction(messages: list[Message]) -> list[Message]:
    """Keep the opening question and the two final answers of long exchanges."""
    if len(messages) <= 3:
        return list(messages)

    first_user = next((m for m in messages if m.role == "user"), None)
    last_answers = [m for m in messages if m.role == "assistant"][-2:]
    return ([first_user] if first_user else []) + last_answers
