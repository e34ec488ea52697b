from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .transcript import Message

# Thread append rejects messages over 2500 chars.
DEFAULT_THRESHOLD = 2400


@dataclass
class Routed:
    short: list[Message] = field(default_factory=list)  # one batched thread append
    large: list[Message] = field(default_factory=list)  # one graph ingest each


def route(messages: Iterable[Message], threshold: int = DEFAULT_THRESHOLD) -> Routed:
    out = Routed()
    for m in messages:
        (out.large if len(m.content) > threshold else out.short).append(m)
    return out


def large_payload(msg: Message) -> str:
    return f"{msg.name}: {msg.content}"
