"""Claude Code transcript parsing.

A transcript is a JSONL file, one record per line. Records we care about:
- "user": a prompt (plain string) or a list of blocks, some of them tool results
- "assistant": a list of blocks; only "text" blocks are conversation
- "system" and anything without a message body: ignored

Every successfully decoded line is kept as a RawRecord, even when it carries no
text, because the transaction walk needs its parent pointer.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)

USER_NAME = "Developer"
ASSISTANT_NAME = "Claude Code"


class TranscriptError(Exception):
    """The transcript could not be read."""


@dataclass(frozen=True)
class RawRecord:
    kind: str
    body: Any
    id: str | None = None
    parent_id: str | None = None
    timestamp: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "RawRecord":
        return cls(
            kind=str(data.get("type") or "other"),
            body=data.get("message"),
            id=data.get("uuid") or None,
            parent_id=data.get("parentUuid") or None,
            timestamp=data.get("timestamp"),
        )


@dataclass
class Message:
    role: str  # "user" or "assistant"
    name: str
    content: str
    id: str = ""
    parent_id: str | None = None
    timestamp: str | None = None

    def as_thread_message(self) -> dict[str, str]:
        return {"role": self.role, "name": self.name, "content": self.content}


@dataclass
class ParsedTranscript:
    messages: list[Message] = field(default_factory=list)
    records: list[RawRecord] = field(default_factory=list)


def _assistant_text(content: Any) -> str:
    if not isinstance(content, list):
        return ""
    return "\n".join(
        str(b.get("text") or "")
        for b in content
        if isinstance(b, dict) and b.get("type") == "text"
    )


def _user_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = []
    for b in content:
        if not isinstance(b, dict) or b.get("type") == "tool_result":
            continue
        value = b.get("text") or b.get("content") or ""
        parts.append(value if isinstance(value, str) else "")
    return "\n".join(parts)


def to_message(record: RawRecord) -> Message | None:
    """Normalize one record, or None when it carries no conversation text."""
    if record.kind == "system" or not record.body:
        return None
    body = record.body if isinstance(record.body, dict) else {}
    content = body.get("content")

    if record.kind == "assistant":
        role, name, text = "assistant", ASSISTANT_NAME, _assistant_text(content)
    elif record.kind == "user":
        role, name, text = "user", USER_NAME, _user_text(content)
    else:
        return None

    text = text.strip()
    if not text:
        return None
    return Message(
        role=role,
        name=name,
        content=text,
        id=record.id or "",
        parent_id=record.parent_id,
        timestamp=record.timestamp,
    )


def parse_lines(lines: Iterable[str]) -> ParsedTranscript:
    out = ParsedTranscript()
    skipped = 0
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if not isinstance(data, dict):
            skipped += 1
            continue

        record = RawRecord.from_json(data)
        out.records.append(record)
        msg = to_message(record)
        if msg is not None:
            out.messages.append(msg)

    if skipped:
        logger.debug("skipped %d malformed transcript lines", skipped)
    return out


def read_transcript(path: str | Path) -> ParsedTranscript:
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise TranscriptError(f"cannot read transcript {p}: {e}") from e
    return parse_lines(text.splitlines())
