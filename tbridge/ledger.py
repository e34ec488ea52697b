"""Stored message-id ledger.

One record per session listing the transcript ids already committed to the
knowledge store. The ledger only grows, and it is saved after the store accepted
a batch, so a crash can cause a re-send but never a lost message.

Single writer per session is assumed: two hooks racing on the same session can
drop each other's updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol

from .transcript import Message

logger = logging.getLogger(__name__)


class LedgerStore(Protocol):
    def load(self, session_id: str) -> set[str]: ...

    def save(self, session_id: str, ids: set[str]) -> None: ...


@dataclass
class FileLedger:
    """Newline-delimited id files under the Claude state directory."""

    state_dir: Path

    def __post_init__(self) -> None:
        self.state_dir = Path(self.state_dir).expanduser()

    def path_for(self, session_id: str) -> Path:
        return self.state_dir / f"temporal-bridge-stored-uuids-{session_id}.txt"

    def load(self, session_id: str) -> set[str]:
        p = self.path_for(session_id)
        try:
            content = p.read_text(encoding="utf-8")
        except FileNotFoundError:
            return set()
        except OSError as e:
            logger.warning("could not read ledger %s: %s", p, e)
            return set()
        return {line.strip() for line in content.splitlines() if line.strip()}

    def save(self, session_id: str, ids: set[str]) -> None:
        p = self.path_for(session_id)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text("\n".join(sorted(ids)), encoding="utf-8")


@dataclass
class MemoryLedger:
    sessions: dict[str, set[str]] = field(default_factory=dict)

    def load(self, session_id: str) -> set[str]:
        return set(self.sessions.get(session_id, set()))

    def save(self, session_id: str, ids: set[str]) -> None:
        self.sessions[session_id] = set(ids)


def filter_new(messages: Iterable[Message], stored_ids: set[str]) -> list[Message]:
    """Drop messages already committed. Id-less messages cannot be tracked and always pass."""
    out = []
    for m in messages:
        if m.id and m.id in stored_ids:
            logger.debug("skipping stored message %s", m.id)
            continue
        out.append(m)
    return out


def remember(stored_ids: set[str], committed: Iterable[Message]) -> set[str]:
    stored_ids.update(m.id for m in committed if m.id)
    return stored_ids
