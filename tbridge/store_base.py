"""Knowledge store contract shared by the memory, sqlite and neo4j backends.

Two write paths: a batch of chat messages appended to a thread, and one
arbitrary-length blob (`message`, `text` fact or `json` entity) ingested into a
graph. Neither dedupes; the stored-id ledger does that on our side.

Graphs are keyed by owner id: a developer id for personal knowledge, or a
project group id (`project-<project id>`) for knowledge shared across everyone
working on that project.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from .settings import Settings

DataType = Literal["message", "text", "json"]
SearchScope = Literal["edges", "nodes", "episodes"]

# "<subject> <PREDICATE> <object>", e.g. "acme-widgets USES TypeScript"
_FACT = re.compile(r"^(\S+)\s+([A-Z][A-Z_]+)\s+(.+)$")


class StoreError(Exception):
    """A knowledge store call failed."""


@dataclass
class ThreadMessage:
    role: str
    name: str
    content: str


@dataclass
class GraphNode:
    name: str
    labels: list[str] = field(default_factory=list)
    summary: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    uuid: str = ""
    created_at: str | None = None
    score: float = 0.0


@dataclass
class GraphEdge:
    name: str      # predicate
    fact: str
    source: str    # subject node name
    target: str    # object node name
    uuid: str = ""
    created_at: str | None = None
    score: float = 0.0


@dataclass
class Episode:
    content: str
    source: str
    uuid: str = ""
    created_at: str | None = None
    score: float = 0.0


@dataclass
class SearchResults:
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    episodes: list[Episode] = field(default_factory=list)


class KnowledgeStore(Protocol):
    def ensure_schema(self) -> None: ...

    def ensure_user(self, user_id: str) -> None: ...

    def ensure_thread(self, thread_id: str, user_id: str) -> None: ...

    def add_messages(self, thread_id: str, messages: list[ThreadMessage]) -> None: ...

    def add_data(self, user_id: str, data_type: DataType, data: str) -> None: ...

    def search(self, user_id: str, query: str, scope: SearchScope = "edges", limit: int = 10) -> SearchResults: ...

    def search_thread(self, thread_id: str, query: str = "", limit: int = 10) -> list[Episode]: ...


def parse_fact(text: str) -> tuple[str, str, str] | None:
    m = _FACT.match(text.strip())
    return (m.group(1), m.group(2), m.group(3).strip()) if m else None


def entity_from_json(data: str) -> GraphNode | None:
    """Entity payloads are `{"name", "summary", "labels", "attributes"}` documents."""
    try:
        doc = json.loads(data)
    except ValueError:
        return None
    if not isinstance(doc, dict) or not doc.get("name"):
        return None
    return GraphNode(
        name=str(doc["name"]),
        labels=list(doc.get("labels") or []),
        summary=str(doc.get("summary") or ""),
        attributes=dict(doc.get("attributes") or {}),
    )


def match_score(query: str, *texts: str) -> float:
    """Share of query terms found in the texts; `*` matches everything."""
    q = (query or "").strip().lower()
    if q in ("", "*"):
        return 1.0
    terms = q.split()
    hay = " ".join(t for t in texts if t).lower()
    hits = sum(1 for t in terms if t in hay)
    return hits / len(terms)


def open_store(settings: Settings) -> KnowledgeStore:
    if settings.store_backend == "neo4j":
        from .store_neo4j import Neo4jStore
        return Neo4jStore(settings)
    if settings.store_backend == "memory":
        from .store_memory import MemoryStore
        return MemoryStore(settings)
    from .store_sqlite import SQLiteStore
    return SQLiteStore(settings)
