from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field

from .settings import Settings
from .store_base import (
    DataType,
    Episode,
    GraphEdge,
    GraphNode,
    SearchResults,
    SearchScope,
    StoreError,
    ThreadMessage,
    entity_from_json,
    match_score,
    parse_fact,
)


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass
class _UserGraph:
    nodes: dict[str, GraphNode] = field(default_factory=dict)
    edges: list[GraphEdge] = field(default_factory=list)
    episodes: list[Episode] = field(default_factory=list)


@dataclass
class MemoryStore:
    """Tiny in-memory knowledge store.

    This exists so the hook and the tests work without a database.
    Data is NOT persisted.
    """

    settings: Settings
    users: dict[str, _UserGraph] = field(default_factory=dict)
    threads: dict[str, str] = field(default_factory=dict)  # thread id -> user id
    thread_messages: dict[str, list[ThreadMessage]] = field(default_factory=dict)
    thread_episodes: dict[str, list[Episode]] = field(default_factory=dict)

    def ensure_schema(self) -> None:
        return

    def ensure_user(self, user_id: str) -> None:
        self.users.setdefault(user_id, _UserGraph())

    def ensure_thread(self, thread_id: str, user_id: str) -> None:
        self.ensure_user(user_id)
        self.threads.setdefault(thread_id, user_id)
        self.thread_messages.setdefault(thread_id, [])

    def add_messages(self, thread_id: str, messages: list[ThreadMessage]) -> None:
        if thread_id not in self.threads:
            raise StoreError(f"unknown thread {thread_id}")
        graph = self.users[self.threads[thread_id]]
        for m in messages:
            self.thread_messages[thread_id].append(m)
            graph.episodes.append(Episode(content=f"{m.name}: {m.content}", source="thread", uuid=str(uuid.uuid4()), created_at=_now()))
            self.thread_episodes.setdefault(thread_id, []).append(graph.episodes[-1])

    def add_data(self, user_id: str, data_type: DataType, data: str) -> None:
        self.ensure_user(user_id)
        graph = self.users[user_id]
        now = _now()
        graph.episodes.append(Episode(content=data, source=data_type, uuid=str(uuid.uuid4()), created_at=now))

        if data_type == "json":
            node = entity_from_json(data)
            if node:
                node.uuid = node.uuid or str(uuid.uuid4())
                node.created_at = now
                graph.nodes[node.name.lower()] = node
        elif data_type == "text":
            fact = parse_fact(data)
            if fact:
                subj, rel, obj = fact
                for name in (subj, obj):
                    graph.nodes.setdefault(name.lower(), GraphNode(name=name, uuid=str(uuid.uuid4()), created_at=now))
                graph.edges.append(GraphEdge(name=rel, fact=data, source=subj, target=obj, uuid=str(uuid.uuid4()), created_at=now))

    def search(self, user_id: str, query: str, scope: SearchScope = "edges", limit: int = 10) -> SearchResults:
        graph = self.users.get(user_id)
        out = SearchResults()
        if graph is None:
            return out

        if scope == "nodes":
            for n in graph.nodes.values():
                score = match_score(query, n.name, n.summary, " ".join(n.labels), str(n.attributes))
                if score > 0:
                    out.nodes.append(GraphNode(**{**n.__dict__, "score": score}))
            out.nodes.sort(key=lambda n: n.score, reverse=True)
            out.nodes = out.nodes[:limit]
        elif scope == "edges":
            for e in graph.edges:
                score = match_score(query, e.fact)
                if score > 0:
                    out.edges.append(GraphEdge(**{**e.__dict__, "score": score}))
            out.edges.sort(key=lambda e: e.score, reverse=True)
            out.edges = out.edges[:limit]
        else:
            for ep in graph.episodes:
                score = match_score(query, ep.content)
                if score > 0:
                    out.episodes.append(Episode(**{**ep.__dict__, "score": score}))
            out.episodes.sort(key=lambda e: e.score, reverse=True)
            out.episodes = out.episodes[:limit]
        return out

    def search_thread(self, thread_id: str, query: str = "", limit: int = 10) -> list[Episode]:
        out = []
        for ep in reversed(self.thread_episodes.get(thread_id, [])):
            score = match_score(query, ep.content)
            if score > 0:
                out.append(Episode(**{**ep.__dict__, "score": score}))
        out.sort(key=lambda e: e.score, reverse=True)
        return out[:limit]
