from __future__ import annotations

import json
import uuid
from dataclasses import dataclass

from neo4j import GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

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


@dataclass
class Neo4jStore:
    settings: Settings

    def driver(self):
        return GraphDatabase.driver(
            self.settings.neo4j_uri,
            auth=(self.settings.neo4j_user, self.settings.neo4j_password),
        )

    def _run(self, q: str, **params) -> list[dict]:
        try:
            with self.driver() as drv:
                with drv.session() as s:
                    return [dict(r) for r in s.run(q, **params)]
        except (Neo4jError, DriverError) as e:
            raise StoreError(f"neo4j store: {e}") from e

    def ensure_schema(self) -> None:
        q = """
        CREATE CONSTRAINT tb_user_id IF NOT EXISTS
        FOR (u:TBUser) REQUIRE u.id IS UNIQUE;

        CREATE CONSTRAINT tb_thread_id IF NOT EXISTS
        FOR (t:TBThread) REQUIRE t.id IS UNIQUE;

        CREATE CONSTRAINT tb_entity_key IF NOT EXISTS
        FOR (e:TBEntity) REQUIRE e.key IS UNIQUE;

        CREATE INDEX tb_episode_user IF NOT EXISTS
        FOR (ep:TBEpisode) ON (ep.userId);
        """
        for stmt in [x.strip() for x in q.split(";") if x.strip()]:
            self._run(stmt)

    def ensure_user(self, user_id: str) -> None:
        self._run(
            "MERGE (u:TBUser {id: $id}) ON CREATE SET u.createdAt = timestamp()",
            id=user_id,
        )

    def ensure_thread(self, thread_id: str, user_id: str) -> None:
        q = """
        MERGE (u:TBUser {id: $user})
        MERGE (t:TBThread {id: $thread})
        ON CREATE SET t.createdAt = timestamp()
        MERGE (t)-[:OWNED_BY]->(u)
        """
        self._run(q, user=user_id, thread=thread_id)

    def add_messages(self, thread_id: str, messages: list[ThreadMessage]) -> None:
        q = """
        MATCH (t:TBThread {id: $thread})-[:OWNED_BY]->(u:TBUser)
        UNWIND $messages AS m
        CREATE (ep:TBEpisode {
            uuid: m.uuid, userId: u.id, source: 'thread',
            role: m.role, name: m.name, content: m.content, createdAt: timestamp()
        })
        CREATE (ep)-[:IN_THREAD]->(t)
        RETURN count(ep) AS n
        """
        rows = self._run(
            q,
            thread=thread_id,
            messages=[{"uuid": str(uuid.uuid4()), **m.__dict__} for m in messages],
        )
        if messages and (not rows or rows[0]["n"] == 0):
            raise StoreError(f"unknown thread {thread_id}")

    def add_data(self, user_id: str, data_type: DataType, data: str) -> None:
        self._run(
            """
            CREATE (:TBEpisode {uuid: $uuid, userId: $user, source: $source, content: $data, createdAt: timestamp()})
            """,
            uuid=str(uuid.uuid4()), user=user_id, source=data_type, data=data,
        )

        if data_type == "json":
            node = entity_from_json(data)
            if node:
                q = """
                MERGE (e:TBEntity {key: $key})
                SET e.userId = $user,
                    e.name = $name,
                    e.labels = $labels,
                    e.summary = $summary,
                    e.attributes = $attributes,
                    e.updatedAt = timestamp()
                """
                self._run(
                    q,
                    key=f"{user_id}::{node.name.lower()}",
                    user=user_id,
                    name=node.name,
                    labels=node.labels,
                    summary=node.summary,
                    attributes=json.dumps(node.attributes),
                )
        elif data_type == "text":
            fact = parse_fact(data)
            if fact:
                subj, rel, obj = fact
                # relationship types cannot be parameters; keep the predicate as a property
                q = """
                MERGE (a:TBEntity {key: $akey})
                ON CREATE SET a.userId = $user, a.name = $subj, a.labels = [], a.summary = '', a.attributes = '{}'
                MERGE (b:TBEntity {key: $bkey})
                ON CREATE SET b.userId = $user, b.name = $obj, b.labels = [], b.summary = '', b.attributes = '{}'
                MERGE (a)-[r:TB_FACT {name: $rel}]->(b)
                SET r.fact = $fact, r.uuid = coalesce(r.uuid, $uuid), r.createdAt = timestamp()
                """
                self._run(
                    q,
                    akey=f"{user_id}::{subj.lower()}",
                    bkey=f"{user_id}::{obj.lower()}",
                    user=user_id,
                    subj=subj,
                    obj=obj,
                    rel=rel,
                    fact=data,
                    uuid=str(uuid.uuid4()),
                )

    def search(self, user_id: str, query: str, scope: SearchScope = "edges", limit: int = 10) -> SearchResults:
        out = SearchResults()
        if scope == "nodes":
            rows = self._run(
                """
                MATCH (e:TBEntity {userId: $user})
                RETURN e.key AS uuid, e.name AS name, e.labels AS labels, e.summary AS summary,
                       e.attributes AS attributes, e.updatedAt AS ts
                ORDER BY e.updatedAt DESC
                """,
                user=user_id,
            )
            for r in rows:
                score = match_score(query, r["name"], r["summary"] or "", " ".join(r["labels"] or []), r["attributes"] or "")
                if score > 0:
                    out.nodes.append(GraphNode(
                        name=r["name"],
                        labels=list(r["labels"] or []),
                        summary=r["summary"] or "",
                        attributes=json.loads(r["attributes"] or "{}"),
                        uuid=r["uuid"],
                        score=score,
                    ))
            out.nodes = sorted(out.nodes, key=lambda n: n.score, reverse=True)[:limit]
        elif scope == "edges":
            rows = self._run(
                """
                MATCH (a:TBEntity {userId: $user})-[r:TB_FACT]->(b:TBEntity)
                RETURN r.uuid AS uuid, r.name AS name, r.fact AS fact, a.name AS source, b.name AS target
                ORDER BY r.createdAt DESC
                """,
                user=user_id,
            )
            for r in rows:
                score = match_score(query, r["fact"])
                if score > 0:
                    out.edges.append(GraphEdge(name=r["name"], fact=r["fact"], source=r["source"], target=r["target"], uuid=r["uuid"], score=score))
            out.edges = sorted(out.edges, key=lambda e: e.score, reverse=True)[:limit]
        else:
            rows = self._run(
                """
                MATCH (ep:TBEpisode {userId: $user})
                RETURN ep.uuid AS uuid, ep.source AS source, ep.name AS name, ep.content AS content
                ORDER BY ep.createdAt DESC
                """,
                user=user_id,
            )
            for r in rows:
                text = f"{r['name']}: {r['content']}" if r["name"] else r["content"]
                score = match_score(query, text)
                if score > 0:
                    out.episodes.append(Episode(content=text, source=r["source"], uuid=r["uuid"], score=score))
            out.episodes = sorted(out.episodes, key=lambda e: e.score, reverse=True)[:limit]
        return out

    def search_thread(self, thread_id: str, query: str = "", limit: int = 10) -> list[Episode]:
        rows = self._run(
            """
            MATCH (ep:TBEpisode)-[:IN_THREAD]->(:TBThread {id: $thread})
            RETURN ep.uuid AS uuid, ep.name AS name, ep.content AS content
            ORDER BY ep.createdAt DESC
            """,
            thread=thread_id,
        )
        out = []
        for r in rows:
            text = f"{r['name']}: {r['content']}" if r["name"] else r["content"]
            score = match_score(query, text)
            if score > 0:
                out.append(Episode(content=text, source="thread", uuid=r["uuid"], score=score))
        return sorted(out, key=lambda e: e.score, reverse=True)[:limit]
