from __future__ import annotations

import json
import os
import sqlite3
import time
import uuid
from dataclasses import dataclass

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


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  created_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS threads (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  created_at_ms INTEGER NOT NULL,
  FOREIGN KEY(user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS episodes (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  thread_id TEXT,
  source TEXT NOT NULL,
  role TEXT,
  name TEXT,
  content TEXT NOT NULL,
  created_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS nodes (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  name TEXT NOT NULL,
  labels_json TEXT NOT NULL,
  summary TEXT NOT NULL,
  props_json TEXT NOT NULL,
  updated_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS edges (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  src TEXT NOT NULL,
  rel TEXT NOT NULL,
  dst TEXT NOT NULL,
  fact TEXT NOT NULL,
  created_at_ms INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_episodes_user ON episodes(user_id);
CREATE INDEX IF NOT EXISTS idx_episodes_thread ON episodes(thread_id);
CREATE INDEX IF NOT EXISTS idx_nodes_user ON nodes(user_id);
CREATE INDEX IF NOT EXISTS idx_edges_user ON edges(user_id);
CREATE INDEX IF NOT EXISTS idx_edges_rel ON edges(rel);
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso(ms: int) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ms / 1000))


def _node_id(user_id: str, name: str) -> str:
    return f"{user_id}::{name.strip().lower()}"


def _edge_id(user_id: str, src: str, rel: str, dst: str) -> str:
    return f"{user_id}::{src.lower()}::{rel}::{dst.lower()}"


@dataclass
class SQLiteStore:
    """Persistent local knowledge store (no server required)."""

    settings: Settings

    def _db_path(self) -> str:
        return os.path.expanduser(self.settings.sqlite_path)

    def _connect(self) -> sqlite3.Connection:
        path = self._db_path()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        con = sqlite3.connect(path)
        try:
            con.execute("PRAGMA journal_mode=WAL")
            con.execute("PRAGMA synchronous=NORMAL")
            con.executescript(SCHEMA)
        except BaseException:
            con.close()
            raise
        return con

    def _run(self, fn):
        try:
            con = self._connect()
            try:
                with con:
                    return fn(con)
            finally:
                con.close()
        except sqlite3.Error as e:
            raise StoreError(f"sqlite store: {e}") from e

    def ensure_schema(self) -> None:
        self._run(lambda con: None)

    def ensure_user(self, user_id: str) -> None:
        self._run(lambda con: con.execute(
            "INSERT OR IGNORE INTO users(id,created_at_ms) VALUES(?,?)", (user_id, _now_ms())
        ))

    def ensure_thread(self, thread_id: str, user_id: str) -> None:
        def op(con: sqlite3.Connection) -> None:
            con.execute("INSERT OR IGNORE INTO users(id,created_at_ms) VALUES(?,?)", (user_id, _now_ms()))
            con.execute(
                "INSERT OR IGNORE INTO threads(id,user_id,created_at_ms) VALUES(?,?,?)",
                (thread_id, user_id, _now_ms()),
            )
        self._run(op)

    def add_messages(self, thread_id: str, messages: list[ThreadMessage]) -> None:
        def op(con: sqlite3.Connection) -> None:
            row = con.execute("SELECT user_id FROM threads WHERE id=?", (thread_id,)).fetchone()
            if row is None:
                raise StoreError(f"unknown thread {thread_id}")
            now = _now_ms()
            con.executemany(
                "INSERT INTO episodes(id,user_id,thread_id,source,role,name,content,created_at_ms) VALUES(?,?,?,?,?,?,?,?)",
                [
                    (str(uuid.uuid4()), row[0], thread_id, "thread", m.role, m.name, m.content, now)
                    for m in messages
                ],
            )
        self._run(op)

    def add_data(self, user_id: str, data_type: DataType, data: str) -> None:
        def op(con: sqlite3.Connection) -> None:
            now = _now_ms()
            con.execute(
                "INSERT INTO episodes(id,user_id,thread_id,source,role,name,content,created_at_ms) VALUES(?,?,?,?,?,?,?,?)",
                (str(uuid.uuid4()), user_id, None, data_type, None, None, data, now),
            )
            if data_type == "json":
                node = entity_from_json(data)
                if node:
                    con.execute(
                        "INSERT OR REPLACE INTO nodes(id,user_id,name,labels_json,summary,props_json,updated_at_ms) VALUES(?,?,?,?,?,?,?)",
                        (
                            _node_id(user_id, node.name), user_id, node.name,
                            json.dumps(node.labels), node.summary, json.dumps(node.attributes), now,
                        ),
                    )
            elif data_type == "text":
                fact = parse_fact(data)
                if fact:
                    subj, rel, obj = fact
                    for name in (subj, obj):
                        con.execute(
                            "INSERT OR IGNORE INTO nodes(id,user_id,name,labels_json,summary,props_json,updated_at_ms) VALUES(?,?,?,?,?,?,?)",
                            (_node_id(user_id, name), user_id, name, "[]", "", "{}", now),
                        )
                    con.execute(
                        "INSERT OR REPLACE INTO edges(id,user_id,src,rel,dst,fact,created_at_ms) VALUES(?,?,?,?,?,?,?)",
                        (_edge_id(user_id, subj, rel, obj), user_id, subj, rel, obj, data, now),
                    )
        self._run(op)

    def search(self, user_id: str, query: str, scope: SearchScope = "edges", limit: int = 10) -> SearchResults:
        def op(con: sqlite3.Connection) -> SearchResults:
            out = SearchResults()
            if scope == "nodes":
                cur = con.execute(
                    "SELECT id,name,labels_json,summary,props_json,updated_at_ms FROM nodes WHERE user_id=? ORDER BY updated_at_ms DESC",
                    (user_id,),
                )
                for nid, name, labels_json, summary, props_json, ts in cur.fetchall():
                    score = match_score(query, name, summary, labels_json, props_json)
                    if score > 0:
                        out.nodes.append(GraphNode(
                            name=name,
                            labels=json.loads(labels_json),
                            summary=summary,
                            attributes=json.loads(props_json),
                            uuid=nid,
                            created_at=_iso(ts),
                            score=score,
                        ))
                out.nodes = sorted(out.nodes, key=lambda n: n.score, reverse=True)[:limit]
            elif scope == "edges":
                cur = con.execute(
                    "SELECT id,src,rel,dst,fact,created_at_ms FROM edges WHERE user_id=? ORDER BY created_at_ms DESC",
                    (user_id,),
                )
                for eid, src, rel, dst, fact, ts in cur.fetchall():
                    score = match_score(query, fact)
                    if score > 0:
                        out.edges.append(GraphEdge(name=rel, fact=fact, source=src, target=dst, uuid=eid, created_at=_iso(ts), score=score))
                out.edges = sorted(out.edges, key=lambda e: e.score, reverse=True)[:limit]
            else:
                cur = con.execute(
                    "SELECT id,source,name,content,created_at_ms FROM episodes WHERE user_id=? ORDER BY created_at_ms DESC",
                    (user_id,),
                )
                for epid, source, name, content, ts in cur.fetchall():
                    text = f"{name}: {content}" if name else content
                    score = match_score(query, text)
                    if score > 0:
                        out.episodes.append(Episode(content=text, source=source, uuid=epid, created_at=_iso(ts), score=score))
                out.episodes = sorted(out.episodes, key=lambda e: e.score, reverse=True)[:limit]
            return out
        return self._run(op)

    def search_thread(self, thread_id: str, query: str = "", limit: int = 10) -> list[Episode]:
        def op(con: sqlite3.Connection) -> list[Episode]:
            cur = con.execute(
                "SELECT id,name,content,created_at_ms FROM episodes WHERE thread_id=? ORDER BY created_at_ms DESC, rowid DESC",
                (thread_id,),
            )
            out = []
            for epid, name, content, ts in cur.fetchall():
                text = f"{name}: {content}" if name else content
                score = match_score(query, text)
                if score > 0:
                    out.append(Episode(content=text, source="thread", uuid=epid, created_at=_iso(ts), score=score))
            return sorted(out, key=lambda e: e.score, reverse=True)[:limit]
        return self._run(op)
