"""Per-project session file (`temporal-bridge.yaml`).

The file records which Claude Code session last touched the project and the
outcome of the project-entity pass for that session. It gates the entity pass:
the expensive detection runs once per (project, session), on the first hook
call of a session, and every later transcript flush of that session skips it.

Layout::

    session_id: 3f1c...
    last_updated: '2026-10-18T09:12:44.120000+00:00'
    project_entity_cache:
      last_processed: '2026-10-18T09:12:44.119000+00:00'
      success: true
      technologies_detected: 4
      project_entity: {...}
      technologies: [...]
      relationships: [...]
      raw_responses: {...}
      performance: {detection_time_ms: 812, creation_time_ms: 40, total_time_ms: 860}
      errors: []
    metadata:
      source: claude-code-hook
      project_id: acme-widgets
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import yaml

logger = logging.getLogger(__name__)

SESSION_FILE_NAME = "temporal-bridge.yaml"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def prune_empty(value: Any) -> Any:
    """Recursively drop None values and the mappings they leave empty.

    Returns None when nothing is left. List elements that prune to None are
    removed; an empty list itself is kept.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        items = (prune_empty(v) for v in value)
        return [v for v in items if v is not None]
    if isinstance(value, dict):
        cleaned = {}
        for k, v in value.items():
            pv = prune_empty(v)
            if pv is not None:
                cleaned[k] = pv
        return cleaned or None
    return value


@dataclass
class EntityOutcome:
    """What one project-entity pass produced, as recorded in the session file."""

    success: bool
    technologies_detected: int | None = None
    project_entity: dict[str, Any] | None = None
    technologies: list[dict[str, Any]] = field(default_factory=list)
    relationships: list[dict[str, Any]] = field(default_factory=list)
    raw_responses: dict[str, Any] = field(default_factory=dict)
    performance: dict[str, int] | None = None
    errors: list[str] = field(default_factory=list)


class SessionStore(Protocol):
    def read(self, project_path: str) -> dict[str, Any] | None: ...

    def write(self, project_path: str, info: dict[str, Any]) -> None: ...


class YamlSessionStore:
    def path_for(self, project_path: str) -> Path:
        return Path(project_path) / SESSION_FILE_NAME

    def read(self, project_path: str) -> dict[str, Any] | None:
        p = self.path_for(project_path)
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, yaml.YAMLError) as e:
            logger.warning("ignoring unreadable session file %s: %s", p, e)
            return None
        return data if isinstance(data, dict) else None

    def write(self, project_path: str, info: dict[str, Any]) -> None:
        p = self.path_for(project_path)
        p.write_text(yaml.safe_dump(info, sort_keys=False, default_flow_style=False), encoding="utf-8")


@dataclass
class MemorySessionStore:
    files: dict[str, dict[str, Any]] = field(default_factory=dict)

    def read(self, project_path: str) -> dict[str, Any] | None:
        return self.files.get(str(project_path))

    def write(self, project_path: str, info: dict[str, Any]) -> None:
        self.files[str(project_path)] = info


@dataclass
class SessionGate:
    store: SessionStore

    def read(self, project_path: str) -> dict[str, Any] | None:
        info = self.store.read(str(project_path))
        if not info or not info.get("session_id") or not info.get("last_updated"):
            return None
        return info

    def current_session_id(self, project_path: str) -> str | None:
        info = self.read(project_path)
        return info["session_id"] if info else None

    def should_process(self, project_path: str, session_id: str) -> bool:
        info = self.read(project_path)
        if info is None:
            return True
        if info.get("session_id") != session_id:
            return True
        cache = info.get("project_entity_cache") or {}
        return not cache.get("last_processed")

    def update(
        self,
        project_path: str,
        *,
        session_id: str | None = None,
        entity_cache: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Merge an update into the session file.

        Fields the update does not mention survive: a bare session id update
        keeps the cached entity result written by an earlier pass.
        """
        existing = self.read(project_path) or {}
        old_cache = existing.get("project_entity_cache") or {}

        cache = None
        if old_cache or entity_cache:
            cache = {"last_processed": "", "success": False, **old_cache, **(entity_cache or {})}

        info = {
            "session_id": session_id or existing.get("session_id") or "",
            "last_updated": now_iso(),
            "project_entity_cache": cache,
            "metadata": {**(existing.get("metadata") or {}), **(metadata or {})},
        }
        self.store.write(str(project_path), prune_empty(info) or {})
        return info

    def mark_processed(self, project_path: str, session_id: str, outcome: EntityOutcome) -> dict[str, Any]:
        cache = asdict(outcome)
        cache["last_processed"] = now_iso()
        return self.update(project_path, session_id=session_id, entity_cache=cache)
