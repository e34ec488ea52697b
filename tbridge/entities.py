"""Project, technology and organization entities in the knowledge graph.

Entity writes never raise: every failure is folded into a result object so the
caller can record it and carry on storing the conversation. Knowledge shared
with a project group lands in the group's graph (`project-<project id>`)
rather than the developer's.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from .detect.pipeline import detect_technologies
from .detect.types import DetectionResult, TechnologyDetection
from .project import ProjectContext, detect_project
from .session import now_iso
from .settings import Settings
from .store_base import GraphNode, KnowledgeStore, SearchResults, SearchScope

logger = logging.getLogger(__name__)

# Re-detect technologies at most once a day per project
REDETECT_AFTER = timedelta(hours=24)
MAX_SHARED_CHARS = 10_000
_PROJECT_NAME = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class ProjectRelationship:
    subject: str
    predicate: str  # WORKS_ON | USES | BELONGS_TO | OCCURS_IN
    object: str
    confidence: float = 1.0
    context: str | None = None

    def as_fact(self) -> str:
        return f"{self.subject} {self.predicate} {self.object}"


@dataclass
class ProjectEntity:
    name: str  # project id
    properties: dict[str, Any]
    type: str = "Project"

    def cache_view(self, project_path: str) -> dict[str, Any]:
        """Shape recorded in the session file."""
        p = self.properties
        return {
            "project_id": self.name,
            "project_name": p.get("display_name") or self.name,
            "display_name": p.get("display_name"),
            "organization": p.get("organization"),
            "project_path": p.get("path") or project_path,
            "project_type": p.get("project_type") or "unknown",
            "repository": p.get("repository"),
        }


@dataclass
class EntityCreationResult:
    success: bool
    project: ProjectContext | None = None
    project_entity: ProjectEntity | None = None
    relationships: list[ProjectRelationship] = field(default_factory=list)
    technologies: list[TechnologyDetection] = field(default_factory=list)
    message: str | None = None
    error: str | None = None

    @property
    def technologies_detected(self) -> int:
        return len(self.technologies)


@dataclass
class LinkResult:
    success: bool
    message: str | None = None
    error: str | None = None


@dataclass
class ShareResult:
    success: bool
    message: str
    graph_id: str | None = None
    error: str | None = None


def group_graph_id(project: str | None, project_path: str = ".", group_id: str | None = None) -> str:
    """Graph of a named project group, or of the project at `project_path`.

    Raises ValueError for names that are not a plain project slug.
    """
    if project is None:
        return detect_project(project_path, group_id=group_id).group_id
    if not _PROJECT_NAME.match(project):
        raise ValueError("Invalid project name. Must contain only letters, numbers, hyphens, and underscores.")
    return f"project-{project}"


def project_entity_payloads(
    entity: ProjectEntity,
    ctx: ProjectContext,
    detection: DetectionResult | None,
) -> list[dict[str, Any]]:
    props = entity.properties
    payloads = [
        {
            "name": entity.name,
            "summary": f"Project: {props['display_name']}",
            "labels": ["Project", ctx.project_type],
            "attributes": {**props, "technologies": ", ".join(props["technologies"])},
        }
    ]
    for tech in detection.technologies if detection else []:
        payloads.append(
            {
                "name": tech.name,
                "summary": f"Technology: {tech.name}",
                "labels": ["Technology", tech.source],
                "attributes": {
                    "name": tech.name,
                    "confidence": tech.confidence,
                    "source": tech.source,
                    "version": tech.version or "unknown",
                    "context": tech.context or "",
                },
            }
        )
    if ctx.organization:
        payloads.append(
            {
                "name": ctx.organization,
                "summary": f"Organization: {ctx.organization}",
                "labels": ["Organization"],
                "attributes": {"name": ctx.organization, "type": "organization"},
            }
        )
    return payloads


def project_relationships(
    user_id: str,
    ctx: ProjectContext,
    detection: DetectionResult | None,
) -> list[ProjectRelationship]:
    rels = [ProjectRelationship(user_id, "WORKS_ON", ctx.project_id, 1.0, "Project developer relationship")]
    for tech in detection.technologies if detection else []:
        rels.append(
            ProjectRelationship(
                ctx.project_id,
                "USES",
                tech.name,
                tech.confidence,
                tech.context or f"Detected via {tech.source}",
            )
        )
    if ctx.organization:
        rels.append(ProjectRelationship(ctx.project_id, "BELONGS_TO", ctx.organization, 0.95, "Organization ownership"))
    return rels


@dataclass
class ProjectEntities:
    store: KnowledgeStore
    settings: Settings

    @property
    def user_id(self) -> str:
        return self.settings.developer_id

    def _recent_node(self, ctx: ProjectContext) -> GraphNode | None:
        """The stored project node, if it was refreshed within REDETECT_AFTER."""
        try:
            found = self.store.search(self.user_id, f"Project {ctx.project_name}", scope="nodes", limit=5)
        except Exception as e:
            logger.debug("project lookup failed, detecting anyway: %s", e)
            return None

        node = next((n for n in found.nodes if n.name == ctx.project_id), None)
        stamp = node.attributes.get("last_updated") if node else None
        if not isinstance(stamp, str):
            return None
        try:
            updated = datetime.fromisoformat(stamp)
        except ValueError:
            return None
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        return node if datetime.now(timezone.utc) - updated < REDETECT_AFTER else None

    def ensure_project_entity(
        self,
        project_path: str,
        *,
        force: bool = False,
        skip_tech: bool = False,
        confidence_threshold: float | None = None,
        detection: DetectionResult | None = None,
    ) -> EntityCreationResult:
        """Create or refresh the project node and its relationships.

        A `detection` computed by the caller is used as is; otherwise
        technologies are detected here unless `skip_tech` is set or the project
        node was refreshed within the last day and `force` is not set.
        """
        try:
            ctx = detect_project(project_path, group_id=self.settings.group_id)

            if detection is None and not skip_tech:
                recent = None if force else self._recent_node(ctx)
                if recent is not None:
                    logger.info("project entity %s is up to date, skipping detection", ctx.project_id)
                    return EntityCreationResult(
                        success=True,
                        project=ctx,
                        project_entity=ProjectEntity(name=ctx.project_id, properties=dict(recent.attributes)),
                        message="Project entity is up to date",
                    )
                threshold = self.settings.confidence_threshold if confidence_threshold is None else confidence_threshold
                detection = detect_technologies(ctx.project_path, threshold)

            techs = detection.technologies if detection else []
            stamp = now_iso()
            entity = ProjectEntity(
                name=ctx.project_id,
                properties={
                    "display_name": ctx.project_name,
                    "organization": ctx.organization,
                    "repository": ctx.git_remote,
                    "project_type": ctx.project_type,
                    "technologies": [t.name for t in techs],
                    "path": ctx.project_path,
                    "created": stamp,
                    "last_updated": stamp,
                    "confidence": {t.name: t.confidence for t in techs},
                    "metadata": {
                        "group_id": ctx.group_id,
                        "detection_sources": [t.source for t in techs],
                        "overall_confidence": detection.overall_confidence if detection else 0.0,
                        "detected_at": detection.detected_at if detection else None,
                    },
                },
            )
            relationships = project_relationships(self.user_id, ctx, detection)

            for payload in project_entity_payloads(entity, ctx, detection):
                self.store.add_data(self.user_id, "json", json.dumps(payload))
            for rel in relationships:
                self.store.add_data(self.user_id, "text", rel.as_fact())

            logger.info(
                "project entity %s: %d technologies, %d relationships",
                entity.name, len(techs), len(relationships),
            )
            return EntityCreationResult(
                success=True,
                project=ctx,
                project_entity=entity,
                relationships=relationships,
                technologies=techs,
                message=f"Project entity created with {len(relationships)} relationships",
            )
        except Exception as e:
            logger.error("project entity creation failed for %s: %s", project_path, e)
            return EntityCreationResult(success=False, error=f"Failed to create project entity: {e}")

    def link_session(self, session_id: str, project_id: str) -> LinkResult:
        try:
            self.store.add_data(self.user_id, "text", f"session-{session_id} OCCURS_IN {project_id}")
        except Exception as e:
            logger.error("could not link session %s to %s: %s", session_id, project_id, e)
            return LinkResult(success=False, error=f"Failed to create session-project relationship: {e}")
        return LinkResult(success=True, message=f"Session {session_id} linked to project {project_id}")

    def project_summary(self, project_path: str) -> dict[str, Any]:
        ctx = detect_project(project_path, group_id=self.settings.group_id)
        nodes = self.store.search(self.user_id, ctx.project_id, scope="nodes", limit=10).nodes
        node = next((n for n in nodes if n.name == ctx.project_id), None)

        technologies: list[str] = []
        last_activity = None
        if node:
            raw = node.attributes.get("technologies")
            technologies = [t for t in raw.split(", ") if t] if isinstance(raw, str) else []
            last_activity = node.attributes.get("last_updated")

        edges = self.store.search(self.user_id, f"OCCURS_IN {ctx.project_id}", scope="edges", limit=50).edges
        sessions = [e for e in edges if e.name == "OCCURS_IN" and e.target == ctx.project_id and e.source.startswith("session-")]

        return {
            "project_id": ctx.project_id,
            "project_name": ctx.project_name,
            "organization": ctx.organization,
            "project_path": ctx.project_path,
            "technologies": technologies,
            "last_activity": last_activity,
            "session_count": len(sessions),
        }

    def share_knowledge(self, message: str, project: str | None = None, project_path: str = ".") -> ShareResult:
        """Add a note to a project group graph, defaulting to the current project's."""
        text = (message or "").strip()
        if not text:
            return ShareResult(success=False, message="Failed to share knowledge", error="Message is required and cannot be empty")
        if len(text) > MAX_SHARED_CHARS:
            return ShareResult(
                success=False,
                message="Failed to share knowledge",
                error=f"Message is too long (max {MAX_SHARED_CHARS:,} characters)",
            )

        try:
            graph_id = group_graph_id(project, project_path, self.settings.group_id)
            self.store.ensure_user(graph_id)
            self.store.add_data(graph_id, "text", f"[{now_iso()}] {text}")
        except Exception as e:
            logger.error("could not share knowledge to %s: %s", project or project_path, e)
            return ShareResult(success=False, message="Failed to share knowledge", error=str(e))

        logger.info("shared %d chars to %s as %s", len(text), graph_id, self.user_id)
        preview = text if len(text) <= 100 else text[:100] + "..."
        return ShareResult(
            success=True,
            message=f'Knowledge shared to {graph_id} by {self.user_id}: "{preview}"',
            graph_id=graph_id,
        )

    def search_project(
        self,
        query: str,
        project: str | None = None,
        project_path: str = ".",
        scope: SearchScope = "edges",
        limit: int = 10,
    ) -> SearchResults:
        graph_id = group_graph_id(project, project_path, self.settings.group_id)
        return self.store.search(graph_id, query, scope=scope, limit=limit)
