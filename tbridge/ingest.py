from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field

from pydantic import BaseModel

from .detect.pipeline import detect_technologies
from .detect.types import DetectionResult
from .entities import EntityCreationResult, ProjectEntities
from .ledger import FileLedger, LedgerStore, MemoryLedger, filter_new, remember
from .project import ProjectContext, detect_project
from .router import large_payload, route
from .session import EntityOutcome, SessionGate, YamlSessionStore
from .settings import Settings
from .store_base import KnowledgeStore, StoreError, ThreadMessage, open_store
from .transaction import cap_transaction, find_current_transaction
from .transcript import Message, read_transcript

logger = logging.getLogger(__name__)

THREAD_PREFIX = "claude-code-"
HOOK_SOURCE = "claude-code-hook"


class HookData(BaseModel):
    """Payload Claude Code sends to a Stop hook on stdin."""

    session_id: str
    transcript_path: str
    cwd: str | None = None
    hook_event_name: str = "Stop"
    stop_hook_active: bool = False


@dataclass
class IngestReport:
    session_id: str
    thread_id: str
    project_id: str | None = None
    transaction_size: int = 0
    new_messages: int = 0
    short_committed: int = 0
    large_committed: int = 0
    large_failed: int = 0
    entity_pass: str = "skipped"  # skipped | succeeded | failed
    ledger_saved: bool = False
    errors: list[str] = field(default_factory=list)


def thread_id_for(session_id: str) -> str:
    return f"{THREAD_PREFIX}{session_id}"


def _ms(since: float) -> int:
    return int((time.perf_counter() - since) * 1000)


@dataclass
class ConversationIngestor:
    store: KnowledgeStore
    ledger: LedgerStore
    gate: SessionGate
    entities: ProjectEntities
    settings: Settings

    @property
    def user_id(self) -> str:
        return self.settings.developer_id

    def store_conversation(self, hook: HookData) -> IngestReport:
        """Commit the newest exchange of a session to the knowledge store.

        Raises TranscriptError when the transcript cannot be read and StoreError
        when the user, thread or short-message batch cannot be written. Every
        other failure is logged and recorded in the report.
        """
        transcript = read_transcript(hook.transcript_path)
        ctx = detect_project(hook.cwd, group_id=self.settings.group_id)
        report = IngestReport(
            session_id=hook.session_id,
            thread_id=thread_id_for(hook.session_id),
            project_id=ctx.project_id,
        )

        self.store.ensure_user(self.user_id)
        self.store.ensure_thread(report.thread_id, self.user_id)

        self._entity_pass(hook.session_id, ctx, report)

        transaction = cap_transaction(find_current_transaction(transcript.messages, transcript.records))
        report.transaction_size = len(transaction)

        try:
            self.gate.update(
                ctx.project_path,
                session_id=hook.session_id,
                metadata={"source": HOOK_SOURCE, "project_id": ctx.project_id},
            )
        except Exception as e:
            logger.warning("could not update session info in %s: %s", ctx.project_path, e)

        stored = self.ledger.load(hook.session_id)
        fresh = filter_new(transaction, stored)
        report.new_messages = len(fresh)
        if not fresh:
            logger.info("nothing new to store for session %s", hook.session_id)
            return report

        routed = route(fresh, self.settings.large_message_chars)

        if routed.short:
            # a failure here leaves the ledger untouched so the batch is retried
            self.store.add_messages(
                report.thread_id,
                [ThreadMessage(**m.as_thread_message()) for m in routed.short],
            )
            remember(stored, routed.short)
            report.short_committed = len(routed.short)

        for m in routed.large:
            if self._commit_large(m):
                remember(stored, [m])
                report.large_committed += 1
            else:
                report.large_failed += 1

        try:
            self.ledger.save(hook.session_id, stored)
            report.ledger_saved = True
        except OSError as e:
            logger.warning("could not save stored ids for %s: %s", hook.session_id, e)
            report.errors.append(f"ledger: {e}")

        logger.info(
            "stored %d short and %d large messages for session %s",
            report.short_committed, report.large_committed, hook.session_id,
        )
        return report

    def _commit_large(self, m: Message) -> bool:
        logger.info("storing large %s message (%d chars)", m.role, len(m.content))
        try:
            self.store.add_data(self.user_id, "message", large_payload(m))
        except StoreError as e:
            logger.warning("large message %s (%d chars) not stored: %s", m.id or "?", len(m.content), e)
            return False
        return True

    def _entity_pass(self, session_id: str, ctx: ProjectContext, report: IngestReport) -> None:
        path = ctx.project_path
        if not self.gate.should_process(path, session_id):
            logger.debug("entity pass already done for %s in session %s", ctx.project_id, session_id)
            return

        started = time.perf_counter()
        detection: DetectionResult | None = None
        try:
            detection = detect_technologies(path, self.settings.confidence_threshold)
        except Exception as e:
            logger.warning("technology detection failed for %s: %s", path, e)
        detected_at = time.perf_counter()

        result = self.entities.ensure_project_entity(path, detection=detection, skip_tech=detection is None)
        performance = {
            "detection_time_ms": int((detected_at - started) * 1000),
            "creation_time_ms": _ms(detected_at),
            "total_time_ms": _ms(started),
        }

        outcome = self._outcome(session_id, ctx, result, performance)
        report.entity_pass = "succeeded" if outcome.success else "failed"
        if not outcome.success:
            report.errors.extend(outcome.errors)

        try:
            self.gate.mark_processed(path, session_id, outcome)
        except Exception as e:
            logger.warning("could not record entity pass in %s: %s", path, e)

    def _outcome(
        self,
        session_id: str,
        ctx: ProjectContext,
        result: EntityCreationResult,
        performance: dict[str, int],
    ) -> EntityOutcome:
        if not result.success or result.project_entity is None:
            return EntityOutcome(
                success=False,
                technologies_detected=0,
                raw_responses={"entity_creation": {"success": False, "error": result.error}},
                performance=performance,
                errors=[result.error or "project entity creation failed"],
            )

        link = self.entities.link_session(session_id, result.project_entity.name)
        linked = link.success and not link.error
        return EntityOutcome(
            success=linked,
            technologies_detected=result.technologies_detected,
            project_entity=result.project_entity.cache_view(ctx.project_path),
            technologies=[asdict(t) for t in result.technologies] if linked else [],
            relationships=[asdict(r) for r in result.relationships],
            raw_responses={
                "entity_creation": {"success": result.success, "message": result.message},
                "session_link": asdict(link),
            },
            performance=performance,
            errors=[] if linked else [link.error or "session link failed"],
        )


def build_ingestor(settings: Settings, store: KnowledgeStore | None = None) -> ConversationIngestor:
    store = store or open_store(settings)
    ledger: LedgerStore = MemoryLedger() if settings.store_backend == "memory" else FileLedger(settings.state_dir)
    return ConversationIngestor(
        store=store,
        ledger=ledger,
        gate=SessionGate(YamlSessionStore()),
        entities=ProjectEntities(store, settings),
        settings=settings,
    )
