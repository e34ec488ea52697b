import pytest
import yaml

from tbridge.entities import LinkResult, ProjectEntities
from tbridge.ingest import ConversationIngestor, HookData, build_ingestor, thread_id_for
from tbridge.ledger import FileLedger, MemoryLedger
from tbridge.session import SESSION_FILE_NAME, SessionGate, YamlSessionStore
from tbridge.store_base import StoreError
from tbridge.store_memory import MemoryStore
from tbridge.transcript import TranscriptError
from transcripts import assistant, user, write_jsonl


@pytest.fixture
def store(settings):
    return MemoryStore(settings)


@pytest.fixture
def ledger():
    return MemoryLedger()


@pytest.fixture
def ingestor(store, ledger, settings):
    return ConversationIngestor(
        store=store,
        ledger=ledger,
        gate=SessionGate(YamlSessionStore()),
        entities=ProjectEntities(store, settings),
        settings=settings,
    )


@pytest.fixture
def hook(tmp_path, project_dir):
    path = write_jsonl(tmp_path / "s1.jsonl", [user("1", "Hi"), assistant("2", "Hello", parent="1")])
    return HookData(session_id="s1", transcript_path=str(path), cwd=str(project_dir))


def _session_file(project_dir):
    return yaml.safe_load((project_dir / SESSION_FILE_NAME).read_text(encoding="utf-8"))


class TestStoreConversation:
    def test_first_run_stores_exchange_and_project(self, ingestor, store, ledger, hook, project_dir):
        report = ingestor.store_conversation(hook)

        assert report.thread_id == "claude-code-s1"
        assert report.project_id == "acme-widgets"
        assert (report.short_committed, report.large_committed) == (2, 0)
        assert report.entity_pass == "succeeded"
        assert report.ledger_saved

        stored = store.thread_messages[thread_id_for("s1")]
        assert [(m.role, m.name, m.content) for m in stored] == [
            ("user", "Developer", "Hi"),
            ("assistant", "Claude Code", "Hello"),
        ]
        assert ledger.load("s1") == {"1", "2"}
        assert "session-s1 OCCURS_IN acme-widgets" in {e.fact for e in store.users["dev"].edges}

        info = _session_file(project_dir)
        assert info["session_id"] == "s1"
        assert info["metadata"] == {"source": "claude-code-hook", "project_id": "acme-widgets"}
        cache = info["project_entity_cache"]
        assert cache["success"] is True
        assert cache["last_processed"]
        assert cache["project_entity"]["project_id"] == "acme-widgets"
        assert set(cache["performance"]) == {"detection_time_ms", "creation_time_ms", "total_time_ms"}

    def test_second_run_submits_nothing(self, ingestor, store, hook):
        ingestor.store_conversation(hook)
        episodes = len(store.users["dev"].episodes)

        report = ingestor.store_conversation(hook)

        assert report.new_messages == 0
        assert report.entity_pass == "skipped"
        assert len(store.thread_messages[thread_id_for("s1")]) == 2
        assert len(store.users["dev"].episodes) == episodes

    def test_only_latest_transaction_is_sent(self, ingestor, store, tmp_path, project_dir):
        path = write_jsonl(
            tmp_path / "s2.jsonl",
            [
                user("1", "old question"),
                assistant("2", "old answer", "1"),
                user("3", "new question", "2"),
                assistant("4", "thinking", "3"),
                assistant("5", "more", "4"),
                assistant("6", "final", "5"),
            ],
        )

        ingestor.store_conversation(HookData(session_id="s2", transcript_path=str(path), cwd=str(project_dir)))

        assert [m.content for m in store.thread_messages["claude-code-s2"]] == ["new question", "more", "final"]

    def test_large_messages_go_to_graph_ingest(self, ingestor, store, ledger, tmp_path, project_dir):
        big = "x" * 3000
        path = write_jsonl(tmp_path / "s3.jsonl", [user("1", "dump it"), assistant("2", big, "1")])

        report = ingestor.store_conversation(HookData(session_id="s3", transcript_path=str(path), cwd=str(project_dir)))

        assert (report.short_committed, report.large_committed) == (1, 1)
        assert any(ep.source == "message" and ep.content == f"Claude Code: {big}" for ep in store.users["dev"].episodes)
        assert ledger.load("s3") == {"1", "2"}

    def test_failed_large_message_is_skipped(self, ingestor, store, ledger, tmp_path, project_dir, monkeypatch):
        add_data = store.add_data

        def flaky(user_id, data_type, data):
            if data_type == "message":
                raise StoreError("payload rejected")
            return add_data(user_id, data_type, data)

        monkeypatch.setattr(store, "add_data", flaky)
        path = write_jsonl(tmp_path / "s4.jsonl", [user("1", "q"), assistant("2", "y" * 2401, "1")])

        report = ingestor.store_conversation(HookData(session_id="s4", transcript_path=str(path), cwd=str(project_dir)))

        assert report.large_failed == 1
        assert ledger.load("s4") == {"1"}

    def test_entity_failure_does_not_block_messages(self, ingestor, store, hook, project_dir, monkeypatch):
        add_data = store.add_data

        def no_entities(user_id, data_type, data):
            if data_type == "json":
                raise StoreError("graph down")
            return add_data(user_id, data_type, data)

        monkeypatch.setattr(store, "add_data", no_entities)

        report = ingestor.store_conversation(hook)

        assert report.entity_pass == "failed"
        assert report.short_committed == 2
        cache = _session_file(project_dir)["project_entity_cache"]
        assert cache["success"] is False
        assert "graph down" in cache["errors"][0]
        assert cache["raw_responses"]["entity_creation"]["success"] is False
        assert "graph down" in cache["raw_responses"]["entity_creation"]["error"]
        # recorded failures are not retried within the session
        assert ingestor.store_conversation(hook).entity_pass == "skipped"

    def test_session_link_failure_fails_entity_pass(self, ingestor, hook, project_dir, monkeypatch):
        monkeypatch.setattr(
            ingestor.entities,
            "link_session",
            lambda session_id, project_id: LinkResult(success=False, error="link down"),
        )

        report = ingestor.store_conversation(hook)

        assert report.entity_pass == "failed"
        assert "link down" in report.errors
        assert report.short_committed == 2
        cache = _session_file(project_dir)["project_entity_cache"]
        assert cache["success"] is False
        assert cache["errors"] == ["link down"]
        assert cache["technologies"] == []
        assert cache["raw_responses"]["session_link"]["success"] is False

    def test_short_batch_failure_leaves_ledger_untouched(self, ingestor, store, ledger, hook, monkeypatch):
        def down(thread_id, messages):
            raise StoreError("thread append failed")

        monkeypatch.setattr(store, "add_messages", down)

        with pytest.raises(StoreError):
            ingestor.store_conversation(hook)
        assert ledger.load("s1") == set()

    def test_ledger_write_failure_is_not_fatal(self, ingestor, hook, monkeypatch):
        def readonly(session_id, ids):
            raise OSError("read-only file system")

        monkeypatch.setattr(ingestor.ledger, "save", readonly)

        report = ingestor.store_conversation(hook)

        assert report.short_committed == 2
        assert report.ledger_saved is False
        assert report.errors

    def test_unreadable_transcript_is_fatal(self, ingestor, tmp_path, project_dir):
        hook = HookData(session_id="s", transcript_path=str(tmp_path / "missing.jsonl"), cwd=str(project_dir))
        with pytest.raises(TranscriptError):
            ingestor.store_conversation(hook)


def test_build_ingestor_picks_ledger(settings):
    assert isinstance(build_ingestor(settings).ledger, MemoryLedger)

    sqlite = settings.model_copy(update={"store_backend": "sqlite"})
    built = build_ingestor(sqlite)
    assert isinstance(built.ledger, FileLedger)
    assert type(built.store).__name__ == "SQLiteStore"
