import json

import pytest
from typer.testing import CliRunner

from tbridge.cli import app
from transcripts import assistant, user, write_jsonl

runner = CliRunner()


@pytest.fixture(autouse=True)
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "sqlite")
    monkeypatch.setenv("TBRIDGE_SQLITE_PATH", str(tmp_path / "kg.sqlite"))
    monkeypatch.setenv("TBRIDGE_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("DEVELOPER_ID", "dev")
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def transcript(tmp_path):
    return write_jsonl(tmp_path / "s1.jsonl", [user("1", "Hi"), assistant("2", "Hello", parent="1")])


class TestStoreConversation:
    def test_options(self, transcript, project_dir):
        args = ["store-conversation", "--session-id", "s1", "--transcript", str(transcript), "--cwd", str(project_dir)]

        first = runner.invoke(app, args)
        second = runner.invoke(app, args)

        assert first.exit_code == 0, first.output
        assert "2 short" in first.output
        assert second.exit_code == 0
        assert "0 short" in second.output

    def test_hook_json_on_stdin(self, transcript, project_dir, tmp_path):
        payload = {
            "session_id": "s1",
            "transcript_path": str(transcript),
            "cwd": str(project_dir),
            "hook_event_name": "Stop",
            "stop_hook_active": False,
        }

        result = runner.invoke(app, ["store-conversation"], input=json.dumps(payload))

        assert result.exit_code == 0, result.output
        stored = (tmp_path / "state" / "temporal-bridge-stored-uuids-s1.txt").read_text(encoding="utf-8")
        assert stored.split("\n") == ["1", "2"]

    def test_missing_input_exits_1(self):
        result = runner.invoke(app, ["store-conversation"])
        assert result.exit_code == 1

    def test_invalid_hook_json_exits_1(self):
        result = runner.invoke(app, ["store-conversation"], input='{"cwd": "/tmp"}')
        assert result.exit_code == 1

    def test_unreadable_transcript_exits_1(self, tmp_path, project_dir):
        result = runner.invoke(
            app,
            ["store-conversation", "--session-id", "s1", "--transcript", str(tmp_path / "gone.jsonl"), "--cwd", str(project_dir)],
        )
        assert result.exit_code == 1
        assert "ERROR" in result.output


def test_should_process_flips_after_store(transcript, project_dir):
    assert runner.invoke(app, ["should-process", str(project_dir), "s1"]).output.strip() == "true"

    runner.invoke(app, ["store-conversation", "--session-id", "s1", "--transcript", str(transcript), "--cwd", str(project_dir)])

    assert runner.invoke(app, ["should-process", str(project_dir), "s1"]).output.strip() == "false"
    assert runner.invoke(app, ["should-process", str(project_dir), "s2"]).output.strip() == "true"


def test_detect_tech(project_dir):
    result = runner.invoke(app, ["detect-tech", str(project_dir)])

    assert result.exit_code == 0
    assert "React" in result.output
    assert "Docker" in result.output


def test_project_ensure_then_search(project_dir):
    result = runner.invoke(app, ["project", str(project_dir), "--ensure"])

    assert result.exit_code == 0, result.output
    assert '"project_id": "acme-widgets"' in result.output

    found = runner.invoke(app, ["search", "acme-widgets USES", "--scope", "edges"])
    assert "acme-widgets USES React" in found.output


def test_search_rejects_unknown_scope():
    assert runner.invoke(app, ["search", "x", "--scope", "everything"]).exit_code == 1


def test_init_db(tmp_path):
    result = runner.invoke(app, ["init-db"])

    assert result.exit_code == 0
    assert "schema ensured" in result.output
    assert (tmp_path / "kg.sqlite").exists()


class TestProjectGroups:
    def test_share_then_search_group(self, project_dir):
        shared = runner.invoke(app, ["share-knowledge", "Use pnpm workspaces", "--path", str(project_dir)])

        assert shared.exit_code == 0, shared.output
        assert "project-acme-widgets" in shared.output

        by_path = runner.invoke(app, ["search", "pnpm", "--group", "--path", str(project_dir), "--scope", "episodes"])
        by_name = runner.invoke(app, ["search", "pnpm", "--project", "acme-widgets", "--scope", "episodes"])
        personal = runner.invoke(app, ["search", "pnpm", "--scope", "episodes"])

        assert "pnpm workspaces" in by_path.output
        assert "pnpm workspaces" in by_name.output
        assert "(no results)" in personal.output

    def test_share_to_named_project(self):
        result = runner.invoke(app, ["share-knowledge", "Deploys freeze on Fridays", "-p", "billing"])

        assert result.exit_code == 0, result.output
        assert "project-billing" in result.output
        found = runner.invoke(app, ["search", "Fridays", "--project", "billing", "--scope", "episodes"])
        assert "freeze on Fridays" in found.output

    def test_empty_message_exits_1(self, project_dir):
        result = runner.invoke(app, ["share-knowledge", "   ", "--path", str(project_dir)])
        assert result.exit_code == 1

    def test_invalid_project_name_exits_1(self):
        assert runner.invoke(app, ["share-knowledge", "note", "-p", "../etc"]).exit_code == 1
        assert runner.invoke(app, ["search", "note", "--project", "a b"]).exit_code == 1


class TestThreadSearch:
    def test_search_within_thread(self, transcript, project_dir):
        runner.invoke(app, ["store-conversation", "--session-id", "s1", "--transcript", str(transcript), "--cwd", str(project_dir)])

        found = runner.invoke(app, ["search", "Hello", "--thread", "claude-code-s1"])
        other = runner.invoke(app, ["search", "Hello", "--thread", "claude-code-s2"])

        assert found.exit_code == 0, found.output
        assert "Hello" in found.output
        assert "(no results)" in other.output

    def test_thread_and_project_are_exclusive(self):
        result = runner.invoke(app, ["search", "x", "--thread", "claude-code-s1", "--project", "acme"])
        assert result.exit_code == 1
