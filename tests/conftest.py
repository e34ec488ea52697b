import json

import pytest

from tbridge.settings import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "GROUP_ID",
        "DEVELOPER_ID",
        "STORE_BACKEND",
        "TBRIDGE_STATE_DIR",
        "TBRIDGE_SQLITE_PATH",
        "TBRIDGE_LARGE_MESSAGE_CHARS",
        "TBRIDGE_CONFIDENCE_THRESHOLD",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        developer_id="dev",
        store_backend="memory",
        sqlite_path=str(tmp_path / "kg.sqlite"),
        state_dir=str(tmp_path / "state"),
    )


@pytest.fixture
def project_dir(tmp_path):
    """A small TypeScript + React project with a Dockerfile."""
    root = tmp_path / "acme-widgets"
    (root / "src").mkdir(parents=True)
    (root / "package.json").write_text(
        json.dumps(
            {
                "name": "@acme/widgets",
                "dependencies": {"react": "^18.2.0"},
                "devDependencies": {"typescript": "^5.4.0"},
            }
        ),
        encoding="utf-8",
    )
    (root / "tsconfig.json").write_text("{}", encoding="utf-8")
    (root / "Dockerfile").write_text("FROM node:20\n", encoding="utf-8")
    for i in range(4):
        (root / "src" / f"mod{i}.ts").write_text("export {}\n", encoding="utf-8")
    return root
