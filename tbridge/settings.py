from pydantic import BaseModel, Field
import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


class Settings(BaseModel):
    # Knowledge graph user every conversation is stored under
    developer_id: str = Field(default_factory=lambda: os.getenv("DEVELOPER_ID", "developer"))

    # Store backend: "neo4j" (bolt), "sqlite" (local persistent), or "memory" (in-process, tests/demo)
    store_backend: str = Field(default_factory=lambda: os.getenv("STORE_BACKEND", "sqlite"))
    sqlite_path: str = Field(
        default_factory=lambda: os.path.expanduser(os.getenv("TBRIDGE_SQLITE_PATH", "~/.claude/temporal-bridge.sqlite"))
    )

    neo4j_uri: str = Field(default_factory=lambda: os.getenv("NEO4J_URI", "bolt://localhost:7687"))
    neo4j_user: str = Field(default_factory=lambda: os.getenv("NEO4J_USER", "neo4j"))
    neo4j_password: str = Field(default_factory=lambda: os.getenv("NEO4J_PASSWORD", "neo4jpassword"))

    # Where per-session stored-id ledgers live
    state_dir: str = Field(default_factory=lambda: os.path.expanduser(os.getenv("TBRIDGE_STATE_DIR", "~/.claude")))

    # Thread append rejects payloads over 2500 chars; keep a margin
    large_message_chars: int = Field(default_factory=lambda: _env_int("TBRIDGE_LARGE_MESSAGE_CHARS", 2400))
    confidence_threshold: float = Field(default_factory=lambda: _env_float("TBRIDGE_CONFIDENCE_THRESHOLD", 0.6))

    group_id: str | None = Field(default_factory=lambda: os.getenv("GROUP_ID") or None)
    log_level: str = Field(default_factory=lambda: os.getenv("TBRIDGE_LOG_LEVEL", "INFO"))
