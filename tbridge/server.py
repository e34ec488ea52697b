from __future__ import annotations

import os
from dataclasses import asdict, dataclass

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .settings import Settings
from .logs import setup_logging
from .ingest import ConversationIngestor, HookData, build_ingestor
from .store_base import KnowledgeStore, StoreError
from .transcript import TranscriptError
from .detect.pipeline import detect_technologies


@dataclass
class AppState:
    settings: Settings
    store: KnowledgeStore
    ingestor: ConversationIngestor


def make_state(settings: Settings | None = None) -> AppState:
    load_dotenv()
    st = settings or Settings()
    setup_logging(st.log_level)

    ingestor = build_ingestor(st)
    ingestor.store.ensure_schema()

    return AppState(settings=st, store=ingestor.store, ingestor=ingestor)


app = FastAPI(title="temporal-bridge", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATE: AppState | None = None


def state() -> AppState:
    global STATE
    if STATE is None:
        STATE = make_state()
    return STATE


@app.get("/health")
def health():
    st = state().settings
    return {
        "ok": True,
        "store_backend": st.store_backend,
        "developer_id": st.developer_id,
        "sqlite_path": st.sqlite_path if st.store_backend == "sqlite" else None,
    }


@app.post("/hooks/stop")
def hook_stop(hook: HookData):
    """Same as the `store-conversation` command, for hooks that POST instead of exec."""
    try:
        report = state().ingestor.store_conversation(hook)
    except TranscriptError as e:
        return JSONResponse(status_code=400, content={"ok": False, "error": str(e)})
    except StoreError as e:
        return JSONResponse(status_code=502, content={"ok": False, "error": str(e)})
    return {"ok": True, "report": asdict(report)}


class ShareRequest(BaseModel):
    message: str
    project: str | None = None
    path: str | None = None


@app.get("/search")
def search(q: str = "*", scope: str = "edges", limit: int = 10, thread: str | None = None, project: str | None = None):
    if scope not in ("edges", "nodes", "episodes"):
        return JSONResponse(status_code=400, content={"ok": False, "error": f"unknown scope {scope}"})
    s = state()
    try:
        if thread:
            return {"episodes": [asdict(ep) for ep in s.store.search_thread(thread, q, limit=limit)]}
        if project:
            res = s.ingestor.entities.search_project(q, project, scope=scope, limit=limit)
        else:
            res = s.store.search(s.settings.developer_id, q, scope=scope, limit=limit)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"ok": False, "error": str(e)})
    except StoreError as e:
        return JSONResponse(status_code=502, content={"ok": False, "error": str(e)})
    return asdict(res)


@app.post("/knowledge")
def share_knowledge(req: ShareRequest):
    result = state().ingestor.entities.share_knowledge(req.message, req.project, req.path or os.getcwd())
    if not result.success:
        return JSONResponse(status_code=400, content={"ok": False, "error": result.error})
    return {"ok": True, "graph_id": result.graph_id, "message": result.message}


@app.get("/projects/current")
def current_project(path: str | None = None):
    s = state()
    try:
        return s.ingestor.entities.project_summary(path or os.getcwd())
    except StoreError as e:
        return JSONResponse(status_code=502, content={"ok": False, "error": str(e)})


@app.get("/technologies")
def technologies(path: str | None = None, threshold: float | None = None):
    s = state()
    cutoff = s.settings.confidence_threshold if threshold is None else threshold
    return asdict(detect_technologies(path or os.getcwd(), cutoff))
