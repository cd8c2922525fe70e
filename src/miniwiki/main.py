"""MiniWiki FastAPI application.

A thin presentation adapter over :class:`WikiEngine`: every route raises one
engine operation and returns the resulting state, and clients re-render after
each call or when an event arrives on ``/ws/events``.
"""

import logging
from typing import Any, Literal

from fastapi import APIRouter, Body, FastAPI, Form, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from miniwiki.config import Settings, settings
from miniwiki.core.engine import WikiEngine
from miniwiki.core.exceptions import ImportRejectedError, InvalidPageNameError
from miniwiki.core.models import Mode, Revision, TocEntry, VersionEntry
from miniwiki.core.parser import render_page, render_page_with_toc
from miniwiki.core.ws_manager import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter()


# ========== Request / response models ==========


class NameRequest(BaseModel):
    name: str


class LinkRequest(BaseModel):
    href: str


class CommandRequest(BaseModel):
    command: str


class ContentRequest(BaseModel):
    content: str | None = None


class HistoryRequest(BaseModel):
    page: str | None = None


class PinRequest(BaseModel):
    name: str | None = None


class PinOrderRequest(BaseModel):
    names: list[str]


class StateResponse(BaseModel):
    mode: Mode
    current_page: str
    history_page: str | None
    history_index: int | None
    buffer: str | None
    triggers: list[str]


class PageResponse(BaseModel):
    name: str
    content: str
    html: str
    toc: list[TocEntry]
    backlinks: list[str]
    pinned: bool


class RevisionResponse(BaseModel):
    index: int
    revision: Revision
    html: str


# ========== Helpers ==========


def get_engine(request: Request) -> WikiEngine:
    """Return the app's engine, opening the configured wiki on first use."""
    app = request.app
    if app.state.engine is None:
        logger.info("Opening wiki at %s", app.state.settings.data_dir)
        app.state.engine = WikiEngine.from_settings(app.state.settings)
        app.state.engine.subscribe(app.state.events.publish)
    return app.state.engine


def state_response(engine: WikiEngine) -> StateResponse:
    view = engine.state
    return StateResponse(
        mode=view.mode,
        current_page=view.current_page,
        history_page=view.history_page,
        history_index=view.history_index,
        buffer=engine.buffer,
        triggers=engine.available_triggers(),
    )


def page_response(engine: WikiEngine, name: str) -> PageResponse:
    content = engine.page_content(name)
    if content is None:
        raise HTTPException(status_code=404, detail="Page not found")
    html_content, toc = render_page_with_toc(content, page_exists=engine.page_exists)
    return PageResponse(
        name=name,
        content=content,
        html=html_content,
        toc=toc,
        backlinks=engine.backlinks(name),
        pinned=engine.is_pinned(name),
    )


def revision_response(engine: WikiEngine, index: int) -> RevisionResponse | None:
    revision = engine.revision(index)
    if revision is None:
        return None
    return RevisionResponse(
        index=index,
        revision=revision,
        html=render_page(revision.content, page_exists=engine.page_exists),
    )


# ========== State & rendering ==========


@router.get("/api/state")
async def api_state(request: Request) -> StateResponse:
    """Current mode, page and legal triggers."""
    return state_response(get_engine(request))


@router.get("/api/view")
async def api_view(request: Request) -> dict[str, Any]:
    """Everything needed to render the current mode."""
    engine = get_engine(request)
    state = state_response(engine)
    body: dict[str, Any] = {"state": state.model_dump(mode="json")}

    if state.mode == Mode.VIEW:
        body["page"] = page_response(engine, state.current_page).model_dump(mode="json")
    elif state.mode == Mode.EDIT:
        body["preview"] = render_page(engine.buffer or "", page_exists=engine.page_exists)
    elif state.mode == Mode.LIST:
        body["pages"] = engine.list_pages()
    elif state.mode == Mode.HISTORY_LIST:
        body["versions"] = [v.model_dump(mode="json") for v in engine.versions()]
    elif state.mode == Mode.HISTORY_DETAIL:
        detail = None
        if engine.revision() is not None:
            detail = revision_response(engine, state.history_index)
        body["revision"] = detail.model_dump(mode="json") if detail else None

    body["pins"] = engine.visible_pins()
    return body


@router.post("/api/preview", response_class=HTMLResponse)
async def api_preview(request: Request, content: str = Form("")):
    """Render markdown preview for the editor."""
    engine = get_engine(request)
    return HTMLResponse(render_page(content, page_exists=engine.page_exists))


# ========== Pages ==========


@router.get("/api/pages")
async def api_pages(
    request: Request,
    sort: Literal["alpha", "recent"] = "alpha",
    q: str = "",
) -> list[str]:
    """List page names."""
    return get_engine(request).list_pages(sort=sort, query=q)


@router.get("/api/pages/{name:path}")
async def api_page(request: Request, name: str) -> PageResponse:
    """Page content with rendered HTML, table of contents and backlinks."""
    return page_response(get_engine(request), name)


# ========== Transitions ==========


@router.post("/api/navigate")
async def api_navigate(request: Request, body: NameRequest) -> StateResponse:
    engine = get_engine(request)
    try:
        engine.navigate(body.name)
    except InvalidPageNameError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return state_response(engine)


@router.post("/api/follow")
async def api_follow(request: Request, body: LinkRequest) -> StateResponse:
    """Follow a link clicked in rendered content."""
    engine = get_engine(request)
    if engine.follow_link(body.href) is None:
        raise HTTPException(status_code=400, detail="Not a wiki link")
    return state_response(engine)


@router.post("/api/command")
async def api_command(request: Request, body: CommandRequest) -> StateResponse:
    engine = get_engine(request)
    try:
        engine.run_command(body.command)
    except InvalidPageNameError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return state_response(engine)


@router.post("/api/edit")
async def api_edit(request: Request) -> StateResponse:
    engine = get_engine(request)
    engine.edit()
    return state_response(engine)


@router.put("/api/buffer")
async def api_buffer(request: Request, body: ContentRequest) -> StateResponse:
    engine = get_engine(request)
    engine.update_buffer(body.content or "")
    return state_response(engine)


@router.post("/api/save")
async def api_save(request: Request, body: ContentRequest) -> StateResponse:
    engine = get_engine(request)
    engine.save(body.content)
    return state_response(engine)


@router.post("/api/cancel")
async def api_cancel(request: Request) -> StateResponse:
    engine = get_engine(request)
    engine.cancel()
    return state_response(engine)


@router.post("/api/list")
async def api_list(request: Request) -> StateResponse:
    engine = get_engine(request)
    engine.list_all()
    return state_response(engine)


@router.post("/api/history")
async def api_history(request: Request, body: HistoryRequest) -> StateResponse:
    engine = get_engine(request)
    engine.view_history(body.page)
    return state_response(engine)


@router.post("/api/back")
async def api_back(request: Request) -> StateResponse:
    engine = get_engine(request)
    engine.back()
    return state_response(engine)


@router.post("/api/escape")
async def api_escape(request: Request) -> StateResponse:
    engine = get_engine(request)
    engine.escape()
    return state_response(engine)


# ========== History ==========


@router.get("/api/history/{page:path}")
async def api_versions(request: Request, page: str) -> list[VersionEntry]:
    """Revisions of a page, most recent first."""
    return get_engine(request).versions(page)


@router.get("/api/revisions/{index}")
async def api_revision(request: Request, index: int) -> RevisionResponse:
    detail = revision_response(get_engine(request), index)
    if detail is None:
        raise HTTPException(status_code=404, detail="Revision not found")
    return detail


@router.post("/api/revisions/{index}/open")
async def api_open_version(request: Request, index: int) -> StateResponse:
    engine = get_engine(request)
    engine.open_version(index)
    return state_response(engine)


@router.post("/api/revisions/{index}/restore")
async def api_restore(request: Request, index: int) -> StateResponse:
    engine = get_engine(request)
    engine.restore(index)
    return state_response(engine)


# ========== Pins ==========


@router.get("/api/pins")
async def api_pins(request: Request) -> list[str]:
    return get_engine(request).visible_pins()


@router.post("/api/pins/toggle")
async def api_toggle_pin(request: Request, body: PinRequest) -> dict[str, Any]:
    engine = get_engine(request)
    pinned = engine.toggle_pin(body.name)
    return {"pinned": pinned, "pins": engine.visible_pins()}


@router.put("/api/pins")
async def api_reorder_pins(request: Request, body: PinOrderRequest) -> list[str]:
    return get_engine(request).reorder_pins(body.names)


# ========== Import / export ==========


@router.get("/api/export")
async def api_export(request: Request) -> JSONResponse:
    """Download a backup of all pages and revisions."""
    engine = get_engine(request)
    return JSONResponse(
        engine.export_data(),
        headers={
            "Content-Disposition": f'attachment; filename="{engine.backup_filename()}"'
        },
    )


@router.post("/api/import")
async def api_import(request: Request, data: Any = Body(...)) -> StateResponse:
    """Replace all pages and revisions with an uploaded backup."""
    engine = get_engine(request)
    try:
        engine.import_data(data)
    except ImportRejectedError as e:
        raise HTTPException(status_code=400, detail=e.reason)
    return state_response(engine)


# ========== Events ==========


@router.websocket("/ws/events")
async def ws_events(websocket: WebSocket):
    """WebSocket endpoint for wiki change events."""
    manager: ConnectionManager = websocket.app.state.events
    await websocket.accept()
    client_id, queue = manager.connect()
    try:
        while True:
            msg = await queue.get()
            await websocket.send_json(msg)
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(client_id)


def create_app(
    engine: WikiEngine | None = None,
    app_settings: Settings | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        engine: Engine to serve. If omitted, the wiki in the configured data
            directory is opened on the first request.
        app_settings: Settings to use instead of the environment.
    """
    app_settings = app_settings or settings
    logging.basicConfig(
        level=logging.DEBUG if app_settings.debug else app_settings.log_level.upper()
    )

    app = FastAPI(title=app_settings.app_title, debug=app_settings.debug)
    app.state.settings = app_settings
    app.state.events = ConnectionManager()
    app.state.engine = engine
    if engine is not None:
        engine.subscribe(app.state.events.publish)
    app.include_router(router)
    return app


app = create_app()
