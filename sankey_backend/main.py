"""
Sankey Studio Backend - FastAPI Application

This is the main entry point for the editor backend.
It provides:
- REST API for diagram operations (flows, customizations, positions, settings,
  undo/redo, file save/open)
- WebSocket endpoint for real-time updates
- Autosave of durable state through DiagramPersistence
- CORS configuration for local frontend development

Each app built by `create_app` owns its own DiagramStore; routes reach it
through the `get_store` dependency.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from sankey_core import (
    BasePositionsRequest,
    ColorScheme,
    CreateFlowRequest,
    DiagramPersistence,
    DiagramSettings,
    DiagramStore,
    FilePathRequest,
    FileStorage,
    Flow,
    FlowTextRequest,
    KeyValueStorage,
    LabelCustomization,
    NodeCustomization,
    PositionComposer,
    PositionRequest,
    SelectionRequest,
    StaticLayout,
    Tool,
    ToolRequest,
    UpdateFlowRequest,
    ViewportRequest,
    format_flow_text,
    parse_flow_text,
    summarize_diagram,
    validate_flows,
    validation_summary,
)
from sankey_core.config import CORS_ORIGINS, DATA_DIR, HOST, PORT
from sankey_core.persistence import Scheduler
from sankey_core.serialization import read_document, write_document

from .websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)

router = APIRouter()


def get_store(request: Request) -> DiagramStore:
    """Dependency returning the app's DiagramStore."""
    return request.app.state.store


def _model_dict(model) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Async change notification ---
# Bridge between sync DiagramStore callbacks and async WebSocket broadcasts

async def change_broadcaster(change_event: asyncio.Event, reasons: list[str], ws_manager: WebSocketManager):
    """Background task that broadcasts changes to WebSocket clients."""
    while True:
        await change_event.wait()
        change_event.clear()

        reason = reasons[-1] if reasons else None
        reasons.clear()
        await ws_manager.notify_diagram_updated(reason)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Restore saved state, start autosave and the broadcaster; flush on shutdown."""
    store: DiagramStore = app.state.store
    scheduler = app.state.scheduler
    if scheduler is None:
        scheduler = asyncio.get_running_loop()

    persistence = DiagramPersistence(store, app.state.storage, scheduler=scheduler)
    if persistence.load():
        logger.info("Restored diagram state from storage")
    persistence.attach()
    app.state.persistence = persistence

    change_event = asyncio.Event()
    reasons: list[str] = []

    def on_store_change(reason: str):
        reasons.append(reason)
        change_event.set()

    store.on_change(on_store_change)
    broadcaster_task = asyncio.create_task(
        change_broadcaster(change_event, reasons, app.state.ws_manager)
    )

    yield

    store.remove_change_callback(on_store_change)
    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass
    persistence.close()


def create_app(
    store: Optional[DiagramStore] = None,
    storage: Optional[KeyValueStorage] = None,
    scheduler: Optional[Scheduler] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        store: Diagram store to serve (a fresh one by default)
        storage: Autosave storage (files under DATA_DIR by default)
        scheduler: Schedules deferred saves (the running event loop by default)
    """
    app = FastAPI(
        title="Sankey Studio API",
        description="Backend API for the Sankey diagram editor",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.store = store if store is not None else DiagramStore()
    app.state.storage = storage if storage is not None else FileStorage(DATA_DIR)
    app.state.scheduler = scheduler
    app.state.ws_manager = WebSocketManager()
    app.state.persistence = None

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


# --- Health Check ---

@router.get("/api/health")
async def health_check(request: Request):
    """Health check endpoint."""
    persistence = request.app.state.persistence
    return {
        "status": "ok",
        "connections": request.app.state.ws_manager.connection_count,
        "persistence": persistence.available if persistence is not None else False,
    }


# --- Diagram State ---

@router.get("/api/diagram")
async def get_diagram(store: DiagramStore = Depends(get_store)):
    """Get the current diagram state."""
    return store.get_state()


@router.post("/api/reset")
async def reset_diagram(store: DiagramStore = Depends(get_store)):
    """Clear all data, settings, UI state and history."""
    store.clear_all()
    return {"success": True, "state": store.get_state()}


# --- File Operations ---

@router.post("/api/diagram/save")
async def save_diagram(request: FilePathRequest, store: DiagramStore = Depends(get_store)):
    """Export the diagram to a JSON file."""
    try:
        path = write_document(request.file_path, store.durable_state())
        return {"success": True, "file_path": str(path)}
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save: {e}")


@router.post("/api/diagram/open")
async def open_diagram(request: FilePathRequest, store: DiagramStore = Depends(get_store)):
    """Replace the diagram with the contents of an exported JSON file."""
    try:
        result = read_document(request.file_path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OSError as e:
        raise HTTPException(status_code=400, detail=f"Failed to open diagram: {e}")

    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)

    store.clear_all()
    store.replace_state(result.state)
    return {"success": True, "file_path": request.file_path, "state": store.get_state()}


# --- Undo/Redo ---

@router.post("/api/snapshot")
async def save_snapshot(store: DiagramStore = Depends(get_store)):
    """Checkpoint the current state before a logical edit."""
    store.save_snapshot()
    return {"success": True, "undo_depth": store.history.undo_depth}


@router.post("/api/undo")
async def undo(store: DiagramStore = Depends(get_store)):
    """Undo the last action."""
    if store.undo():
        return {"success": True, "state": store.get_state()}
    return {"success": False, "message": "Nothing to undo"}


@router.post("/api/redo")
async def redo(store: DiagramStore = Depends(get_store)):
    """Redo the last undone action."""
    if store.redo():
        return {"success": True, "state": store.get_state()}
    return {"success": False, "message": "Nothing to redo"}


# --- Flow Operations ---

@router.put("/api/flows")
async def set_flows(flows: list[Flow], store: DiagramStore = Depends(get_store)):
    """Replace all flows."""
    store.set_flows(flows)
    return {"success": True, "flows": [_model_dict(f) for f in store.flows]}


@router.get("/api/flows/text")
async def get_flow_text(store: DiagramStore = Depends(get_store)):
    """Get the flows in the plain-text flow format."""
    return {"success": True, "text": format_flow_text(store.flows)}


@router.put("/api/flows/text")
async def set_flow_text(request: FlowTextRequest, store: DiagramStore = Depends(get_store)):
    """Replace all flows with the ones parsed from text. Nothing changes if any line is invalid."""
    result = parse_flow_text(request.text)
    if not result.is_valid:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid flow text", "errors": [e.to_dict() for e in result.errors]},
        )
    store.set_flows(result.flows)
    return {"success": True, "flows": [_model_dict(f) for f in store.flows]}


@router.post("/api/flows/text/validate")
async def check_flow_text(request: FlowTextRequest):
    """Check flow text without applying it."""
    return parse_flow_text(request.text).to_dict()


@router.post("/api/flows")
async def create_flow(request: CreateFlowRequest, store: DiagramStore = Depends(get_store)):
    """Add a flow."""
    flow = store.add_flow(request)
    return {"success": True, "flow": _model_dict(flow)}


@router.get("/api/flows/{flow_id}")
async def get_flow(flow_id: str, store: DiagramStore = Depends(get_store)):
    """Get a specific flow."""
    flow = store.get_flow(flow_id)
    if flow:
        return {"success": True, "flow": _model_dict(flow)}
    raise HTTPException(status_code=404, detail="Flow not found")


@router.patch("/api/flows/{flow_id}")
async def update_flow(flow_id: str, request: UpdateFlowRequest, store: DiagramStore = Depends(get_store)):
    """Update a flow. Omitted or null fields are left unchanged."""
    flow = store.update_flow(flow_id, **request.model_dump(exclude_unset=True, exclude_none=True))
    if flow:
        return {"success": True, "flow": _model_dict(flow)}
    raise HTTPException(status_code=404, detail="Flow not found")


@router.delete("/api/flows/{flow_id}")
async def delete_flow(flow_id: str, store: DiagramStore = Depends(get_store)):
    """Delete a flow."""
    if store.remove_flow(flow_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Flow not found")


# --- Customizations ---

@router.patch("/api/nodes/{node_id}/customization")
async def update_node_customization(
    node_id: str,
    request: NodeCustomization,
    store: DiagramStore = Depends(get_store),
):
    """Merge fields into a node's customization. A null field is cleared."""
    entry = store.update_node_customization(node_id, **request.model_dump(exclude_unset=True))
    return {"success": True, "customization": _model_dict(entry)}


@router.patch("/api/labels/{node_id}/customization")
async def update_label_customization(
    node_id: str,
    request: LabelCustomization,
    store: DiagramStore = Depends(get_store),
):
    """Merge fields into a label's customization. A null field is cleared."""
    entry = store.update_label_customization(node_id, **request.model_dump(exclude_unset=True))
    return {"success": True, "customization": _model_dict(entry)}


# --- Positions ---

@router.put("/api/nodes/{node_id}/position")
async def set_node_position(node_id: str, request: PositionRequest, store: DiagramStore = Depends(get_store)):
    """Set a node's position override (offset from its layout position)."""
    entry = store.update_node_position(node_id, request.x, request.y)
    return {"success": True, "customization": _model_dict(entry)}


@router.delete("/api/nodes/{node_id}/position")
async def clear_node_position(node_id: str, store: DiagramStore = Depends(get_store)):
    """Reset a node to its computed layout position."""
    had_position = store.clear_node_position(node_id)
    return {"success": True, "had_position": had_position}


@router.put("/api/labels/{node_id}/position")
async def set_label_position(node_id: str, request: PositionRequest, store: DiagramStore = Depends(get_store)):
    """Set a label's position override, independent of its node."""
    entry = store.update_label_position(node_id, request.x, request.y)
    return {"success": True, "customization": _model_dict(entry)}


@router.delete("/api/labels/{node_id}/position")
async def clear_label_position(node_id: str, store: DiagramStore = Depends(get_store)):
    """Reset a label to its computed layout position."""
    had_position = store.clear_label_position(node_id)
    return {"success": True, "had_position": had_position}


@router.post("/api/positions")
async def compose_positions(request: BasePositionsRequest, store: DiagramStore = Depends(get_store)):
    """
    Final render positions.

    The client posts the base positions its layout engine computed; the
    response applies the stored overrides to them.
    """
    layout = StaticLayout(
        nodes={node_id: (p.x, p.y) for node_id, p in request.nodes.items()},
        labels={node_id: (p.x, p.y) for node_id, p in request.labels.items()},
    )
    composer = PositionComposer(store, layout)
    return {
        "success": True,
        **composer.compose_all(node_ids=request.nodes.keys(), label_ids=request.labels.keys()),
    }


# --- Settings ---

@router.patch("/api/settings")
async def update_settings(request: DiagramSettings, store: DiagramStore = Depends(get_store)):
    """Merge fields into the diagram settings."""
    settings = store.update_settings(**request.model_dump(exclude_unset=True))
    return {"success": True, "settings": settings.model_dump(mode="json", by_alias=True)}


# --- UI State ---

def _ui_dict(store: DiagramStore) -> dict:
    return store.ui.model_dump(mode="json", by_alias=True)


@router.put("/api/ui/selection")
async def set_selection(request: SelectionRequest, store: DiagramStore = Depends(get_store)):
    """Select a node, flow or label; a null kind or id clears the selection."""
    store.select(request.kind, request.id)
    return {"success": True, "ui": _ui_dict(store)}


@router.put("/api/ui/tool")
async def set_tool(request: ToolRequest, store: DiagramStore = Depends(get_store)):
    """Switch the active tool. An unknown tool leaves the current one active."""
    changed = store.set_active_tool(request.tool)
    return {"success": changed, "ui": _ui_dict(store)}


@router.put("/api/ui/viewport")
async def set_viewport(request: ViewportRequest, store: DiagramStore = Depends(get_store)):
    """Change zoom (clamped) and/or pan."""
    if request.zoom is not None:
        store.set_zoom(request.zoom)
    if request.pan_x is not None or request.pan_y is not None:
        ui = store.ui
        store.set_pan(
            request.pan_x if request.pan_x is not None else ui.pan_x,
            request.pan_y if request.pan_y is not None else ui.pan_y,
        )
    return {"success": True, "ui": _ui_dict(store)}


# --- Enums for Frontend ---

@router.get("/api/enums/color-schemes")
async def get_color_schemes():
    """Get available color schemes."""
    return {"color_schemes": [s.value for s in ColorScheme]}


@router.get("/api/enums/tools")
async def get_tools():
    """Get available canvas tools."""
    return {"tools": [t.value for t in Tool]}


# --- Analysis & Validation ---

@router.get("/api/diagram/validate")
async def validate_current_diagram(store: DiagramStore = Depends(get_store)):
    """
    Validate the current diagram.

    Returns a list of issues (errors, warnings, info) and a summary.
    """
    issues = validate_flows(store.durable_state())
    return {
        "success": True,
        "issues": [issue.to_dict() for issue in issues],
        "summary": validation_summary(issues)
    }


@router.get("/api/diagram/summary")
async def summarize_current_diagram(store: DiagramStore = Depends(get_store)):
    """Get a structural summary: node and flow counts, sources, sinks, balance."""
    summary = summarize_diagram(store.durable_state())
    return {"success": True, "summary": summary.to_dict()}


# --- WebSocket ---

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients connect here to receive diagram_updated events.
    """
    ws_manager: WebSocketManager = websocket.app.state.ws_manager
    await ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception:
        logger.exception("WebSocket connection failed")
        await ws_manager.disconnect(websocket)


app = create_app()


# --- Run with uvicorn ---

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host=HOST, port=PORT)
