"""Tests for the FastAPI backend."""

import json

import pytest
from fastapi.testclient import TestClient

from sankey_backend.main import create_app
from sankey_core import DiagramStore, DurableState, Flow, MemoryStorage, serialize
from sankey_core.config import STORAGE_KEY


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def client(store, storage, scheduler):
    app = create_app(store=store, storage=storage, scheduler=scheduler)
    with TestClient(app) as client:
        yield client


def _add(client, source="A", target="B", value=10, **extra):
    response = client.post("/api/flows", json={"source": source, "target": target, "value": value, **extra})
    assert response.status_code == 200
    return response.json()["flow"]


class TestBasics:
    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["persistence"] is True

    def test_get_empty_diagram(self, client):
        state = client.get("/api/diagram").json()
        assert state["diagram"]["flows"] == []
        assert state["diagram"]["settings"]["title"] == "Untitled Diagram"
        assert state["can_undo"] is False

    def test_enums(self, client):
        assert client.get("/api/enums/color-schemes").json()["color_schemes"] == ["source", "target", "gradient"]
        assert client.get("/api/enums/tools").json()["tools"] == ["select", "pan", "addNode", "addFlow"]


class TestFlowEndpoints:
    def test_create_and_get(self, client):
        flow = _add(client, comparisonValue=8)
        assert flow["comparisonValue"] == 8
        fetched = client.get(f"/api/flows/{flow['id']}").json()["flow"]
        assert fetched == flow

    def test_update(self, client):
        flow = _add(client)
        response = client.patch(f"/api/flows/{flow['id']}", json={"value": 42})
        assert response.json()["flow"]["value"] == 42
        assert response.json()["flow"]["source"] == "A"

    def test_update_rejects_bad_types(self, client):
        flow = _add(client)
        assert client.patch(f"/api/flows/{flow['id']}", json={"value": "many"}).status_code == 422
        assert client.patch(f"/api/flows/{flow['id']}", json={"value": -3}).status_code == 422

    def test_delete(self, client):
        flow = _add(client)
        assert client.delete(f"/api/flows/{flow['id']}").json() == {"success": True}
        assert client.get(f"/api/flows/{flow['id']}").status_code == 404

    def test_missing_flow(self, client):
        assert client.patch("/api/flows/nope", json={"value": 1}).status_code == 404
        assert client.delete("/api/flows/nope").status_code == 404

    def test_replace_flows(self, client):
        body = [
            {"id": "a", "source": "S", "target": "T", "value": 1},
            {"id": "a", "source": "X", "target": "Y", "value": 2},
        ]
        flows = client.put("/api/flows", json=body).json()["flows"]
        assert flows == [{"id": "a", "source": "S", "target": "T", "value": 1}]


class TestCustomizationEndpoints:
    def test_node_customization(self, client, store):
        response = client.patch("/api/nodes/A/customization", json={"color": "#ff0000"})
        assert response.json()["customization"] == {"color": "#ff0000"}
        assert store.node_customization("A").color == "#ff0000"

    def test_label_customization_camel_case(self, client, store):
        client.patch("/api/labels/A/customization", json={"fontSize": 16, "visible": False})
        entry = store.label_customization("A")
        assert entry.font_size == 16
        assert entry.visible is False

    def test_positions_round_trip(self, client, store):
        client.put("/api/nodes/A/position", json={"x": 5, "y": 7})
        client.put("/api/labels/A/position", json={"x": -2, "y": 1})
        assert store.node_customization("A").offset() == (5, 7)
        assert store.label_customization("A").offset() == (-2, 1)

        assert client.delete("/api/nodes/A/position").json()["had_position"] is True
        assert client.delete("/api/nodes/A/position").json()["had_position"] is False
        assert store.label_customization("A").offset() == (-2, 1)

    def test_final_positions(self, client):
        client.put("/api/nodes/A/position", json={"x": 5, "y": 7})
        body = client.post("/api/positions", json={
            "nodes": {"A": {"x": 100, "y": 50}, "B": {"x": 10, "y": 10}},
            "labels": {"A": {"x": 90, "y": 40}},
        }).json()
        assert body["nodes"]["A"] == {"x": 105, "y": 57, "custom": True}
        assert body["nodes"]["B"] == {"x": 10, "y": 10, "custom": False}
        assert body["labels"]["A"] == {"x": 90, "y": 40, "custom": False}

    def test_settings(self, client):
        settings = client.patch("/api/settings", json={"title": "Budget", "colorScheme": "target"}).json()["settings"]
        assert settings["title"] == "Budget"
        assert settings["colorScheme"] == "target"
        assert settings["width"] == 800

    def test_invalid_settings(self, client):
        assert client.patch("/api/settings", json={"flowOpacity": 3}).status_code == 422


class TestHistoryEndpoints:
    def test_snapshot_undo_redo(self, client):
        client.post("/api/snapshot")
        _add(client)

        undone = client.post("/api/undo").json()
        assert undone["success"] is True
        assert undone["state"]["diagram"]["flows"] == []

        redone = client.post("/api/redo").json()
        assert len(redone["state"]["diagram"]["flows"]) == 1

    def test_nothing_to_undo(self, client):
        assert client.post("/api/undo").json() == {"success": False, "message": "Nothing to undo"}
        assert client.post("/api/redo").json() == {"success": False, "message": "Nothing to redo"}

    def test_reset(self, client):
        _add(client)
        state = client.post("/api/reset").json()["state"]
        assert state["diagram"]["flows"] == []


class TestUIEndpoints:
    def test_selection(self, client):
        ui = client.put("/api/ui/selection", json={"kind": "node", "id": "A"}).json()["ui"]
        assert ui["selectedNodeId"] == "A"
        ui = client.put("/api/ui/selection", json={"kind": "flow", "id": "f1"}).json()["ui"]
        assert ui["selectedNodeId"] is None
        assert ui["selectedFlowId"] == "f1"
        ui = client.put("/api/ui/selection", json={}).json()["ui"]
        assert ui["selectedFlowId"] is None

    def test_tool(self, client):
        assert client.put("/api/ui/tool", json={"tool": "pan"}).json()["ui"]["activeTool"] == "pan"
        body = client.put("/api/ui/tool", json={"tool": "lasso"}).json()
        assert body["success"] is False
        assert body["ui"]["activeTool"] == "pan"

    def test_viewport(self, client):
        ui = client.put("/api/ui/viewport", json={"zoom": 20, "panX": 3}).json()["ui"]
        assert ui["zoom"] == 5.0
        assert ui["panX"] == 3
        assert ui["panY"] == 0


class TestAnalysisEndpoints:
    def test_validate(self, client):
        _add(client, value=0)
        body = client.get("/api/diagram/validate").json()
        assert body["summary"]["warnings"] == 1
        assert body["summary"]["valid"] is True

    def test_summary(self, client):
        _add(client, "A", "B", 5)
        _add(client, "B", "C", 5)
        summary = client.get("/api/diagram/summary").json()["summary"]
        assert summary["total_nodes"] == 3
        assert summary["sources"] == ["A"]


class TestFlowTextEndpoints:
    def test_set_and_get_text(self, client, store):
        text = "Revenue [120|100] Profit #00ff00\nRevenue [30] Costs"
        body = client.put("/api/flows/text", json={"text": text}).json()
        assert [f["id"] for f in body["flows"]] == ["line_1", "line_2"]
        assert store.get_flow("line_1").comparison_value == 100

        assert client.get("/api/flows/text").json()["text"] == text

    def test_invalid_text_changes_nothing(self, client, store):
        _add(client)
        response = client.put("/api/flows/text", json={"text": "A [1] B\nbroken"})
        assert response.status_code == 400
        assert response.json()["detail"]["errors"][0]["code"] == "MISSING_BRACKETS"
        assert [f.source for f in store.flows] == ["A"]

    def test_validate_text(self, client, store):
        body = client.post("/api/flows/text/validate", json={"text": "A [x] B"}).json()
        assert body["is_valid"] is False
        assert body["errors"][0]["line"] == 1
        assert store.flows == []

    def test_summary_reports_growth(self, client):
        _add(client, "A", "B", 110, comparisonValue=100)
        summary = client.get("/api/diagram/summary").json()["summary"]
        assert summary["total_growth"] == "+10.0%"
        assert summary["significant_changes"] == [summary["flow_growth"][0]["id"]]


class TestFileEndpoints:
    def test_save_and_open(self, client, tmp_path):
        _add(client, "A", "B", 5)
        client.post("/api/snapshot")
        path = tmp_path / "saved.json"
        assert client.post("/api/diagram/save", json={"file_path": str(path)}).json()["success"]
        assert json.loads(path.read_text())["title"] == "Untitled Diagram"

        client.post("/api/reset")
        body = client.post("/api/diagram/open", json={"file_path": str(path)}).json()
        assert body["success"] is True
        assert len(body["state"]["diagram"]["flows"]) == 1
        assert body["state"]["can_undo"] is False

    def test_open_missing_file(self, client, tmp_path):
        response = client.post("/api/diagram/open", json={"file_path": str(tmp_path / "none.json")})
        assert response.status_code == 404

    def test_open_invalid_file(self, client, tmp_path, store):
        _add(client)
        path = tmp_path / "bad.json"
        path.write_text("{oops")
        response = client.post("/api/diagram/open", json={"file_path": str(path)})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid JSON format. Please check the file contents."
        assert len(store.flows) == 1


class TestPersistence:
    def test_changes_are_saved_after_delay(self, client, storage, scheduler):
        _add(client, "A", "B", 5)
        _add(client, "B", "C", 5)
        assert storage.get(STORAGE_KEY) is None

        assert scheduler.run_pending() == 1
        saved = json.loads(storage.get(STORAGE_KEY))
        assert len(saved["flows"]) == 2

    def test_state_is_restored_on_startup(self, storage, scheduler):
        storage.set(STORAGE_KEY, serialize(DurableState(flows=[Flow(id="saved", source="X", target="Y", value=3)])))
        app = create_app(store=DiagramStore(), storage=storage, scheduler=scheduler)
        with TestClient(app) as client:
            flows = client.get("/api/diagram").json()["diagram"]["flows"]
        assert [f["id"] for f in flows] == ["saved"]

    def test_pending_save_is_flushed_on_shutdown(self, storage):
        app = create_app(store=DiagramStore(), storage=storage)
        with TestClient(app) as client:
            _add(client)
        assert len(json.loads(storage.get(STORAGE_KEY))["flows"]) == 1

    def test_reset_removes_saved_state(self, client, storage, scheduler):
        _add(client)
        scheduler.run_pending()
        client.post("/api/reset")
        assert storage.get(STORAGE_KEY) is None


class TestWebSocket:
    def test_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("ping")
            assert ws.receive_json() == {"type": "pong"}

    def test_change_is_broadcast(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("ping")
            ws.receive_json()
            _add(client)
            assert ws.receive_json() == {"type": "diagram_updated", "reason": "mutation"}
