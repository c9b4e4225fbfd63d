from __future__ import annotations

import pytest
from pydantic import ValidationError

from config import settings
from errors import validation_message
from schemas import Stage, Workspace, default_stages


def test_health_endpoints(client):
    assert client.get("/").json() == {"message": "Cyclops API running"}
    body = client.get("/test").json()
    assert body["backend"] == "Running"
    assert body["connection_status"] == "Connected"


def test_unknown_route_renders_json_error(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    body = resp.json()
    assert body["message"] == "Not Found"
    assert body["code"] == "http_exception"
    assert "stack" in body


def test_stack_is_hidden_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")
    body = client.get("/api/nothing-here").json()
    assert "stack" not in body


def test_validation_message_uses_validator_text():
    with pytest.raises(ValidationError) as info:
        Workspace(workspace_title="Board", workspace_type="Fancy")
    assert validation_message(info.value) == "Fancy is not a valid workspace type"


def test_stage_rejects_bad_color():
    with pytest.raises(ValidationError) as info:
        Stage(name="Todo", color="#12", category="Pending")
    assert validation_message(info.value) == "#12 is not a valid HEX color code!"


def test_selected_views_cannot_be_empty():
    with pytest.raises(ValidationError):
        Workspace(workspace_title="Board", selected_views=[" "])


@pytest.mark.parametrize("workspace_type", ["Starter", "Kanban", "Project", "Scrum"])
def test_default_stages_cover_every_category_flow(workspace_type):
    stages = default_stages(workspace_type)
    assert len(stages) == 4
    assert stages[0].category == "Pending"
    assert stages[-1].category == "Done"
    assert len({stage.id for stage in stages}) == 4
