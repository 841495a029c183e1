from __future__ import annotations

from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from hira import services
from hira.errors import BackendError, NotFoundError, ValidationError
from hira.models import Consequence, Control, Event
from hira.services import HiraDataService

from .conftest import project_payload


def _tree():
    return [
        {"id": "tmp-e1", "name": "Runway excursion", "hazards": [
            {"id": "tmp-h1", "description": "Wet runway", "consequences": [
                {"id": "tmp-c1", "description": "Hull damage", "current_controls": "Grooving"},
                {"id": "tmp-c2", "description": "Delay"},
            ]},
        ]},
    ]


@pytest.fixture()
def project(service):
    return service.create_project(project_payload())


def test_create_project_generates_valid_id(service, project):
    assert project["project_id"].startswith("HIRA-")
    assert project["title"] == "Runway operations"
    assert project["matrix_type"] == "ICAO"
    assert service.get_project(project["project_id"])["facilitator"]["name"] == "A. Safety"


def test_create_project_requires_title(service):
    with pytest.raises(ValidationError):
        service.create_project(project_payload(title="  "))


def test_duplicate_project_id_rejected(service, project):
    with pytest.raises(ValidationError):
        service.create_project(project_payload(project_id=project["project_id"]))


def test_list_projects_newest_first(service):
    first = service.create_project(project_payload(project_id="HIRA-20260101-120000-001"))
    second = service.create_project(project_payload(project_id="HIRA-20260101-120000-002"))
    listed = [p["project_id"] for p in service.list_projects()]
    assert listed == [second["project_id"], first["project_id"]]


def test_list_projects_retries_then_raises(app, monkeypatch):
    service = HiraDataService(list_retries=3, retry_delay=0.0)
    failing = mock.MagicMock()
    failing.query.order_by.side_effect = OperationalError("select", {}, Exception("unavailable"))
    monkeypatch.setattr(services, "Project", failing)

    with pytest.raises(BackendError) as excinfo:
        service.list_projects()
    assert failing.query.order_by.call_count == 3
    assert "after 3 attempts" in excinfo.value.message


def test_unknown_project_is_not_found(service):
    with pytest.raises(NotFoundError):
        service.get_project("HIRA-20260101-000000-000")


def test_save_events_maps_provisional_ids(service, project):
    tree, id_map = service.save_events(project["project_id"], _tree())
    assert set(id_map) == {"tmp-e1", "tmp-h1", "tmp-c1", "tmp-c2"}
    consequences = tree[0]["hazards"][0]["consequences"]
    assert [c["id"] for c in consequences] == [id_map["tmp-c1"], id_map["tmp-c2"]]
    assert consequences[1]["current_controls"] == ""


def test_save_events_updates_in_place_and_deletes_missing(service, project):
    tree, _ = service.save_events(project["project_id"], _tree())
    hazard = tree[0]["hazards"][0]
    hazard["consequences"] = [dict(hazard["consequences"][0], description="Hull damage (major)")]
    tree[0]["name"] = "Runway veer-off"

    saved, id_map = service.save_events(project["project_id"], tree)

    assert saved[0]["id"] == tree[0]["id"]
    assert saved[0]["name"] == "Runway veer-off"
    assert [c["description"] for c in saved[0]["hazards"][0]["consequences"]] == ["Hull damage (major)"]
    assert Consequence.query.count() == 1
    assert id_map[str(tree[0]["id"])] == tree[0]["id"]


def test_save_events_removes_absent_events(service, project):
    service.save_events(project["project_id"], _tree())
    service.save_events(project["project_id"], [])
    assert Event.query.count() == 0


def test_upsert_assessment_derives_tolerability(service, project):
    tree, id_map = service.save_events(project["project_id"], _tree())
    record = service.upsert_assessment(id_map["tmp-c1"], "ICAO",
                                       {"probability": 5, "severity": "a", "tolerability": "ACCEPTABLE"})
    assert record["tolerability"] == "INTOLERABLE"
    assert record["severity"] == "A"
    assert record["event"] == "Runway excursion"

    again = service.upsert_assessment(id_map["tmp-c1"], "ICAO", {"probability": 4, "severity": "D"})
    assert again["assessment_id"] == record["assessment_id"]
    assert again["tolerability"] == "TOLERABLE"


def test_upsert_assessment_integrated(service, project):
    _, id_map = service.save_events(project["project_id"], _tree())
    record = service.upsert_assessment(id_map["tmp-c2"], "Integrated", {"likelihood": 3, "impact": 3})
    assert record["tolerability"] == "MEDIUM"
    assert record["probability"] is None


def test_upsert_assessment_validation(service, project):
    _, id_map = service.save_events(project["project_id"], _tree())
    with pytest.raises(ValidationError):
        service.upsert_assessment(id_map["tmp-c1"], "ICAO", {"probability": 5})
    with pytest.raises(NotFoundError):
        service.upsert_assessment(99999, "ICAO", {"probability": 5, "severity": "A"})


def test_controls_only_for_risks_above_acceptable(service, project):
    _, id_map = service.save_events(project["project_id"], _tree())
    high = service.upsert_assessment(id_map["tmp-c1"], "ICAO", {"probability": 5, "severity": "A"})
    low = service.upsert_assessment(id_map["tmp-c2"], "ICAO", {"probability": 1, "severity": "E"})

    control = service.upsert_control(high["assessment_id"], {
        "additional_mitigation": "Runway grooving",
        "risk_owner": "Airport Ops",
        "target_date": "2026-12-01",
    })
    assert control["target_date"] == "2026-12-01"
    assert control["consequence_id"] == id_map["tmp-c1"]

    with pytest.raises(ValidationError):
        service.upsert_control(low["assessment_id"], {"additional_mitigation": "n/a"})
    with pytest.raises(ValidationError):
        service.upsert_control(high["assessment_id"], {"target_date": "next week"})


def test_rescoring_to_lowest_band_removes_control(service, project):
    _, id_map = service.save_events(project["project_id"], _tree())
    record = service.upsert_assessment(id_map["tmp-c1"], "ICAO", {"probability": 5, "severity": "A"})
    service.upsert_control(record["assessment_id"], {"additional_mitigation": "Grooving"})

    service.upsert_assessment(id_map["tmp-c1"], "ICAO", {"probability": 1, "severity": "E"})

    assert Control.query.count() == 0
    assert service.get_control_by_assessment(record["assessment_id"]) is None


def test_delete_project_cascades(service, project):
    _, id_map = service.save_events(project["project_id"], _tree())
    record = service.upsert_assessment(id_map["tmp-c1"], "ICAO", {"probability": 5, "severity": "A"})
    service.upsert_control(record["assessment_id"], {"additional_mitigation": "Grooving"})

    service.delete_project(project["project_id"])

    assert Event.query.count() == 0
    assert Consequence.query.count() == 0
    assert Control.query.count() == 0


def test_load_project_bundle(service, project):
    _, id_map = service.save_events(project["project_id"], _tree())
    service.upsert_assessment(id_map["tmp-c1"], "ICAO", {"probability": 5, "severity": "A"})
    bundle = service.load_project_bundle(project["project_id"])
    assert bundle["project"]["project_id"] == project["project_id"]
    assert len(bundle["events"]) == 1
    assert [a["consequence_id"] for a in bundle["assessments"]] == [id_map["tmp-c1"]]
    assert bundle["controls"] == []


def test_generated_project_id_clash_is_retried(service, project, monkeypatch):
    ids = iter([project["project_id"], "HIRA-20260101-120000-777"])
    monkeypatch.setattr(services, "generate_project_id", lambda timezone="UTC": next(ids))

    created = service.create_project(project_payload(title="Second review"))

    assert created["project_id"] == "HIRA-20260101-120000-777"


def test_generated_project_id_gives_up_after_repeated_clashes(service, project, monkeypatch):
    monkeypatch.setattr(services, "generate_project_id", lambda timezone="UTC": project["project_id"])
    with pytest.raises(BackendError):
        service.create_project(project_payload(title="Second review"))
