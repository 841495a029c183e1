from __future__ import annotations

import pytest

from hira import create_app
from hira.config import TestConfig
from hira.models import db
from hira.services import HiraDataService
from hira.wizard import WizardSession


class FakeTimer:
    """Stands in for threading.Timer; fires only when a test calls fire()."""

    def __init__(self, delay, function):
        self.delay = delay
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


@pytest.fixture()
def timers():
    created = []

    def factory(delay, function):
        timer = FakeTimer(delay, function)
        created.append(timer)
        return timer

    factory.created = created
    return factory


@pytest.fixture()
def app(tmp_path, timers):
    class Config(TestConfig):
        UPLOAD_FOLDER = str(tmp_path / "uploads")

    app = create_app(Config)
    app.extensions["hira"]["wizards"].timer_factory = timers
    with app.app_context():
        db.create_all()
        yield app
        app.extensions["hira"]["wizards"].close_all()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def service(app) -> HiraDataService:
    return HiraDataService(retry_delay=0.0)


@pytest.fixture()
def wizard(service, timers) -> WizardSession:
    session = WizardSession(service, autosave_delay=0.01, timer_factory=timers)
    yield session
    session.close()


def project_payload(**overrides) -> dict:
    payload = {
        "title": "Runway operations",
        "date": "2026-10-19",
        "facilitator": {"name": "A. Safety", "designation": "Safety Manager"},
        "attendees": [
            {"name": "B. Pilot", "designation": "Captain"},
            {"name": "", "designation": "  "},
        ],
        "operational_desc": "Landing and rollout on runway 09.",
    }
    payload.update(overrides)
    return payload


def hazard_tree() -> list[dict]:
    return [
        {
            "name": "Runway excursion",
            "hazards": [
                {
                    "description": "Contaminated runway surface",
                    "consequences": [
                        {"description": "Aircraft hull damage", "current_controls": "Friction tests"},
                        {"description": "Passenger delay", "current_controls": ""},
                        {"description": "   "},
                    ],
                },
                {"description": "", "consequences": [{"description": "orphan"}]},
            ],
        },
        {"name": "  ", "hazards": []},
    ]
