"""
Shared fixtures. Run from the repo root:  pytest
MongoDB is replaced by mongomock and Twilio by a list that records SMS sends,
so no network or credentials are needed.
"""

import os
import sys

import mongomock
import pytest

# Run from backend/ so imports resolve
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from events import EventBus
from services.dispatch import DispatchCoordinator
from services.emergencies import RequestStore
from services.registry import AmbulanceRegistry
from services.tokens import ConfirmationTokenStore

from helpers import ORIGIN, FakeClock, run_now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_store(clock):
    return ConfirmationTokenStore(clock=clock)


@pytest.fixture
def database():
    return mongomock.MongoClient().dispatch


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def requests_store(database, events):
    return RequestStore(database["emergency_requests"], events)


@pytest.fixture
def ambulances(database, events):
    return AmbulanceRegistry(database["ambulances"], events, drivers=database["drivers"])


@pytest.fixture
def scheduled():
    """Calls the coordinator scheduled instead of starting timers."""
    return []


@pytest.fixture
def coordinator(requests_store, ambulances, scheduled):
    return DispatchCoordinator(
        requests_store,
        ambulances,
        scheduler=lambda fn, *args: scheduled.append((fn, args)),
    )


@pytest.fixture
def make_ambulance(ambulances, coordinator):
    """Register an ambulance at `location` and bring it online unless told otherwise."""
    def _make(location: dict, online: bool = True, name: str = "Driver") -> dict:
        ambulance = ambulances.register({
            "driverName": name,
            "vehicleNumber": f"KA-{name}",
            "type": "basic",
            "location": location,
        })
        if online:
            ambulance = coordinator.go_online(ambulance["_id"])
        return ambulance
    return _make


@pytest.fixture
def make_request(requests_store):
    def _make(location: dict = None, phone: str = "+15550001111") -> dict:
        return requests_store.create({
            "location": location or ORIGIN,
            "patientPhone": phone,
            "emergencyType": "cardiac",
            "priority": "high",
        })
    return _make


@pytest.fixture
def sent_sms():
    return []


@pytest.fixture
def app(database, token_store, sent_sms):
    def send_sms(phone, token):
        sent_sms.append((phone, token))
        return "SM-test"

    app = create_app(
        database=database,
        token_store=token_store,
        send_sms=send_sms,
        scheduler=run_now,
        start_background=False,
    )
    app.testing = True
    return app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def services(app):
    return app.extensions["dispatch"]
