"""
HTTP tests for the dispatch backend: the phone-call bridge, the request API
and the driver API, all through Flask's test_client().
"""

from pymongo.errors import ServerSelectionTimeoutError

from helpers import km_north

CALLER = "+919876543210"


def _register(client, location, name="Ravi"):
    r = client.post("/api/ambulances", json={
        "driverName": name,
        "vehicleNumber": f"KA-01-{name}",
        "type": "advanced",
        "location": location,
    })
    assert r.status_code == 201, r.data
    return r.get_json()


def _create_request(client, **overrides):
    body = {
        "location": {"lat": 0.0, "lng": 0.0},
        "patientPhone": CALLER,
        "patientName": "Asha",
        "emergencyType": "cardiac",
    }
    body.update(overrides)
    return client.post("/api/requests", json=body)


# ─── Phone-call bridge ───────────────────────────────────────────────────────

def test_incoming_call_sends_link_and_hangs_up(client, sent_sms, services):
    """POST /incoming-call texts a fresh token to the caller and answers with TwiML."""
    r = client.post("/incoming-call", data={"From": CALLER})
    assert r.status_code == 200
    assert r.content_type.startswith("text/xml")
    body = r.get_data(as_text=True)
    assert "<Say" in body and "SMS" in body
    assert "<Hangup" in body

    assert len(sent_sms) == 1
    phone, token = sent_sms[0]
    assert phone == CALLER
    assert services.tokens.validate(token)["used"] is False


def test_incoming_call_without_caller(client, sent_sms):
    r = client.post("/incoming-call", data={})
    assert r.status_code == 200
    assert "Sorry" in r.get_data(as_text=True)
    assert sent_sms == []


def test_incoming_call_sms_failure_still_returns_twiml(client, services):
    def broken_sms(phone, token):
        raise RuntimeError("twilio down")

    services.send_sms = broken_sms
    r = client.post("/incoming-call", data={"From": CALLER})
    assert r.status_code == 200
    assert "Sorry" in r.get_data(as_text=True)


def test_end_to_end_confirmation_flow(client, sent_sms):
    """Call in → open link → submit request → use token exactly once."""
    client.post("/incoming-call", data={"From": CALLER})
    _, token = sent_sms[0]

    r = client.get(f"/token/{token}")
    assert r.status_code == 200
    data = r.get_json()
    assert data["phone"] == CALLER
    assert data["used"] is False
    assert 3590 <= data["expiresIn"] <= 3600

    r = _create_request(client, patientPhone=data["phone"])
    assert r.status_code == 201

    r = client.post(f"/token/{token}/use")
    assert r.status_code == 200
    assert r.get_json() == {"success": True, "phone": CALLER}

    r = client.post(f"/token/{token}/use")
    assert r.status_code == 400
    assert r.get_json()["code"] == "token_used"

    assert client.get(f"/token/{token}").get_json()["used"] is True


def test_app_uses_injected_empty_token_store(services, token_store):
    assert len(token_store) == 0
    assert services.tokens is token_store


def test_unknown_and_expired_tokens_are_distinguishable(client, services, clock):
    r = client.get("/token/does-not-exist")
    assert r.status_code == 404
    not_found = r.get_json()
    assert not_found["code"] == "token_not_found"

    token = services.tokens.issue(CALLER)
    clock.advance(3600)
    r = client.get(f"/token/{token}")
    assert r.status_code == 404
    expired = r.get_json()
    assert expired["code"] == "token_expired"
    assert expired["error"] != not_found["error"]

    r = client.post(f"/token/{token}/use")
    assert r.status_code == 404
    assert r.get_json()["code"] == "token_expired"


# ─── Requests ────────────────────────────────────────────────────────────────

def test_create_request_without_ambulances_stays_pending(client):
    r = _create_request(client)
    assert r.status_code == 201
    data = r.get_json()
    assert data["status"] == "pending"
    assert data["assignedAmbulanceId"] is None
    assert data["priority"] == "high"

    r = client.get(f"/api/requests/{data['id']}")
    assert r.get_json()["status"] == "pending"
    assert [p["id"] for p in client.get("/api/requests/pending").get_json()] == [data["id"]]


def test_create_request_validation(client):
    r = _create_request(client, location=None)
    assert r.status_code == 400
    assert r.get_json()["code"] == "location_unavailable"

    r = _create_request(client, patientPhone="")
    assert r.status_code == 400
    assert r.get_json()["code"] == "validation_error"

    r = _create_request(client, emergencyType="flood")
    assert r.status_code == 400


def test_request_is_assigned_after_creation(client):
    """The app assigns the nearest online ambulance right after the request is created."""
    far = _register(client, km_north(3.0), name="far")
    near = _register(client, km_north(1.2), name="near")
    for amb in (far, near):
        assert client.post(f"/api/ambulances/{amb['id']}/online").get_json()["status"] == "available"

    request_id = _create_request(client).get_json()["id"]

    data = client.get(f"/api/requests/{request_id}").get_json()
    assert data["status"] == "assigned"
    assert data["assignedAmbulanceId"] == near["id"]
    assert data["estimatedArrival"].endswith("Z")
    assert client.get(f"/api/ambulances/{near['id']}").get_json()["status"] == "on_trip"
    assert client.get(f"/api/ambulances/{far['id']}").get_json()["status"] == "available"


def test_driver_trip_through_api(client):
    amb = _register(client, km_north(2.0))
    request_id = _create_request(client).get_json()["id"]

    client.post(f"/api/ambulances/{amb['id']}/online")
    r = client.post(f"/api/requests/{request_id}/assign")
    assert r.get_json()["assigned"] is True
    assert r.get_json()["etaMinutes"] == 5

    active = client.get(f"/api/ambulances/{amb['id']}/requests").get_json()
    assert [a["id"] for a in active] == [request_id]

    r = client.post(f"/api/requests/{request_id}/start", json={"ambulanceId": amb["id"]})
    assert r.status_code == 200
    assert r.get_json()["status"] == "en_route"

    r = client.post(f"/api/requests/{request_id}/complete", json={"ambulanceId": amb["id"]})
    assert r.status_code == 200
    assert r.get_json()["status"] == "completed"
    assert client.get(f"/api/ambulances/{amb['id']}").get_json()["status"] == "available"


def test_start_requires_ambulance_id(client):
    request_id = _create_request(client).get_json()["id"]
    r = client.post(f"/api/requests/{request_id}/start", json={})
    assert r.status_code == 400


def test_assign_with_nothing_available(client):
    request_id = _create_request(client).get_json()["id"]
    r = client.post(f"/api/requests/{request_id}/assign")
    assert r.status_code == 200
    assert r.get_json()["assigned"] is False
    assert r.get_json()["request"]["status"] == "pending"


def test_cancel_twice_is_noop(client):
    amb = _register(client, km_north(1.0))
    client.post(f"/api/ambulances/{amb['id']}/online")
    request_id = _create_request(client).get_json()["id"]

    r = client.post(f"/api/requests/{request_id}/cancel")
    assert r.status_code == 200
    assert r.get_json()["status"] == "cancelled"
    assert client.get(f"/api/ambulances/{amb['id']}").get_json()["status"] == "available"

    r = client.post(f"/api/requests/{request_id}/cancel")
    assert r.status_code == 200
    assert r.get_json()["status"] == "cancelled"


def test_unknown_request_is_404(client):
    assert client.get("/api/requests/missing").status_code == 404
    assert client.post("/api/requests/missing/cancel").status_code == 404


def test_dispatch_pending_endpoint(client):
    request_id = _create_request(client).get_json()["id"]
    amb = _register(client, km_north(1.0))
    client.post(f"/api/ambulances/{amb['id']}/online")

    r = client.post("/api/dispatch/pending")
    assert [a["requestId"] for a in r.get_json()] == [request_id]


# ─── Drivers ─────────────────────────────────────────────────────────────────

def test_register_ambulance(client, database):
    amb = _register(client, {"lat": 12.97, "lng": 77.59})
    assert amb["status"] == "offline"
    assert amb["type"] == "advanced"
    assert database["drivers"].find_one({"_id": amb["driverId"]})["ambulanceId"] == amb["id"]

    r = client.post("/api/ambulances", json={"driverName": "x"})
    assert r.status_code == 400


def test_accept_conflict_is_409(client):
    a = _register(client, km_north(1.0), name="a")
    b = _register(client, km_north(2.0), name="b")
    request_id = _create_request(client).get_json()["id"]
    for amb in (a, b):
        client.post(f"/api/ambulances/{amb['id']}/online")

    r = client.post(f"/api/ambulances/{a['id']}/accept", json={"requestId": request_id})
    assert r.status_code == 200
    r = client.post(f"/api/ambulances/{b['id']}/accept", json={"requestId": request_id})
    assert r.status_code == 409
    assert r.get_json()["code"] == "assignment_conflict"
    assert client.get(f"/api/ambulances/{b['id']}").get_json()["status"] == "available"


def test_auto_accept_endpoint(client):
    amb = _register(client, km_north(1.0))
    r = client.post(f"/api/ambulances/{amb['id']}/auto-accept")
    assert r.get_json() == {"assigned": False}

    request_id = _create_request(client).get_json()["id"]
    client.post(f"/api/ambulances/{amb['id']}/online")
    r = client.post(f"/api/ambulances/{amb['id']}/auto-accept")
    assert r.get_json()["assigned"] is True
    assert r.get_json()["requestId"] == request_id


def test_offline_during_trip_is_409(client):
    amb = _register(client, km_north(1.0))
    client.post(f"/api/ambulances/{amb['id']}/online")
    _create_request(client)

    r = client.post(f"/api/ambulances/{amb['id']}/offline")
    assert r.status_code == 409
    assert r.get_json()["code"] == "invalid_transition"


def test_location_update(client):
    amb = _register(client, km_north(1.0))
    r = client.post(f"/api/ambulances/{amb['id']}/location", json={"lat": 13.0, "lng": 77.6})
    assert r.get_json()["location"] == {"lat": 13.0, "lng": 77.6}

    r = client.post(f"/api/ambulances/{amb['id']}/location", json={"lat": "x"})
    assert r.status_code == 400


# ─── Feeds, hospitals, plumbing ──────────────────────────────────────────────

def test_request_event_stream(client, services):
    request_id = _create_request(client).get_json()["id"]

    r = client.get(f"/api/requests/{request_id}/events", buffered=False)
    assert r.status_code == 200
    assert r.mimetype == "text/event-stream"
    first = next(r.response)
    first = first.decode() if isinstance(first, bytes) else first
    assert first.startswith("data: ")
    assert request_id in first
    assert services.events.subscriber_count() == 1

    r.close()
    assert services.events.subscriber_count() == 0


def test_event_stream_cors_comes_from_flask_cors(client):
    request_id = _create_request(client).get_json()["id"]
    origin = "http://localhost:5173"

    r = client.get(f"/api/requests/{request_id}/events", headers={"Origin": origin}, buffered=False)
    assert r.headers.getlist("Access-Control-Allow-Origin") == [origin]
    r.close()


def test_hospitals_sorted_by_distance(client, database):
    database["hospitals"].insert_many([
        {"_id": "far", "name": "Far", "location": km_north(10)},
        {"_id": "near", "name": "Near", "location": km_north(1)},
    ])
    r = client.get("/api/hospitals?lat=0&lng=0")
    assert [h["id"] for h in r.get_json()] == ["near", "far"]

    assert client.get("/api/hospitals?lat=abc&lng=0").status_code == 400


def test_database_outage_is_503(client, services, monkeypatch):
    def down(*args, **kwargs):
        raise ServerSelectionTimeoutError("no servers")

    monkeypatch.setattr(services.requests.collection, "find", down)
    r = client.get("/api/requests")
    assert r.status_code == 503
    assert r.get_json()["code"] == "persistence_unavailable"


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json()["status"] == "ok"
