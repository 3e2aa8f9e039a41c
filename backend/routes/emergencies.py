"""
Emergency request API: patient submission and tracking, driver trip
actions, hospital overview, and the live feeds behind each.
"""
from flask import Blueprint, jsonify, request

from db import serialize_doc
from errors import ValidationError
from routes import get_services, sse_response
from services.emergencies import build_request

requests_bp = Blueprint("requests", __name__, url_prefix="/api/requests")
dispatch_bp = Blueprint("dispatch", __name__, url_prefix="/api/dispatch")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _ambulance_id(data: dict) -> str:
    ambulance_id = data.get("ambulanceId")
    if not ambulance_id:
        raise ValidationError("ambulanceId is required")
    return ambulance_id


@requests_bp.route("", methods=["POST"])
def create_request():
    """
    Create a pending emergency request; an ambulance is assigned shortly after.
    Returns the created request (201).
    """
    services = get_services()
    request_id = services.coordinator.create_request(build_request(_json_body()))
    return jsonify(serialize_doc(services.requests.require(request_id))), 201


@requests_bp.route("", methods=["GET"])
def list_requests():
    """All requests, newest first (hospital dashboard)."""
    return jsonify([serialize_doc(r) for r in get_services().requests.list_all()])


@requests_bp.route("/pending", methods=["GET"])
def list_pending():
    return jsonify([serialize_doc(r) for r in get_services().requests.list_pending()])


@requests_bp.route("/pending/events", methods=["GET"])
def pending_events():
    return sse_response(get_services().requests.subscribe_pending())


@requests_bp.route("/<request_id>", methods=["GET"])
def get_request(request_id: str):
    return jsonify(serialize_doc(get_services().requests.require(request_id)))


@requests_bp.route("/<request_id>/events", methods=["GET"])
def request_events(request_id: str):
    services = get_services()
    services.requests.require(request_id)
    return sse_response(services.requests.subscribe(request_id))


@requests_bp.route("/<request_id>/assign", methods=["POST"])
def assign_request(request_id: str):
    """
    Try to assign the nearest available ambulance now.
    {"assigned": false} is a normal answer: the request stays pending.
    """
    services = get_services()
    services.requests.require(request_id)
    assignment = services.coordinator.assign_nearest(request_id)
    if assignment is None:
        return jsonify({"assigned": False, "request": serialize_doc(services.requests.get(request_id))})
    return jsonify({"assigned": True, **assignment.to_dict()})


@requests_bp.route("/<request_id>/start", methods=["POST"])
def start_trip(request_id: str):
    updated = get_services().coordinator.start_trip(request_id, _ambulance_id(_json_body()))
    return jsonify(serialize_doc(updated))


@requests_bp.route("/<request_id>/complete", methods=["POST"])
def complete_request(request_id: str):
    updated = get_services().coordinator.complete_request(request_id, _ambulance_id(_json_body()))
    return jsonify(serialize_doc(updated))


@requests_bp.route("/<request_id>/cancel", methods=["POST"])
def cancel_request(request_id: str):
    """Cancel a request; repeating it on a finished request is a no-op."""
    return jsonify(serialize_doc(get_services().coordinator.cancel_request(request_id)))


@dispatch_bp.route("/pending", methods=["POST"])
def dispatch_pending():
    """Retry assignment for every pending request, oldest first."""
    assignments = get_services().coordinator.dispatch_pending()
    return jsonify([a.to_dict() for a in assignments])
