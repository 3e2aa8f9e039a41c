"""
Ambulance / driver API and the read-only hospital listing.
"""
from flask import Blueprint, jsonify, request

from db import serialize_doc
from errors import ValidationError
from routes import get_services, sse_response
from services.geo import parse_location

ambulances_bp = Blueprint("ambulances", __name__, url_prefix="/api/ambulances")
hospitals_bp = Blueprint("hospitals", __name__, url_prefix="/api/hospitals")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@ambulances_bp.route("", methods=["POST"])
def register_ambulance():
    """Driver registration: creates the ambulance (offline) and its driver record."""
    ambulance = get_services().ambulances.register(_json_body())
    return jsonify(serialize_doc(ambulance)), 201


@ambulances_bp.route("", methods=["GET"])
def list_ambulances():
    return jsonify([serialize_doc(a) for a in get_services().ambulances.list_all()])


@ambulances_bp.route("/<ambulance_id>", methods=["GET"])
def get_ambulance(ambulance_id: str):
    return jsonify(serialize_doc(get_services().ambulances.require(ambulance_id)))


@ambulances_bp.route("/<ambulance_id>/online", methods=["POST"])
def go_online(ambulance_id: str):
    return jsonify(serialize_doc(get_services().coordinator.go_online(ambulance_id)))


@ambulances_bp.route("/<ambulance_id>/offline", methods=["POST"])
def go_offline(ambulance_id: str):
    return jsonify(serialize_doc(get_services().coordinator.go_offline(ambulance_id)))


@ambulances_bp.route("/<ambulance_id>/location", methods=["POST"])
def update_location(ambulance_id: str):
    updated = get_services().coordinator.update_location(ambulance_id, _json_body())
    return jsonify(serialize_doc(updated))


@ambulances_bp.route("/<ambulance_id>/accept", methods=["POST"])
def accept_request(ambulance_id: str):
    request_id = _json_body().get("requestId")
    if not request_id:
        raise ValidationError("requestId is required")
    assignment = get_services().coordinator.accept_request(ambulance_id, request_id)
    return jsonify(assignment.to_dict())


@ambulances_bp.route("/<ambulance_id>/auto-accept", methods=["POST"])
def auto_accept(ambulance_id: str):
    """Accept the nearest pending request if this ambulance is idle."""
    assignment = get_services().coordinator.auto_accept(ambulance_id)
    if assignment is None:
        return jsonify({"assigned": False})
    return jsonify({"assigned": True, **assignment.to_dict()})


@ambulances_bp.route("/<ambulance_id>/requests", methods=["GET"])
def active_requests(ambulance_id: str):
    services = get_services()
    services.ambulances.require(ambulance_id)
    return jsonify([serialize_doc(r) for r in services.requests.list_for_ambulance(ambulance_id)])


@ambulances_bp.route("/<ambulance_id>/events", methods=["GET"])
def ambulance_events(ambulance_id: str):
    services = get_services()
    services.ambulances.require(ambulance_id)
    return sse_response(services.ambulances.subscribe(ambulance_id))


@ambulances_bp.route("/<ambulance_id>/requests/events", methods=["GET"])
def ambulance_request_events(ambulance_id: str):
    services = get_services()
    services.ambulances.require(ambulance_id)
    return sse_response(services.requests.subscribe_for_ambulance(ambulance_id))


@hospitals_bp.route("", methods=["GET"])
def list_hospitals():
    """All hospitals; nearest first when ?lat=&lng= is given."""
    origin = None
    if request.args.get("lat") is not None or request.args.get("lng") is not None:
        origin = parse_location({"lat": request.args.get("lat"), "lng": request.args.get("lng")})
    hospitals = get_services().hospitals.list_nearby(origin)
    return jsonify([serialize_doc(h) for h in hospitals])
