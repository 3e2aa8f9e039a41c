"""
Emergency request storage and change feeds.

Every status change goes through transition(), a single conditional
find_one_and_update, so two writers racing on the same request can never
both succeed: the loser's filter no longer matches and it gets None back.
"""

import logging

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from db import EMERGENCY_REQUESTS, guarded, new_id, serialize_doc, utcnow
from errors import NotFound, ValidationError
from events import EventBus
from services.geo import parse_location
from services.lifecycle import (
    ACTIVE_REQUEST_STATUSES,
    EmergencyType,
    Priority,
    RequestStatus,
    parse_choice,
)

logger = logging.getLogger(__name__)


def build_request(data: dict) -> dict:
    """
    Validate a patient submission and return the fields of a new request.

    Request body (JSON):
        - location (required): {"lat": float, "lng": float}
        - patientPhone (required)
        - patientName, notes (optional)
        - emergencyType: cardiac | accident | respiratory | other (default other)
        - priority: high | medium | low (default high)
    """
    phone = str(data.get("patientPhone") or "").strip()
    if not phone:
        raise ValidationError("patientPhone is required")
    return {
        "location": parse_location(data.get("location")),
        "patientPhone": phone,
        "patientName": str(data.get("patientName") or "").strip() or None,
        "emergencyType": parse_choice(EmergencyType, data.get("emergencyType"), default=EmergencyType.OTHER),
        "priority": parse_choice(Priority, data.get("priority"), default=Priority.HIGH),
        "notes": str(data.get("notes") or "").strip() or None,
    }


class RequestStore:
    def __init__(self, collection, events: EventBus):
        self.collection = collection
        self.events = events

    @guarded
    def create(self, fields: dict) -> dict:
        doc = {
            "_id": new_id(),
            "location": fields["location"],
            "status": RequestStatus.PENDING.value,
            "assignedAmbulanceId": None,
            "patientPhone": fields["patientPhone"],
            "patientName": fields.get("patientName"),
            "emergencyType": fields.get("emergencyType", EmergencyType.OTHER.value),
            "priority": fields.get("priority", Priority.HIGH.value),
            "createdAt": utcnow(),
            "estimatedArrival": None,
            "notes": fields.get("notes"),
        }
        self.collection.insert_one(doc)
        logger.info("[Requests] Created request %s (%s, %s)", doc["_id"], doc["emergencyType"], doc["priority"])
        self._changed(doc["_id"])
        return doc

    @guarded
    def get(self, request_id: str) -> dict | None:
        return self.collection.find_one({"_id": request_id})

    def require(self, request_id: str) -> dict:
        doc = self.get(request_id)
        if doc is None:
            raise NotFound("Request not found", requestId=request_id)
        return doc

    @guarded
    def list_all(self) -> list:
        return list(self.collection.find().sort("createdAt", DESCENDING))

    @guarded
    def list_pending(self) -> list:
        """Pending requests, newest first."""
        return list(
            self.collection.find({"status": RequestStatus.PENDING.value}).sort("createdAt", DESCENDING)
        )

    @guarded
    def list_for_ambulance(self, ambulance_id: str) -> list:
        """Requests the ambulance is currently serving (assigned or en route)."""
        return list(
            self.collection.find({
                "assignedAmbulanceId": ambulance_id,
                "status": {"$in": [s.value for s in ACTIVE_REQUEST_STATUSES]},
            }).sort("createdAt", ASCENDING)
        )

    @guarded
    def transition(self, request_id: str, from_statuses, to_status, match: dict = None, **fields) -> dict | None:
        """
        Conditional status update. Applies only if the request's status is one
        of from_statuses (and any extra `match` fields agree); returns the
        updated document, or None when the precondition failed.
        """
        query = {"_id": request_id, "status": {"$in": [_value(s) for s in from_statuses]}}
        if match:
            query.update(match)
        updated = self.collection.find_one_and_update(
            query,
            {"$set": dict(fields, status=_value(to_status))},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            self._changed(request_id)
        return updated

    # ─── Change feeds ─────────────────────────────────────────────────────

    def subscribe(self, request_id: str):
        """Every change to one request (None if it disappears)."""
        return self.events.subscribe(
            lambda coll, doc_id: coll == EMERGENCY_REQUESTS and doc_id == request_id,
            lambda: serialize_doc(self.get(request_id)),
            name=f"request:{request_id}",
        )

    def subscribe_pending(self):
        """All pending requests, newest first, re-sent on any request change."""
        return self.events.subscribe(
            lambda coll, doc_id: coll == EMERGENCY_REQUESTS,
            lambda: [serialize_doc(r) for r in self.list_pending()],
            name="requests:pending",
        )

    def subscribe_for_ambulance(self, ambulance_id: str):
        """The ambulance's assigned / en-route requests, re-sent on any request change."""
        return self.events.subscribe(
            lambda coll, doc_id: coll == EMERGENCY_REQUESTS,
            lambda: [serialize_doc(r) for r in self.list_for_ambulance(ambulance_id)],
            name=f"requests:ambulance:{ambulance_id}",
        )

    def _changed(self, request_id: str):
        self.events.publish(EMERGENCY_REQUESTS, request_id)


def _value(status) -> str:
    return getattr(status, "value", status)
