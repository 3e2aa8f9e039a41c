"""
Ambulance registry (plus the read-only hospital directory).

Drivers own their ambulance's location and the offline/available toggle;
the dispatch coordinator owns available ⇄ on_trip. Status writes are
conditional on the current status, same as requests.
"""

import logging

from pymongo import ReturnDocument

from db import AMBULANCES, guarded, new_id, serialize_doc, utcnow
from errors import NotFound, ValidationError
from events import EventBus
from services.geo import parse_location, sort_by_distance
from services.lifecycle import AmbulanceStatus, AmbulanceType, parse_choice

logger = logging.getLogger(__name__)


class AmbulanceRegistry:
    def __init__(self, collection, events: EventBus, drivers=None):
        self.collection = collection
        self.drivers = drivers
        self.events = events

    @guarded
    def register(self, data: dict) -> dict:
        """
        Register a driver's ambulance. Starts offline; the driver goes online
        from the dashboard.

        Request body (JSON):
            - driverName, vehicleNumber (required)
            - location (required): {"lat": float, "lng": float}
            - type: basic | advanced | icu (default basic)
            - driverId, driverPhone, licenseNumber (optional)
        """
        driver_name = str(data.get("driverName") or "").strip()
        vehicle_number = str(data.get("vehicleNumber") or "").strip()
        if not driver_name or not vehicle_number:
            raise ValidationError("driverName and vehicleNumber are required")

        ambulance_id = new_id()
        driver_id = data.get("driverId") or new_id()
        doc = {
            "_id": ambulance_id,
            "status": AmbulanceStatus.OFFLINE.value,
            "type": parse_choice(AmbulanceType, data.get("type"), default=AmbulanceType.BASIC),
            "location": parse_location(data.get("location")),
            "driverId": driver_id,
            "driverName": driver_name,
            "vehicleNumber": vehicle_number,
            "lastUpdated": utcnow(),
        }
        self.collection.insert_one(doc)
        if self.drivers is not None:
            self.drivers.insert_one({
                "_id": driver_id,
                "name": driver_name,
                "phone": data.get("driverPhone"),
                "licenseNumber": data.get("licenseNumber"),
                "ambulanceId": ambulance_id,
                "status": "active",
            })
        logger.info("[Ambulances] Registered %s (%s) for driver %s", vehicle_number, ambulance_id, driver_name)
        self._changed(ambulance_id)
        return doc

    @guarded
    def get(self, ambulance_id: str) -> dict | None:
        return self.collection.find_one({"_id": ambulance_id})

    def require(self, ambulance_id: str) -> dict:
        doc = self.get(ambulance_id)
        if doc is None:
            raise NotFound("Ambulance not found", ambulanceId=ambulance_id)
        return doc

    @guarded
    def list_all(self) -> list:
        return list(self.collection.find())

    @guarded
    def list_available(self) -> list:
        # Store order is the tie-break order for nearest selection.
        return list(self.collection.find({"status": AmbulanceStatus.AVAILABLE.value}))

    @guarded
    def update_location(self, ambulance_id: str, location: dict) -> dict:
        updated = self.collection.find_one_and_update(
            {"_id": ambulance_id},
            {"$set": {"location": location, "lastUpdated": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise NotFound("Ambulance not found", ambulanceId=ambulance_id)
        self._changed(ambulance_id)
        return updated

    @guarded
    def set_status(self, ambulance_id: str, from_statuses, to_status) -> dict | None:
        """Conditional status write; None if the ambulance was not in from_statuses."""
        updated = self.collection.find_one_and_update(
            {"_id": ambulance_id, "status": {"$in": [getattr(s, "value", s) for s in from_statuses]}},
            {"$set": {"status": getattr(to_status, "value", to_status), "lastUpdated": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            self._changed(ambulance_id)
        return updated

    def claim(self, ambulance_id: str) -> dict | None:
        """available → on_trip, or None if someone else got there first."""
        return self.set_status(ambulance_id, [AmbulanceStatus.AVAILABLE], AmbulanceStatus.ON_TRIP)

    def release(self, ambulance_id: str) -> dict | None:
        """on_trip → available."""
        return self.set_status(ambulance_id, [AmbulanceStatus.ON_TRIP], AmbulanceStatus.AVAILABLE)

    def subscribe(self, ambulance_id: str):
        return self.events.subscribe(
            lambda coll, doc_id: coll == AMBULANCES and doc_id == ambulance_id,
            lambda: serialize_doc(self.get(ambulance_id)),
            name=f"ambulance:{ambulance_id}",
        )

    def _changed(self, ambulance_id: str):
        self.events.publish(AMBULANCES, ambulance_id)


class HospitalDirectory:
    """Read-only view of the hospitals collection; bed administration lives elsewhere."""

    def __init__(self, collection):
        self.collection = collection

    @guarded
    def list_nearby(self, origin: dict = None) -> list:
        hospitals = list(self.collection.find())
        if origin is None:
            return hospitals
        return sort_by_distance(origin, [h for h in hospitals if h.get("location")])
