"""
Dispatch coordinator: assigns ambulances to emergency requests and drives
both lifecycles forward.

Two paths can claim an ambulance for a request:
  - push: assign_nearest(), scheduled shortly after a request is created
    (and re-run by dispatch_pending())
  - pull: a driver accepting a request, directly or via auto_accept()
Both go through _claim(), which is two conditional updates:
  1. ambulance available → on_trip   (fails if another claim won the ambulance)
  2. request pending → assigned      (fails if another claim won the request,
                                      in which case step 1 is undone)
A losing attempt raises AssignmentConflict and touches nothing else.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from db import utcnow
from errors import AssignmentConflict, DispatchError, InvalidTransition
from services.emergencies import RequestStore
from services.geo import eta_minutes, haversine, nearest, parse_location, sort_by_distance
from services.lifecycle import (
    AmbulanceStatus,
    RequestStatus,
    ensure_transition,
    is_terminal,
)
from services.registry import AmbulanceRegistry

logger = logging.getLogger(__name__)

NON_TERMINAL_REQUEST_STATUSES = [RequestStatus.PENDING, RequestStatus.ASSIGNED, RequestStatus.EN_ROUTE]


@dataclass
class Assignment:
    request_id: str
    ambulance_id: str
    distance_km: float
    eta_minutes: int
    estimated_arrival: datetime

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "ambulanceId": self.ambulance_id,
            "distanceKm": round(self.distance_km, 2),
            "etaMinutes": self.eta_minutes,
            "estimatedArrival": self.estimated_arrival.isoformat() + "Z",
        }


class DispatchCoordinator:
    def __init__(self, requests: RequestStore, ambulances: AmbulanceRegistry,
                 assign_delay_seconds: float = 2.0, scheduler=None, clock=utcnow):
        self.requests = requests
        self.ambulances = ambulances
        self.assign_delay_seconds = assign_delay_seconds
        self._schedule = scheduler or self._schedule_on_timer
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════
    # Patient side
    # ═══════════════════════════════════════════════════════════════════════

    def create_request(self, fields: dict) -> str:
        """
        Persist a pending request and schedule an assignment attempt.
        Returns immediately; assignment happens in the background.
        """
        doc = self.requests.create(fields)
        self._schedule(self._assign_in_background, doc["_id"])
        return doc["_id"]

    def cancel_request(self, request_id: str) -> dict:
        """
        Cancel from any non-terminal status, releasing the ambulance if one was
        assigned. Cancelling a completed or cancelled request is a no-op.
        """
        request = self.requests.require(request_id)
        if is_terminal(request["status"]):
            logger.info("[Dispatch] Request %s already %s; cancel is a no-op", request_id, request["status"])
            return request

        updated = self.requests.transition(
            request_id, NON_TERMINAL_REQUEST_STATUSES, RequestStatus.CANCELLED,
            cancelledAt=self._clock(),
        )
        if updated is None:
            # Completed or cancelled concurrently; either way it is terminal now.
            return self.requests.require(request_id)

        ambulance_id = updated.get("assignedAmbulanceId")
        if ambulance_id:
            self._release(ambulance_id, request_id)
        logger.info("[Dispatch] Request %s cancelled", request_id)
        return updated

    # ═══════════════════════════════════════════════════════════════════════
    # Assignment
    # ═══════════════════════════════════════════════════════════════════════

    def assign_nearest(self, request_id: str) -> Assignment | None:
        """
        Assign the nearest available ambulance to a pending request.

        Returns None when there is nothing to do: the request is gone or no
        longer pending, no ambulance is available (the request stays pending
        for a later attempt), or a concurrent claim won the race.
        """
        request = self.requests.get(request_id)
        if request is None or request["status"] != RequestStatus.PENDING.value:
            logger.info("[Dispatch] Request %s not found or not pending (%s)",
                        request_id, request and request["status"])
            return None

        candidates = self.ambulances.list_available()
        logger.info("[Dispatch] %d available ambulance(s) for request %s", len(candidates), request_id)
        if not candidates:
            logger.info("[Dispatch] No available ambulances; request %s stays pending", request_id)
            return None

        ambulance, distance_km = nearest(request["location"], candidates)
        logger.info("[Dispatch] Nearest ambulance %s at %.2f km", ambulance["_id"], distance_km)

        try:
            return self._claim(request_id, ambulance["_id"], distance_km)
        except AssignmentConflict as e:
            logger.info("[Dispatch] Assignment for %s lost a race: %s", request_id, e.message)
            return None

    def dispatch_pending(self) -> list:
        """Retry every pending request, oldest first. Returns the assignments made."""
        assignments = []
        for request in reversed(self.requests.list_pending()):
            assignment = self.assign_nearest(request["_id"])
            if assignment is not None:
                assignments.append(assignment)
        return assignments

    # ═══════════════════════════════════════════════════════════════════════
    # Driver side
    # ═══════════════════════════════════════════════════════════════════════

    def go_online(self, ambulance_id: str) -> dict:
        return self._set_driver_status(ambulance_id, AmbulanceStatus.AVAILABLE)

    def go_offline(self, ambulance_id: str) -> dict:
        return self._set_driver_status(ambulance_id, AmbulanceStatus.OFFLINE)

    def update_location(self, ambulance_id: str, location) -> dict:
        return self.ambulances.update_location(ambulance_id, parse_location(location))

    def accept_request(self, ambulance_id: str, request_id: str) -> Assignment:
        """
        Driver self-accept. Same claim as assign_nearest; raises
        AssignmentConflict if the ambulance or the request was taken.
        """
        ambulance = self.ambulances.require(ambulance_id)
        request = self.requests.require(request_id)
        if request["status"] != RequestStatus.PENDING.value:
            raise AssignmentConflict("Request is no longer pending", requestId=request_id)
        if ambulance["status"] != AmbulanceStatus.AVAILABLE.value:
            raise AssignmentConflict("Ambulance is not available", ambulanceId=ambulance_id)
        if self.requests.list_for_ambulance(ambulance_id):
            raise AssignmentConflict("Ambulance already has an active request", ambulanceId=ambulance_id)

        distance_km = haversine(ambulance["location"], request["location"])
        return self._claim(request_id, ambulance_id, distance_km)

    def auto_accept(self, ambulance_id: str) -> Assignment | None:
        """
        What an online, idle driver's dashboard does on every pending-request
        update: accept the pending request closest to the ambulance.
        """
        ambulance = self.ambulances.require(ambulance_id)
        if ambulance["status"] != AmbulanceStatus.AVAILABLE.value:
            return None
        if self.requests.list_for_ambulance(ambulance_id):
            return None

        pending = self.requests.list_pending()
        if not pending:
            return None

        target = sort_by_distance(ambulance["location"], pending)[0]
        distance_km = haversine(ambulance["location"], target["location"])
        logger.info("[Dispatch] Auto accepting %s for ambulance %s (%.2f km)",
                    target["_id"], ambulance_id, distance_km)
        try:
            return self._claim(target["_id"], ambulance_id, distance_km)
        except AssignmentConflict as e:
            logger.info("[Dispatch] Auto accept by %s lost a race: %s", ambulance_id, e.message)
            return None

    def start_trip(self, request_id: str, ambulance_id: str) -> dict:
        """assigned → en_route, by the assigned ambulance only."""
        request = self._require_assigned_to(request_id, ambulance_id)
        ensure_transition(RequestStatus, request["status"], RequestStatus.EN_ROUTE)

        updated = self.requests.transition(
            request_id, [RequestStatus.ASSIGNED], RequestStatus.EN_ROUTE,
            match={"assignedAmbulanceId": ambulance_id},
            startedAt=self._clock(),
        )
        if updated is None:
            raise AssignmentConflict("Request changed while starting the trip", requestId=request_id)
        logger.info("[Dispatch] Request %s en route (ambulance %s)", request_id, ambulance_id)
        return updated

    def complete_request(self, request_id: str, ambulance_id: str) -> dict:
        """assigned | en_route → completed, and the ambulance becomes available again."""
        request = self._require_assigned_to(request_id, ambulance_id)
        ensure_transition(RequestStatus, request["status"], RequestStatus.COMPLETED)

        updated = self.requests.transition(
            request_id, [RequestStatus.ASSIGNED, RequestStatus.EN_ROUTE], RequestStatus.COMPLETED,
            match={"assignedAmbulanceId": ambulance_id},
            completedAt=self._clock(),
        )
        if updated is None:
            raise AssignmentConflict("Request changed while completing it", requestId=request_id)
        self._release(ambulance_id, request_id)
        logger.info("[Dispatch] Request %s completed by ambulance %s", request_id, ambulance_id)
        return updated

    # ═══════════════════════════════════════════════════════════════════════
    # Helpers
    # ═══════════════════════════════════════════════════════════════════════

    def _claim(self, request_id: str, ambulance_id: str, distance_km: float) -> Assignment:
        eta = eta_minutes(distance_km)
        estimated_arrival = self._clock() + timedelta(minutes=eta)

        if self.ambulances.claim(ambulance_id) is None:
            raise AssignmentConflict("Ambulance is no longer available", ambulanceId=ambulance_id)

        updated = self.requests.transition(
            request_id, [RequestStatus.PENDING], RequestStatus.ASSIGNED,
            assignedAmbulanceId=ambulance_id,
            estimatedArrival=estimated_arrival,
        )
        if updated is None:
            self.ambulances.release(ambulance_id)
            raise AssignmentConflict("Request is no longer pending", requestId=request_id)

        logger.info("[Dispatch] Assigned ambulance %s to request %s, ETA %d min",
                    ambulance_id, request_id, eta)
        return Assignment(
            request_id=request_id,
            ambulance_id=ambulance_id,
            distance_km=distance_km,
            eta_minutes=eta,
            estimated_arrival=estimated_arrival,
        )

    def _release(self, ambulance_id: str, request_id: str):
        if self.ambulances.release(ambulance_id) is None:
            logger.warning("[Dispatch] Ambulance %s was not on a trip when request %s ended",
                           ambulance_id, request_id)

    def _require_assigned_to(self, request_id: str, ambulance_id: str) -> dict:
        request = self.requests.require(request_id)
        if request.get("assignedAmbulanceId") != ambulance_id:
            raise InvalidTransition("Request is not assigned to this ambulance",
                                    requestId=request_id, ambulanceId=ambulance_id)
        return request

    def _set_driver_status(self, ambulance_id: str, target: AmbulanceStatus) -> dict:
        ambulance = self.ambulances.require(ambulance_id)
        current = ambulance["status"]
        if current == target.value:
            return ambulance
        if current == AmbulanceStatus.ON_TRIP.value:
            raise InvalidTransition("Finish or cancel the current trip first", ambulanceId=ambulance_id)
        ensure_transition(AmbulanceStatus, current, target)

        updated = self.ambulances.set_status(ambulance_id, [current], target)
        if updated is None:
            raise AssignmentConflict("Ambulance status changed, try again", ambulanceId=ambulance_id)
        logger.info("[Dispatch] Ambulance %s is now %s", ambulance_id, target.value)
        return updated

    def _assign_in_background(self, request_id: str):
        try:
            self.assign_nearest(request_id)
        except DispatchError as e:
            logger.error("[Dispatch] Background assignment for %s failed: %s", request_id, e.message)
        except Exception:
            logger.exception("[Dispatch] Background assignment for %s crashed", request_id)

    def _schedule_on_timer(self, fn, *args):
        timer = threading.Timer(self.assign_delay_seconds, fn, args=args)
        timer.daemon = True
        timer.start()
