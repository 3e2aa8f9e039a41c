"""
Shared pieces for the blueprints: the service bundle hung off the Flask app,
and the Server-Sent Events response wrapping a Subscription.
"""

import json
import queue
from dataclasses import dataclass
from typing import Callable

from flask import Response, current_app

from events import EventBus, Subscription
from services.dispatch import DispatchCoordinator
from services.emergencies import RequestStore
from services.registry import AmbulanceRegistry, HospitalDirectory
from services.tokens import ConfirmationTokenStore

KEEPALIVE_SECONDS = 30


@dataclass
class DispatchServices:
    tokens: ConfirmationTokenStore
    requests: RequestStore
    ambulances: AmbulanceRegistry
    hospitals: HospitalDirectory
    coordinator: DispatchCoordinator
    events: EventBus
    send_sms: Callable[[str, str], object]


def get_services() -> DispatchServices:
    return current_app.extensions["dispatch"]


def sse_response(sub: Subscription) -> Response:
    """Stream a subscription's snapshots as SSE; the subscription closes when the client goes away."""
    def gen():
        try:
            while not sub.closed:
                try:
                    payload = sub.get(timeout=KEEPALIVE_SECONDS)
                    yield f"data: {json.dumps(payload)}\n\n"
                except queue.Empty:
                    yield ": keepalive\n\n"
        finally:
            sub.close()

    return Response(
        gen(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
