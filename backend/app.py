"""
Dispatch backend: Flask app that bridges emergency phone calls to a web
request flow and assigns ambulances.

Call flow:
  1. Caller dials the Twilio number → Twilio POSTs to /incoming-call
  2. We issue a one-hour confirmation token and SMS the confirm link
  3. Patient opens the link → /token/<token> returns their phone number
  4. Patient submits → POST /api/requests, then /token/<token>/use
  5. Shortly after creation the nearest available ambulance is assigned
  6. Patient, driver and hospital views follow along over SSE
"""

import logging
import os

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import config
from db import AMBULANCES, DRIVERS, EMERGENCY_REQUESTS, HOSPITALS, get_database
from errors import DispatchError
from events import EventBus
from routes import DispatchServices
from routes.ambulances import ambulances_bp, hospitals_bp
from routes.emergencies import dispatch_bp, requests_bp
from routes.tokens import tokens_bp
from services.dispatch import DispatchCoordinator
from services.emergencies import RequestStore
from services.messaging import error_twiml, send_confirmation_sms
from services.registry import AmbulanceRegistry, HospitalDirectory
from services.tokens import ConfirmationTokenStore

logger = logging.getLogger(__name__)

VOICE_PATHS = ("/incoming-call",)


def create_app(database=None, token_store: ConfirmationTokenStore = None, send_sms=None,
               scheduler=None, start_background: bool = True) -> Flask:
    """
    Build the app. Tests pass a mongomock database, a fake SMS sender, an
    inline scheduler, and start_background=False.
    """
    if database is None:
        database = get_database()

    events = EventBus()
    requests_store = RequestStore(database[EMERGENCY_REQUESTS], events)
    ambulances = AmbulanceRegistry(database[AMBULANCES], events, drivers=database[DRIVERS])
    tokens = token_store if token_store is not None else ConfirmationTokenStore(
        ttl_seconds=config.TOKEN_TTL_SECONDS,
        sweep_interval_seconds=config.TOKEN_SWEEP_INTERVAL_SECONDS,
    )

    app = Flask(__name__)
    CORS(app)
    app.extensions["dispatch"] = DispatchServices(
        tokens=tokens,
        requests=requests_store,
        ambulances=ambulances,
        hospitals=HospitalDirectory(database[HOSPITALS]),
        coordinator=DispatchCoordinator(
            requests_store,
            ambulances,
            assign_delay_seconds=config.ASSIGN_DELAY_SECONDS,
            scheduler=scheduler,
        ),
        events=events,
        send_sms=send_sms or send_confirmation_sms,
    )

    # Register blueprints
    app.register_blueprint(tokens_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(dispatch_bp)
    app.register_blueprint(ambulances_bp)
    app.register_blueprint(hospitals_bp)

    _register_error_handlers(app)

    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok", "message": "Backend connected"})

    @app.route("/api")
    def index():
        return jsonify({"message": "Ambulance Dispatch API"})

    if start_background:
        tokens.start()

    return app


def _register_error_handlers(app: Flask):
    @app.errorhandler(DispatchError)
    def handle_dispatch_error(e: DispatchError):
        if e.status_code >= 500:
            logger.error("[API] %s %s: %s", request.method, request.path, e.message)
        return jsonify(e.to_dict()), e.status_code

    # ═══════════════════════════════════════════════════════════════════════
    # Global error handler: Twilio must ALWAYS get valid TwiML, never a 500
    # ═══════════════════════════════════════════════════════════════════════

    @app.errorhandler(Exception)
    def handle_any_error(e):
        """Last-resort safety net. Safe TwiML for Twilio paths, JSON error for API paths."""
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description, "code": e.name}), e.code

        logger.exception("[GLOBAL ERROR] %s: %s", type(e).__name__, e)
        if request.path.startswith(VOICE_PATHS):
            return error_twiml(), 200, {"Content-Type": "text/xml"}
        return jsonify({"error": "Internal server error", "detail": str(e)}), 500


if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0").lower() in ("1", "true", "yes")

    print("=" * 60)
    print(f"  Dispatch backend starting on http://0.0.0.0:{port}")
    if debug:
        print("  (If using Twilio locally, use ngrok and point the voice webhook to /incoming-call)")
    print("=" * 60)

    # Start the token sweeper once (avoid a second one in the debug reloader's parent)
    should_start = (not debug) or (os.environ.get("WERKZEUG_RUN_MAIN") == "true")
    app = create_app(start_background=should_start)

    app.run(
        host="0.0.0.0",
        port=port,
        debug=debug,
        use_reloader=debug,
        threaded=True,
    )
