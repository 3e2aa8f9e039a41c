"""
Phone-call bridge: Twilio voice webhook and the confirmation-token API the
confirm page talks to.
"""
import logging

from flask import Blueprint, jsonify, request

from routes import get_services
from services.messaging import confirm_prompt_twiml, error_twiml

logger = logging.getLogger(__name__)

tokens_bp = Blueprint("tokens", __name__)

TWIML = {"Content-Type": "text/xml"}


@tokens_bp.route("/incoming-call", methods=["POST"])
def incoming_call():
    """
    Twilio hits this when someone calls the dispatch number.
    Issues a confirmation token, texts the link, and hangs up with a short prompt.
    NEVER returns 500; the caller always gets valid TwiML.
    """
    caller = request.form.get("From")
    logger.info("[Twilio] Incoming call from %s", caller or "unknown")
    if not caller:
        return error_twiml(), 200, TWIML

    services = get_services()
    try:
        token = services.tokens.issue(caller)
        services.send_sms(caller, token)
    except Exception:
        logger.exception("[Twilio] Failed to send confirmation link to %s", caller)
        return error_twiml(), 200, TWIML

    return confirm_prompt_twiml(), 200, TWIML


@tokens_bp.route("/token/<token>", methods=["GET"])
def validate_token(token: str):
    """Phone number behind a confirmation link. Read-only: does not use up the link."""
    return jsonify(get_services().tokens.validate(token))


@tokens_bp.route("/token/<token>/use", methods=["POST"])
def use_token(token: str):
    """Consume a confirmation link. 400 if it was already used, 404 if unknown or expired."""
    result = get_services().tokens.consume(token)
    return jsonify({"success": True, "phone": result["phone"]})
