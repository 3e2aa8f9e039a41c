"""
Twilio messaging: the fixed voice reply for inbound calls and the SMS that
carries the confirmation link.

Call flow:
  1. Caller dials the Twilio number → Twilio POSTs to /incoming-call
  2. We issue a token and text {FRONTEND_URL}/confirm/{token} to the caller
  3. The caller hears a short prompt and the call hangs up
"""

import logging

from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from config import FRONTEND_URL, TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE

logger = logging.getLogger(__name__)

CONFIRM_PROMPT = "Emergency dispatch: We've sent you an SMS. Tap the link now to request an ambulance."
ERROR_PROMPT = "Sorry, there was an error processing your call. Please try again."
SMS_TEMPLATE = "🚑 Emergency dispatch: tap to request an ambulance: {link}"

# -----------------------------------------------------------------------------
# Twilio REST client (lazy init on first use so we don't fail if creds are missing at import).
# -----------------------------------------------------------------------------
_client = None


def _get_client() -> Client:
    global _client
    if _client is None:
        if not TWILIO_ACCOUNT_SID or not TWILIO_AUTH_TOKEN:
            raise RuntimeError("TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN are not set")
        _client = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)
    return _client


def confirmation_link(token: str, frontend_url: str = FRONTEND_URL) -> str:
    return f"{frontend_url}/confirm/{token}"


def send_confirmation_sms(phone: str, token: str) -> str:
    """Text the confirm link to the caller. Returns the Twilio message SID."""
    if not TWILIO_PHONE:
        raise RuntimeError("TWILIO_PHONE is not set")
    message = _get_client().messages.create(
        body=SMS_TEMPLATE.format(link=confirmation_link(token)),
        from_=TWILIO_PHONE,
        to=phone,
    )
    logger.info("[Twilio] SMS %s sent", message.sid)
    return message.sid


def confirm_prompt_twiml() -> str:
    response = VoiceResponse()
    response.say(CONFIRM_PROMPT, voice="alice", language="en-IN")
    response.hangup()
    return str(response)


def error_twiml() -> str:
    response = VoiceResponse()
    response.say(ERROR_PROMPT)
    response.hangup()
    return str(response)
