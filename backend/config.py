"""
Centralized config for the ambulance dispatch backend.
Loads connection strings, Twilio credentials and tuning knobs from environment; no secrets in code.
"""
import os

from dotenv import load_dotenv

load_dotenv()

# MongoDB
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "dispatch")

# Twilio
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_PHONE = os.getenv("TWILIO_PHONE")

# Where the patient confirmation page lives (SMS links point at {FRONTEND_URL}/confirm/{token})
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")

# Confirmation tokens: TTL is fixed at one hour, sweep cadence is housekeeping only
TOKEN_TTL_SECONDS = int(os.getenv("TOKEN_TTL_SECONDS", "3600"))
TOKEN_SWEEP_INTERVAL_SECONDS = int(os.getenv("TOKEN_SWEEP_INTERVAL_SECONDS", "900"))

# Delay before the first assignment attempt after a request is created
ASSIGN_DELAY_SECONDS = float(os.getenv("ASSIGN_DELAY_SECONDS", "2"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
