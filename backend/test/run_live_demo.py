"""
Drive a running backend through one full dispatch so you can watch the
driver and patient dashboards update in real time.

Usage:
  1. Start backend:  python app.py
  2. Open the dashboards in a browser
  3. Run:  python test/run_live_demo.py

Requires: requests, and backend running at http://127.0.0.1:5001
"""

import sys
import time

try:
    import requests
except ImportError:
    print("Install requests: pip install requests")
    sys.exit(1)

BASE = "http://127.0.0.1:5001"
PATIENT = {"lat": 12.9716, "lng": 77.5946}

AMBULANCES = [
    ("Ravi Kumar", "KA-01-AB-1234", {"lat": 12.9352, "lng": 77.6245}),
    ("Anita Rao", "KA-01-CD-5678", {"lat": 12.9780, "lng": 77.5900}),
]


def call(method: str, path: str, **kwargs) -> dict:
    r = requests.request(method, f"{BASE}{path}", timeout=10, **kwargs)
    r.raise_for_status()
    return r.json()


def main():
    print(f"Registering {len(AMBULANCES)} ambulances at {BASE} ...")
    ids = []
    for driver, vehicle, location in AMBULANCES:
        amb = call("POST", "/api/ambulances", json={
            "driverName": driver, "vehicleNumber": vehicle, "type": "basic", "location": location,
        })
        call("POST", f"/api/ambulances/{amb['id']}/online")
        ids.append(amb["id"])
        print(f"  {vehicle} online ({amb['id']})")

    req = call("POST", "/api/requests", json={
        "location": PATIENT, "patientPhone": "+919876543210", "patientName": "Demo Patient",
        "emergencyType": "cardiac",
    })
    print(f"\nRequest {req['id']} created, waiting for assignment...")

    for _ in range(20):
        req = call("GET", f"/api/requests/{req['id']}")
        if req["status"] != "pending":
            break
        time.sleep(0.5)
    else:
        print("  Still pending (no ambulance assigned). Check the backend logs.")
        sys.exit(1)

    ambulance_id = req["assignedAmbulanceId"]
    print(f"  Assigned ambulance {ambulance_id}, ETA {req['estimatedArrival']}")

    for step in ("start", "complete"):
        time.sleep(1.5)
        req = call("POST", f"/api/requests/{req['id']}/{step}", json={"ambulanceId": ambulance_id})
        print(f"  Driver: {step} → {req['status']}")

    amb = call("GET", f"/api/ambulances/{ambulance_id}")
    print(f"\nDone. Ambulance is {amb['status']} again.")

    for amb_id in ids:
        call("POST", f"/api/ambulances/{amb_id}/offline")


if __name__ == "__main__":
    main()
