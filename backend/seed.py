"""
Seed demo ambulances and hospitals. Run from backend/:  python seed.py
Ambulances start available so requests get assigned straight away.
"""
from db import AMBULANCES, HOSPITALS, get_database, new_id, utcnow
from services.lifecycle import AmbulanceStatus

AMBULANCES_SEED = [
    ("Ravi Kumar", "KA-01-AB-1234", "advanced", {"lat": 12.9716, "lng": 77.5946}),
    ("Anita Rao", "KA-01-CD-5678", "basic", {"lat": 12.9352, "lng": 77.6245}),
    ("Suresh Patil", "KA-05-EF-9012", "icu", {"lat": 13.0358, "lng": 77.5970}),
]

HOSPITALS_SEED = [
    ("City General Hospital", "MG Road", {"lat": 12.9750, "lng": 77.6060}, {"icu": 4, "oxygen": 12, "general": 40}),
    ("Lakeside Medical Centre", "Koramangala", {"lat": 12.9279, "lng": 77.6271}, {"icu": 2, "oxygen": 6, "general": 25}),
]


def seed(db):
    now = utcnow()

    db[AMBULANCES].insert_many([
        {
            "_id": new_id(),
            "status": AmbulanceStatus.AVAILABLE.value,
            "type": amb_type,
            "location": location,
            "driverId": new_id(),
            "driverName": driver,
            "vehicleNumber": vehicle,
            "lastUpdated": now,
        }
        for driver, vehicle, amb_type, location in AMBULANCES_SEED
    ])

    db[HOSPITALS].insert_many([
        {
            "_id": new_id(),
            "name": name,
            "address": address,
            "phone": "",
            "location": location,
            "beds": beds,
            "lastUpdated": now,
        }
        for name, address, location, beds in HOSPITALS_SEED
    ])


if __name__ == "__main__":
    seed(get_database())
    print(f"Seeded {len(AMBULANCES_SEED)} ambulances and {len(HOSPITALS_SEED)} hospitals")
