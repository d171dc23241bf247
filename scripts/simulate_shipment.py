"""
Simple simulator: register a batch and walk it through a shipment.
Run:
    python scripts/simulate_shipment.py [API_URL]
"""
import sys
import time

import requests

API = "http://localhost:8000"

LEGS = [
    ("Cold Truck A", "In Transit"),
    ("Warehouse CM", "In Storage"),
    ("Retailer C", "On Shelf"),
]


def run(http, api: str = "", pause: float = 0.0) -> int:
    """Drive one batch through every leg and return its id.

    ``http`` is anything with requests-style ``get``/``post``.
    """
    rr = http.post(f"{api}/api/batches", json={
        "crop_type": "Jasmine Rice",
        "origin_farm": "Baan Mae Rim Farm",
        "harvest_date": int(time.time()),
    })
    rr.raise_for_status()
    batch_id = rr.json()["batch_id"]
    print("registered:", batch_id)

    for owner, status in LEGS:
        rr = http.post(f"{api}/api/batches/{batch_id}/transfer", json={"new_owner": owner})
        print("transfer:", rr.status_code, rr.text)
        rr = http.post(f"{api}/api/batches/{batch_id}/status", json={"new_status": status})
        print("status:", rr.status_code, rr.text)
        time.sleep(pause)

    print("verify:", http.get(f"{api}/api/events/verify").json())
    return batch_id


def main():
    api = sys.argv[1] if len(sys.argv) > 1 else API
    with requests.Session() as s:
        run(s, api, pause=1.0)


if __name__ == "__main__":
    main()
