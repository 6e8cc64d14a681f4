"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Race for one delivery window
  locust -f locustfile.py --tags browse       # Availability reads
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests

The concurrency scenario creates its own slot and needs an admin account:
  ADMIN_EMAIL=... ADMIN_PASSWORD=... locust -f locustfile.py --tags concurrency
"""

import os
import random
import uuid
from datetime import datetime, timedelta, timezone

import requests
from locust import HttpUser, between, events, tag, task

CONCURRENCY_SLOT_CAPACITY = 10
CONCURRENCY_SLOT_ID = None

STEP_PAYLOADS = [
    (1, {"serviceZip": "77005", "hasHookups": True}),
    (2, {"packageType": "WASHER_DRYER"}),
    (2, {"termType": "TWELVE_MONTH"}),
    (3, {
        "customerName": "Load Tester",
        "customerEmail": "load@example.com",
        "customerPhone": "713-555-0100",
        "addressLine1": "1 Load St",
        "city": "Houston",
        "state": "TX",
        "zip": "77005",
    }),
    (4, {"dryerPlugType": "FOUR_PRONG", "hasHotColdValves": True, "hasDrainAccess": True}),
]


def random_ip() -> str:
    # Spread users over many client IPs so the per-IP creation limit is not the bottleneck
    return ".".join(str(random.randint(1, 254)) for _ in range(4))


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Setup: create one small delivery window for everyone to fight over."""
    email, password = os.getenv("ADMIN_EMAIL"), os.getenv("ADMIN_PASSWORD")
    if not email or not password or environment.host is None:
        print("\nSKIP: ADMIN_EMAIL / ADMIN_PASSWORD not set, concurrency scenario disabled\n")
        return

    resp = requests.post(f"{environment.host}/api/v1/admin/auth/login", json={"email": email, "password": password})
    resp.raise_for_status()
    headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

    start = (datetime.now(timezone.utc) + timedelta(days=7)).replace(hour=8, minute=0, second=0, microsecond=0)
    resp = requests.post(
        f"{environment.host}/api/v1/admin/delivery-slots",
        json={
            "date": start.date().isoformat(),
            "window_label": f"load-{uuid.uuid4().hex[:6]}",
            "window_start": start.isoformat(),
            "window_end": (start + timedelta(hours=4)).isoformat(),
            "capacity": CONCURRENCY_SLOT_CAPACITY,
        },
        headers=headers,
    )
    resp.raise_for_status()
    globals()["CONCURRENCY_SLOT_ID"] = resp.json()["id"]
    print(f"\nCreated slot {CONCURRENCY_SLOT_ID} with capacity {CONCURRENCY_SLOT_CAPACITY}\n")


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 bookings -> 10 units of capacity

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM slot_holds WHERE slot_id = X AND released = false;
    Should be <= 10
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.ip = random_ip()
        self.headers = {}
        self.booking_id = None
        self.done = False

        resp = self.client.post("/api/v1/bookings", headers={"X-Forwarded-For": self.ip})
        if resp.status_code != 201:
            return
        body = resp.json()
        self.booking_id = body["booking_id"]
        self.headers = {"X-Booking-Token": body["access_token"], "X-Forwarded-For": self.ip}

        for step, data in STEP_PAYLOADS:
            resp = self.client.patch(
                f"/api/v1/bookings/{self.booking_id}",
                json={"step": step, "data": data},
                headers=self.headers,
                name="/api/v1/bookings/{id} [setup]",
            )
            if resp.status_code != 200:
                self.booking_id = None
                return

    @tag("concurrency")
    @task
    def claim_delivery_window(self):
        """Every user tries once for the same window."""
        if not CONCURRENCY_SLOT_ID or not self.booking_id or self.done:
            return

        with self.client.patch(
            f"/api/v1/bookings/{self.booking_id}",
            json={"step": 5, "data": {"deliverySlotId": CONCURRENCY_SLOT_ID}},
            headers=self.headers,
            name="/api/v1/bookings/{id} [step 5]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: window full
            elif resp.status_code == 503:
                resp.success()  # Expected under heavy contention: retry budget spent
            else:
                resp.failure(f"Unexpected: {resp.status_code}")
        self.done = True


class BrowseUser(HttpUser):
    """
    TEST 2: Availability reads

    Run: locust -f locustfile.py --tags browse -u 100 -r 20 --run-time 60s
    """
    wait_time = between(0.1, 0.5)

    @tag("browse", "read")
    @task(10)
    def list_delivery_slots(self):
        self.client.get("/api/v1/delivery-slots")

    @tag("browse")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.ip = random_ip()
        resp = self.client.post("/api/v1/bookings", headers={"X-Forwarded-For": self.ip})
        if resp.status_code == 201:
            body = resp.json()
            self.booking_id = body["booking_id"]
            self.headers = {"X-Booking-Token": body["access_token"], "X-Forwarded-For": self.ip}
        else:
            self.booking_id = None
            self.headers = {}

    def _expect(self, resp, allowed):
        if resp.status_code in allowed:
            resp.success()
        else:
            resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def zip_outside_service_area(self):
        if not self.booking_id:
            return
        with self.client.patch(
            f"/api/v1/bookings/{self.booking_id}",
            json={"step": 1, "data": {"serviceZip": "99999", "hasHookups": True}},
            headers=self.headers,
            name="/api/v1/bookings/{id} [bad zip]",
            catch_response=True,
        ) as resp:
            self._expect(resp, [422, 429])

    @tag("edge")
    @task
    def skip_ahead(self):
        if not self.booking_id:
            return
        with self.client.patch(
            f"/api/v1/bookings/{self.booking_id}",
            json={"step": 7, "data": {"contractAccepted": True, "signerName": "Nobody"}},
            headers=self.headers,
            name="/api/v1/bookings/{id} [skip ahead]",
            catch_response=True,
        ) as resp:
            self._expect(resp, [409, 429])

    @tag("edge")
    @task
    def unknown_booking(self):
        with self.client.get(
            f"/api/v1/bookings/{uuid.uuid4()}",
            headers=self.headers,
            name="/api/v1/bookings/{id} [foreign]",
            catch_response=True,
        ) as resp:
            self._expect(resp, [401, 403])

    @tag("edge")
    @task
    def malformed_json(self):
        if not self.booking_id:
            return
        with self.client.patch(
            f"/api/v1/bookings/{self.booking_id}",
            data="not json at all",
            headers=self.headers,
            name="/api/v1/bookings/{id} [garbage]",
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 422, 429])

    @tag("edge")
    @task
    def forged_webhook(self):
        with self.client.post(
            "/api/v1/webhooks/payments",
            data=b'{"id": "evt_forged", "type": "invoice.paid", "data": {"object": {}}}',
            headers={"stripe-signature": "t=1,v1=forged"},
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])
