"""
GasDepot Load Testing with Locust

Seed first (creates the staff accounts used below):
    flask --app wsgi system init

Run with:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000 \
           --users 20 --spawn-rate 5 --run-time 60s --headless

Customers hammer the same cylinder type while dispatch restocks it, so
order creation runs under stock contention. 409 (insufficient stock or
points) is an expected business answer, not an error.

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%
"""

import random
import time
import uuid
from typing import Dict, List, Optional

from locust import HttpUser, between, events, task


# =============================================================================
# CONFIGURATION
# =============================================================================

STAFF_PASSWORD = "Password123"
DISPATCH_USERNAME = "base"


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect and report metrics."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue
            p95_idx = int(count * 0.95)
            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class GasDepotUser(HttpUser):
    abstract = True
    wait_time = between(0.2, 1)

    token: Optional[str] = None

    def login(self, username: str, password: str) -> bool:
        response = self.client.post(
            "/api/auth/login",
            json={"username": username, "password": password},
            name="auth/login",
        )
        if response.status_code == 200:
            self.token = response.json().get("token")
            return True
        return False

    def get_headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def timed(self, name: str, method: str, url: str, ok=(200,), **kwargs):
        start = time.time()
        response = self.client.request(method, url, headers=self.get_headers(), name=name, **kwargs)
        metrics.record(name, (time.time() - start) * 1000, response.status_code in ok)
        return response


class CustomerUser(GasDepotUser):
    """Registers once, then places and cancels orders."""
    weight = 4

    cylinder_ids: List[int] = []
    order_ids: List[int] = []

    def on_start(self):
        username = f"load_{uuid.uuid4().hex[:10]}"
        self.client.post(
            "/api/auth/register",
            json={"username": username, "full_name": "Load Tester", "password": STAFF_PASSWORD},
            name="auth/register",
        )
        self.login(username, STAFF_PASSWORD)
        self.order_ids = []
        response = self.timed("products/cylinders", "GET", "/api/products/cylinders")
        if response.status_code == 200:
            self.cylinder_ids = [c["id"] for c in response.json().get("items", [])]

    @task(5)
    def place_order(self):
        if not self.cylinder_ids:
            return
        response = self.timed(
            "orders/create",
            "POST",
            "/api/orders",
            ok=(201, 409),
            json={
                "delivery_address_text": "Av. Prueba 100, Lima",
                "cylinder_type_id": random.choice(self.cylinder_ids),
                "action_type": random.choice(["exchange", "new_purchase"]),
                "cylinder_quantity": random.randint(1, 3),
            },
        )
        if response.status_code == 201:
            self.order_ids.append(response.json()["order_id"])

    @task(2)
    def my_orders(self):
        self.timed("orders/mine", "GET", "/api/orders/mine")

    @task(1)
    def cancel_order(self):
        if not self.order_ids:
            return
        order_id = self.order_ids.pop()
        self.timed("orders/cancel", "POST", f"/api/orders/{order_id}/cancel", ok=(200, 409), json={})


class DispatchUser(GasDepotUser):
    """Restocks full cylinders and works the approval queue."""
    weight = 1

    warehouse_id: Optional[int] = None
    cylinder_ids: List[int] = []

    def on_start(self):
        self.login(DISPATCH_USERNAME, STAFF_PASSWORD)
        stock = self.timed("inventory/stock", "GET", "/api/inventory/stock")
        if stock.status_code == 200:
            data = stock.json()
            self.warehouse_id = data.get("warehouse", {}).get("id")
            self.cylinder_ids = [c["cylinder_type_id"] for c in data.get("cylinders", [])]

    @task(2)
    def restock(self):
        if not self.warehouse_id or not self.cylinder_ids:
            return
        self.timed(
            "inventory/restock",
            "POST",
            "/api/inventory/restock",
            json={
                "warehouse_id": self.warehouse_id,
                "item_type": "cylinder",
                "item_id": random.choice(self.cylinder_ids),
                "state": "full",
                "quantity": random.randint(5, 15),
                "notes": "Load test restock",
            },
        )

    @task(3)
    def approve_pending(self):
        response = self.timed(
            "orders/queue", "GET", "/api/orders", params={"status": "pending_approval", "per_page": 20}
        )
        if response.status_code != 200:
            return
        ids = [o["id"] for o in response.json().get("items", [])]
        if ids:
            self.timed("orders/bulk_approve", "POST", "/api/orders/bulk-approve", json={"order_ids": ids})


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()
    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    all_pass = True
    for name, stats in sorted(summary.items()):
        is_write = any(w in name for w in ("create", "cancel", "approve", "restock"))
        passed = stats["p95_ms"] < (1000 if is_write else 500) and stats["error_rate"] < 1
        all_pass = all_pass and passed
        print(
            f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% "
            f"{stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{'PASS' if passed else 'FAIL'}]"
        )

    print("-" * 80)
    print("\n[PASS] All endpoints within thresholds" if all_pass else "\n[FAIL] Some endpoints exceeded thresholds")
    print("=" * 80)
