"""
RetailPOS Load Testing with Locust

Run against a bootstrapped backend (python -m flask system init) that has
at least one product with stock in the main warehouse:

    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Environment:
- RETAILPOS_USERNAME / RETAILPOS_PASSWORD (default admin / admin123)
- RETAILPOS_PRODUCT_ID (default: first product returned by the API)

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%
"""

import os
import random
import time
from typing import Dict, List, Optional

from locust import HttpUser, between, events, task


# =============================================================================
# CONFIGURATION
# =============================================================================

USERNAME = os.environ.get("RETAILPOS_USERNAME", "admin")
PASSWORD = os.environ.get("RETAILPOS_PASSWORD", "admin123")
PRODUCT_ID = os.environ.get("RETAILPOS_PRODUCT_ID")

WRITE_MARKERS = ("create", "return", "movement", "payment")


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Per-endpoint counts, errors and response times."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        self.request_counts[name] = self.request_counts.get(name, 0) + 1
        self.error_counts.setdefault(name, 0)
        if not success:
            self.error_counts[name] += 1
        self.response_times.setdefault(name, []).append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name, times in self.response_times.items():
            times = sorted(times)
            count = len(times)
            if count == 0:
                continue
            p95_idx = min(int(count * 0.95), count - 1)
            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p95_ms": times[p95_idx],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class RetailPOSUser(HttpUser):
    """Logs in once and remembers a product and the main stock to work with."""
    wait_time = between(0.5, 2)
    abstract = True

    token: Optional[str] = None
    product_id: Optional[int] = None
    main_stock_id: Optional[int] = None

    def on_start(self):
        self.login()
        self.pick_targets()

    def login(self):
        response = self.client.post(
            "/api/auth/login",
            json={"username": USERNAME, "password": PASSWORD},
            name="auth/login",
        )
        if response.status_code == 200:
            self.token = response.json()["data"]["token"]

    def get_headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def pick_targets(self):
        if PRODUCT_ID:
            self.product_id = int(PRODUCT_ID)
        else:
            response = self.client.get("/api/products?page=1&per_page=1", headers=self.get_headers(),
                                       name="products/first")
            if response.status_code == 200:
                items = response.json()["data"]["items"]
                self.product_id = items[0]["id"] if items else None

        response = self.client.get("/api/stocks", headers=self.get_headers(), name="stocks/list")
        if response.status_code == 200:
            for stock in response.json()["data"]:
                if stock.get("is_main_stock"):
                    self.main_stock_id = stock["id"]

    def timed(self, name: str, call, ok_codes=(200,)):
        start = time.time()
        response = call()
        metrics.record(name, (time.time() - start) * 1000, response.status_code in ok_codes)
        return response


class BrowsingUser(RetailPOSUser):
    """Cashier looking things up between sales."""
    weight = 3

    @task(5)
    def list_products(self):
        self.timed("products/list", lambda: self.client.get(
            "/api/products", params={"page": 1, "per_page": 50}, headers=self.get_headers(), name="products/list",
        ))

    @task(3)
    def product_details(self):
        if not self.product_id:
            return
        self.timed("products/details", lambda: self.client.get(
            f"/api/products/{self.product_id}", headers=self.get_headers(), name="products/details",
        ))

    @task(2)
    def list_movements(self):
        self.timed("stock-movements/list", lambda: self.client.get(
            "/api/stock-movements", params={"page": 1, "limit": 50}, headers=self.get_headers(),
            name="stock-movements/list",
        ))

    @task(1)
    def dashboard(self):
        self.timed("reports/dashboard", lambda: self.client.get(
            "/api/reports/dashboard", headers=self.get_headers(), name="reports/dashboard",
        ))

    @task(1)
    def health_check(self):
        self.timed("system/health", lambda: self.client.get("/health", name="system/health"))


class SalesUser(RetailPOSUser):
    """Cashier ringing up small sales and the odd return."""
    weight = 2
    created_sales: List[Dict] = []

    @task(4)
    def create_sale(self):
        if not self.product_id:
            return
        quantity = random.randint(1, 3)
        # Out of stock is a valid business answer under load
        response = self.timed("sales/create", lambda: self.client.post(
            "/api/sales",
            json={
                "items": [{"product_id": self.product_id, "quantity": quantity, "price": 1}],
                "paid_amount": quantity,
            },
            headers=self.get_headers(),
            name="sales/create",
        ), ok_codes=(201, 400))
        if response.status_code == 201:
            sale = response.json()["data"]
            self.created_sales.append({"id": sale["id"], "item_id": sale["items"][0]["id"]})

    @task(1)
    def return_item(self):
        if not self.created_sales:
            return
        sale = self.created_sales.pop(random.randrange(len(self.created_sales)))
        self.timed("sales/return", lambda: self.client.post(
            f"/api/sales/{sale['id']}/return",
            json={"items": [{"sale_item_id": sale["item_id"], "quantity": 1}]},
            headers=self.get_headers(),
            name="sales/return",
        ), ok_codes=(200, 400))


class InventoryUser(RetailPOSUser):
    """Store keeper receiving goods into the main stock."""
    weight = 1

    @task(3)
    def receive_goods(self):
        if not (self.product_id and self.main_stock_id):
            return
        self.timed("stock-movements/create", lambda: self.client.post(
            "/api/stock-movements",
            json={
                "movement_type": "purchase",
                "product_id": self.product_id,
                "quantity": random.randint(5, 20),
                "to_stock_id": self.main_stock_id,
                "notes": "Load test receipt",
            },
            headers=self.get_headers(),
            name="stock-movements/create",
        ), ok_codes=(201,))

    @task(2)
    def stock_stats(self):
        self.timed("stocks/stats", lambda: self.client.get(
            "/api/stocks/stats", headers=self.get_headers(), name="stocks/stats",
        ))


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

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        p95_threshold = 1000 if any(marker in name for marker in WRITE_MARKERS) else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1
        if not passed:
            all_pass = False

        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% "
              f"{stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{'PASS' if passed else 'FAIL'}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some endpoints exceeded thresholds")
        print("  - Reads: P95 < 500ms, Error rate < 1%")
        print("  - Writes: P95 < 1000ms, Error rate < 1%")

    print("=" * 80)
