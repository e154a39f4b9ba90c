"""
Kitchen Rush Simulation Script

Pushes a batch of orders through the whole workflow against a running
server in development mode: customers submit and pay, front-of-house
confirms, and several kitchen displays race each other to work the same
queue. Conflicts are expected; lost or double-stamped orders are not.

Run from project root: python scripts/simulate.py --orders 30 --stations 4
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any, Optional

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8000"
TOTAL_ORDERS = 30
KITCHEN_STATIONS = 3

# Sample data for random orders
FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
LAST_NAMES = ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis"]
MENU_ITEMS = [
    {"name": "Pizza Margherita", "unit_price": "14.99"},
    {"name": "Pepperoni Pizza", "unit_price": "16.99"},
    {"name": "Caesar Salad", "unit_price": "8.99"},
    {"name": "Garlic Bread", "unit_price": "5.99"},
    {"name": "Pasta Carbonara", "unit_price": "13.99"},
    {"name": "Tiramisu", "unit_price": "7.99"},
]

NEXT_KITCHEN_STATUS = {
    "confirmed": "acknowledged",
    "acknowledged": "preparing",
    "preparing": "ready",
}


def generate_order_payload() -> dict[str, Any]:
    """Generate a random customer order."""
    first = random.choice(FIRST_NAMES)
    last = random.choice(LAST_NAMES)
    items = []
    for _ in range(random.randint(1, 4)):
        item = random.choice(MENU_ITEMS).copy()
        item["quantity"] = random.randint(1, 3)
        items.append(item)

    return {
        "customer": {
            "name": f"{first} {last}",
            "email": f"{first.lower()}.{last.lower()}{random.randint(1, 999)}@example.com",
            "phone": f"555-{random.randint(100, 999)}-{random.randint(1000, 9999)}",
        },
        "items": items,
        "tip": random.choice(["0", "2.00", "3.50", "5.00"]),
        "special_instructions": random.choice([None, "No onions", "Extra napkins"]),
    }


async def submit_and_pay(
    client: httpx.AsyncClient,
    foh_headers: dict,
    order_num: int,
) -> dict[str, Any]:
    """Customer submits and pays, then front-of-house confirms."""
    start_time = time.time()
    response = await client.post(f"{API_BASE_URL}/api/orders", json=generate_order_payload())
    if response.status_code != 201:
        return {"order_num": order_num, "success": False, "error": response.text[:100]}
    order = response.json()["order"]

    intent = await client.post(
        f"{API_BASE_URL}/api/payments/create-intent", json={"order_id": order["id"]}
    )
    if intent.status_code != 200:
        return {"order_num": order_num, "success": False, "error": intent.text[:100]}

    paid = await client.post(
        f"{API_BASE_URL}/api/payments/confirm",
        json={"order_id": order["id"], "payment_reference": intent.json()["payment_reference"]},
    )
    if paid.status_code != 200:
        # Declined by the mock processor
        return {"order_num": order_num, "success": False, "error": paid.json().get("detail")}

    confirmed = await client.patch(
        f"{API_BASE_URL}/api/orders/{order['id']}",
        json={"status": "confirmed"},
        headers=foh_headers,
    )
    return {
        "order_num": order_num,
        "success": confirmed.status_code == 200,
        "order_id": order["id"],
        "total": float(order["total"]),
        "time": round(time.time() - start_time, 3),
        "error": None if confirmed.status_code == 200 else confirmed.text[:100],
    }


async def kitchen_station(
    client: httpx.AsyncClient,
    station_id: str,
    kitchen_token: str,
    stats: dict,
    deadline: float,
) -> None:
    """Poll the kitchen queue and advance whatever is on it."""
    headers = {"Authorization": f"Bearer {kitchen_token}", "X-Station-Id": station_id}
    while time.time() < deadline:
        response = await client.get(f"{API_BASE_URL}/api/kitchen/orders", headers=headers)
        orders = [o for o in response.json()["orders"] if o["status"] in NEXT_KITCHEN_STATUS]
        if not orders:
            await asyncio.sleep(0.2)
            continue

        order = random.choice(orders)
        result = await client.patch(
            f"{API_BASE_URL}/api/kitchen/orders/{order['id']}",
            json={"status": NEXT_KITCHEN_STATUS[order["status"]]},
            headers=headers,
        )
        if result.status_code == 200:
            stats["advanced"] += 1
        elif result.json().get("retryable"):
            stats["conflicts"] += 1
        else:
            stats["rejected"] += 1


async def front_of_house_pickup(
    client: httpx.AsyncClient,
    foh_headers: dict,
    stats: dict,
    deadline: float,
) -> None:
    """Hand ready orders to customers."""
    while time.time() < deadline:
        response = await client.get(
            f"{API_BASE_URL}/api/orders", params={"status": "ready"}, headers=foh_headers
        )
        for order in response.json()["orders"]:
            result = await client.patch(
                f"{API_BASE_URL}/api/orders/{order['id']}",
                json={"status": "completed"},
                headers=foh_headers,
            )
            if result.status_code == 200:
                stats["completed"] += 1
        await asyncio.sleep(0.3)


async def run_simulation(
    num_orders: int,
    num_stations: int,
    foh_token: str,
    kitchen_token: str,
    duration: float,
) -> dict[str, Any]:
    print("=" * 70)
    print("KITCHEN RUSH SIMULATION")
    print("=" * 70)
    print(f"Orders: {num_orders}")
    print(f"Kitchen stations: {num_stations}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    foh_headers = {"Authorization": f"Bearer {foh_token}"}
    stats = {"advanced": 0, "conflicts": 0, "rejected": 0, "completed": 0}
    start_time = time.time()

    async with httpx.AsyncClient(timeout=30.0) as client:
        deadline = time.time() + duration
        workers = [
            kitchen_station(client, f"kds-{n + 1}", kitchen_token, stats, deadline)
            for n in range(num_stations)
        ]
        workers.append(front_of_house_pickup(client, foh_headers, stats, deadline))
        intake = [submit_and_pay(client, foh_headers, i + 1) for i in range(num_orders)]

        worker_tasks = [asyncio.create_task(w) for w in workers]
        results = await asyncio.gather(*intake)
        await asyncio.gather(*worker_tasks)

        final = await client.get(
            f"{API_BASE_URL}/api/orders", params={"limit": 200}, headers=foh_headers
        )
        orders = final.json()["orders"]

    total_time = round(time.time() - start_time, 2)
    confirmed = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    out_of_order = [o for o in orders if not stamps_in_order(o)]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"Confirmed orders: {len(confirmed)}/{num_orders}")
    print(f"Declined or failed: {len(failed)}/{num_orders}")
    print(f"Kitchen advances: {stats['advanced']}")
    print(f"Kitchen conflicts (retryable): {stats['conflicts']}")
    print(f"Kitchen rejections: {stats['rejected']}")
    print(f"Completed pickups: {stats['completed']}")
    print(f"Orders with out-of-order stamps: {len(out_of_order)}")
    print(f"Total Time: {total_time}s")

    if failed:
        print("\nFailed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")
    print("=" * 70)

    return {"results": results, "stats": stats, "out_of_order": len(out_of_order)}


def stamps_in_order(order: dict) -> bool:
    """Each stage stamp present must be later than the one before it."""
    previous: Optional[str] = order["created_at"]
    for field in ("confirmed_at", "acknowledged_at", "preparing_at", "ready_at", "completed_at"):
        value = order.get(field)
        if value is None:
            continue
        if previous is not None and datetime.fromisoformat(value) <= datetime.fromisoformat(previous):
            return False
        previous = value
    return True


def main() -> None:
    global API_BASE_URL

    parser = argparse.ArgumentParser(description="Kitchen rush simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Orders to submit")
    parser.add_argument("--stations", type=int, default=KITCHEN_STATIONS, help="Kitchen displays")
    parser.add_argument("--duration", type=float, default=20.0, help="Seconds to keep stations running")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    parser.add_argument("--foh-token", required=True, help="A token from FOH_STAFF_TOKENS")
    parser.add_argument("--kitchen-token", required=True, help="KITCHEN_API_TOKEN")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")
    asyncio.run(
        run_simulation(
            args.orders, args.stations, args.foh_token, args.kitchen_token, args.duration
        )
    )


if __name__ == "__main__":
    main()
