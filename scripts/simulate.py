"""
Chaos Simulation Script

Drives one order session end-to-end under concurrency against a running API:
seeds a company, opens a short session, fires concurrent (and duplicated)
participant responses, then races several deadline sweeps.

Run from project root: python scripts/simulate.py

Version: 1.0.0
"""

import asyncio
import sys
import os
import random
import time
import argparse
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from teamorder.database import async_session_maker, init_db
from teamorder.models import Company, User, UserRole

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_MEMBERS = 30
WINDOW_SECONDS = 20
SWEEPERS = 5

FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
LAST_NAMES = ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis", "Wilson", "Taylor"]
RESTAURANTS = ["Thai Palace", "Sushi Go", "Burrito Barn", "Pho Real", "Curry Corner"]
PRESETS = ["Pad thai, no peanuts", "Usual salad", "Veggie bowl", "Chicken wrap"]


# =============================================================================
# SEEDING
# =============================================================================

async def seed_company(num_members: int) -> dict[str, Any]:
    """Create a company with one manager and ``num_members`` team members."""
    await init_db()
    company_id = str(uuid.uuid4())
    manager_id = f"mgr_{uuid.uuid4().hex[:8]}"
    member_ids = [f"usr_{uuid.uuid4().hex[:8]}" for _ in range(num_members)]

    async with async_session_maker() as db:
        db.add(Company(id=company_id, name=f"Chaos Corp {company_id[:4]}"))
        db.add(User(
            id=manager_id, company_id=company_id, role=UserRole.MANAGER,
            first_name="Maria", last_name="Manager",
        ))
        for user_id in member_ids:
            db.add(User(
                id=user_id, company_id=company_id, role=UserRole.TEAM_MEMBER,
                first_name=random.choice(FIRST_NAMES),
                last_name=random.choice(LAST_NAMES),
            ))
        await db.commit()

    return {"company_id": company_id, "manager_id": manager_id, "member_ids": member_ids}


# =============================================================================
# RESPONSES & SWEEPS
# =============================================================================

def random_response() -> dict[str, Any]:
    response = random.choice(["ordered", "passed", "preset"])
    payload: dict[str, Any] = {"response": response}
    if response == "preset":
        payload["preset_order"] = random.choice(PRESETS)
    return payload


async def send_response(
    client: httpx.AsyncClient,
    session_id: str,
    user_id: str,
) -> dict[str, Any]:
    """Send one participant response."""
    payload = random_response()
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/order-sessions/{session_id}/respond",
            json=payload,
            headers={"X-User-Id": user_id},
            timeout=30.0
        )
        elapsed = round(time.time() - start_time, 3)
        return {
            "user_id": user_id,
            "success": response.status_code == 200,
            "status": response.status_code,
            "response": payload["response"],
            "error": None if response.status_code == 200 else response.text[:100],
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "user_id": user_id,
            "success": False,
            "status": None,
            "response": payload["response"],
            "error": str(e)[:100],
            "time": elapsed,
        }


async def send_sweep(client: httpx.AsyncClient, session_id: str, user_id: str) -> dict[str, Any]:
    response = await client.post(
        f"{API_BASE_URL}/api/order-sessions/{session_id}/sweep",
        headers={"X-User-Id": user_id},
        timeout=30.0,
    )
    return response.json()


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    num_members: int = TOTAL_MEMBERS,
    window_seconds: int = WINDOW_SECONDS,
    sweepers: int = SWEEPERS,
) -> dict[str, Any]:
    """
    Run the chaos simulation.

    Args:
        num_members: Team members seeded into the company
        window_seconds: Length of the ordering window
        sweepers: Concurrent sweeps fired after the deadline
    """
    print("=" * 70)
    print("🔥 CHAOS SIMULATION - ORDER SESSION UNDER CONCURRENCY")
    print("=" * 70)
    print(f"📋 Team Members: {num_members}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏳ Window: {window_seconds}s, Sweepers: {sweepers}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    seeded = await seed_company(num_members)
    manager = {"X-User-Id": seeded["manager_id"]}
    members = seeded["member_ids"]

    async with httpx.AsyncClient() as client:
        now = datetime.now(timezone.utc)
        response = await client.post(
            f"{API_BASE_URL}/api/order-sessions",
            json={
                "restaurant_name": random.choice(RESTAURANTS),
                "restaurant_options": RESTAURANTS,
                "start_time": now.isoformat(),
                "end_time": (now + timedelta(seconds=window_seconds)).isoformat(),
            },
            headers=manager,
        )
        if response.status_code != 201:
            print(f"❌ Could not create session: {response.text}")
            return {"success": False}
        session_id = response.json()["id"]
        print(f"\n✅ Session {session_id} created")

        # Two thirds respond, some of them twice at once
        responders = random.sample(members, k=(2 * len(members)) // 3)
        doubled = random.sample(responders, k=len(responders) // 4)
        print(f"\n🚀 Firing {len(responders) + len(doubled)} concurrent responses...\n")
        start_time = time.time()
        results = await asyncio.gather(*[
            send_response(client, session_id, user_id) for user_id in responders + doubled
        ])
        response_time = round(time.time() - start_time, 2)

        # Wait for the deadline
        remaining = (now + timedelta(seconds=window_seconds) - datetime.now(timezone.utc)).total_seconds()
        if remaining > 0:
            print(f"⏳ Waiting {remaining:.0f}s for the deadline...")
            await asyncio.sleep(remaining + 1)

        # Late response must be rejected
        late = await send_response(client, session_id, members[0])

        print(f"\n🧹 Racing {sweepers} sweeps...\n")
        sweeps = await asyncio.gather(*[
            send_sweep(client, session_id, seeded["manager_id"]) for _ in range(sweepers)
        ])

        final = (await client.get(
            f"{API_BASE_URL}/api/order-sessions/{session_id}", headers=manager,
        )).json()

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    auto_passed_total = sum(s.get("auto_passed_count", 0) for s in sweeps)
    participants = final["participants"]
    user_ids = [p["user_id"] for p in participants]

    # Print results
    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Responses: {len(successful)}/{len(results)}")
    print(f"❌ Failed Responses: {len(failed)}/{len(results)}")
    print(f"⏱️  Response Burst Time: {response_time}s")
    print(f"🚫 Late response status: {late['status']} (expected 409)")
    print(f"🤖 Auto-passed across all sweeps: {auto_passed_total} "
          f"(expected {len(members) - len(set(responders))})")
    print(f"🔒 Session status: {final['status']}, phase: {final['phase']}")

    checks = {
        "one row per member": len(user_ids) == len(set(user_ids)) == len(members),
        "nobody pending": all(p["status"] != "pending" for p in participants),
        "auto-pass applied once": auto_passed_total == len(members) - len(set(responders)),
        "late response rejected": late["status"] == 409,
        "session closed": final["status"] == "closed",
    }
    print("\n🔍 INVARIANTS")
    for name, ok in checks.items():
        print(f"   {'✅' if ok else '❌'} {name}")

    if failed:
        print(f"\n⚠️  Failed Response Details (showing first 5):")
        for f in failed[:5]:
            print(f"   {f['user_id']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("Next: python scripts/verify.py")
    print("=" * 70)

    return {
        "success": all(checks.values()),
        "session_id": session_id,
        "checks": checks,
        "results": results,
    }


async def test_single_flows() -> bool:
    """Check the API is reachable before the simulation."""
    print("\n" + "=" * 70)
    print("🧪 PRE-FLIGHT")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        print("\n1️⃣ Health Check...")
        try:
            response = await client.get(f"{API_BASE_URL}/health")
        except httpx.HTTPError as e:
            print(f"   ❌ API not reachable: {e}")
            return False
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return False
        data = response.json()
        print(f"   ✅ Status: {data.get('status')}")
        print(f"   Database: {data.get('database')}")
        print(f"   Ack Store: {data.get('ack_store')}")

    print("\n" + "=" * 70)
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--members", type=int, default=TOTAL_MEMBERS, help="Number of team members")
    parser.add_argument("--window", type=int, default=WINDOW_SECONDS, help="Ordering window in seconds")
    parser.add_argument("--sweepers", type=int, default=SWEEPERS, help="Concurrent sweeps")
    parser.add_argument("--skip-tests", action="store_true", help="Skip pre-flight checks")
    args = parser.parse_args()

    if not args.skip_tests:
        if not asyncio.run(test_single_flows()):
            print("\n❌ Pre-flight checks failed. Start the API first.")
            sys.exit(1)

    outcome = asyncio.run(run_simulation(args.members, args.window, args.sweepers))
    sys.exit(0 if outcome.get("success") else 1)
