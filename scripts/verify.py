"""
Store Verification Script

Checks the invariants of every stored order session.
Run from project root: python scripts/verify.py

Version: 1.0.0
"""

import asyncio
import os
import sys
from collections import Counter
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from teamorder.database import async_session_maker, engine
from teamorder.models import AUTO_PASS_MESSAGE, OrderSession, Participant, ParticipantStatus, SessionStatus


async def verify_store() -> bool:
    """Verify stored sessions and participants."""

    print("=" * 60)
    print("🔍 ORDER SESSION VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 60)

    async with async_session_maker() as db:
        sessions = (await db.execute(select(OrderSession))).scalars().all()
        participants = (await db.execute(select(Participant))).scalars().all()

    by_session: dict[str, list[Participant]] = {}
    for p in participants:
        by_session.setdefault(p.session_id, []).append(p)

    print(f"\n📊 STATISTICS:")
    print(f"   Sessions: {len(sessions)}")
    print(f"   Participants: {len(participants)}")
    statuses = Counter(p.status.value for p in participants)
    for status, count in sorted(statuses.items()):
        print(f"   {status}: {count}")

    problems = []
    for session in sessions:
        rows = by_session.get(session.id, [])

        if session.end_time <= session.start_time:
            problems.append(f"{session.id}: end_time is not after start_time")

        duplicates = [uid for uid, n in Counter(p.user_id for p in rows).items() if n > 1]
        if duplicates:
            problems.append(f"{session.id}: duplicate participants {duplicates}")

        if session.status == SessionStatus.CLOSED:
            pending = [p.user_id for p in rows if p.status == ParticipantStatus.PENDING]
            if pending:
                problems.append(f"{session.id}: closed with pending participants {pending}")

        for p in rows:
            if p.status == ParticipantStatus.PRESET and not (p.preset_order or "").strip():
                problems.append(f"{session.id}: preset without message for {p.user_id}")
            if p.preset_order == AUTO_PASS_MESSAGE and p.status != ParticipantStatus.PASSED:
                problems.append(f"{session.id}: auto-pass marker on {p.status.value} row {p.user_id}")

    orphans = set(by_session) - {s.id for s in sessions}
    if orphans:
        problems.append(f"participants without a session: {sorted(orphans)}")

    print(f"\n🔎 INVARIANTS:")
    if problems:
        for problem in problems:
            print(f"   ❌ {problem}")
    else:
        print("   ✅ All invariants hold")

    print("\n" + "=" * 60)
    await engine.dispose()
    return not problems


if __name__ == "__main__":
    ok = asyncio.run(verify_store())
    sys.exit(0 if ok else 1)
