import asyncio
import sys
import os
import logging
from dotenv import load_dotenv

script_dir = os.path.dirname(os.path.abspath(__file__))
if os.path.basename(script_dir) == 'scripts':
    project_root = os.path.dirname(script_dir)
else:
    project_root = script_dir

sys.path.append(project_root)
env_path = os.path.join(project_root, ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)

import pairwatch.config
pairwatch.config.settings.DEBUG = False

from pairwatch.database import AsyncSessionLocal
from pairwatch.services.storage import SqlPresenceRepository

# Keep the table readable: only errors from the app and SQLAlchemy
logging.getLogger().setLevel(logging.CRITICAL)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


async def show_sessions(limit: int = 20):
    repository = SqlPresenceRepository(AsyncSessionLocal)

    print("\n" + "="*100)
    print(f" {'Employee':<12} | {'Status':<10} | {'Started':<16} | {'Minutes':>7} | {'w/ Pair':>7} | {'Checks':>6} | {'Score':>5} | Emergency")
    print("="*100)

    try:
        sessions = await repository.list_sessions(limit)
        if not sessions:
            print(f" {'No sessions found.':<95}")
        for s in sessions:
            started = s.start_time.strftime("%Y-%m-%d %H:%M")
            flag = s.emergency_reason or "yes" if s.emergency_flag else ""
            print(f" {s.employee_id:<12} | {s.status.value:<10} | {started:<16} | {s.total_minutes:>7.0f} | {s.time_with_pair_minutes:>7.0f} | {len(s.check_ins):>6} | {s.reliability_score:>5} | {flag}")

        alerts = await repository.list_alerts(unresolved_only=True)
        print("-"*100)
        print(f" Unresolved alerts: {len(alerts)}")
        for a in alerts[:limit]:
            print(f"  [{a.severity.value:<6}] {a.employee_id:<12} {a.type.value:<20} {a.details}")

    except Exception as e:
        print(f"\n[!] Error fetching data: {e}")
        if "DATABASE_URL" in str(e):
            print("    Hint: Check your .env file location.")

    print("="*100 + "\n")

if __name__ == "__main__":
    try:
        asyncio.run(show_sessions())
    except KeyboardInterrupt:
        pass
