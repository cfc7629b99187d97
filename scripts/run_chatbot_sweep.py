"""
Trigger the chatbot cleanup endpoint. Meant for cron, e.g. hourly:

    0 * * * * cd /srv/yamifit && python scripts/run_chatbot_sweep.py

or as a long-running worker with `--loop`, sweeping every
CHATBOT_SWEEP_INTERVAL seconds.

Reads API_BASE_URL (default http://127.0.0.1:8000) and CLEANUP_SECRET.
Exits non-zero on failure so cron mail or the scheduler notices.
"""

import argparse
import os
import sys
import time

import httpx

from app.core.config import settings


def sweep(base_url: str, secret: str) -> int:
    try:
        response = httpx.post(
            f"{base_url}/api/v1/chatbot/cleanup",
            headers={"X-Cleanup-Secret": secret},
            timeout=30.0,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Chatbot cleanup failed: {e}", file=sys.stderr)
        return 1

    body = response.json()
    print(f"Deleted {body.get('deleted', 0)} expired chatbot message(s) at {body.get('timestamp')}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete expired chatbot messages")
    parser.add_argument("--loop", action="store_true", help="keep sweeping every CHATBOT_SWEEP_INTERVAL seconds")
    args = parser.parse_args()

    base_url = os.getenv("API_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
    secret = settings.CLEANUP_SECRET
    if not secret:
        print("CLEANUP_SECRET is not set", file=sys.stderr)
        return 2

    if not args.loop:
        return sweep(base_url, secret)

    while True:
        # A failed sweep is retried on the next tick
        sweep(base_url, secret)
        time.sleep(settings.CHATBOT_SWEEP_INTERVAL)


if __name__ == "__main__":
    sys.exit(main())
