#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

try:
    import requests
except Exception:
    print("ERROR: Missing dependencies. Install with: python3 -m pip install -e .")
    raise

DEMO_TICKETS = [
    {
        "title": "Cannot log in after password reset",
        "description": "The reset email arrived but the new password is rejected on the login page.",
        "priority": "high",
        "submitterName": "Priya Shah",
        "submitterEmail": "priya@example.com",
    },
    {
        "title": "Dashboard loads slowly",
        "description": "The ticket dashboard takes more than ten seconds to render in the mornings.",
        "priority": "medium",
        "submitterName": "Tom Becker",
        "submitterEmail": "tom@example.com",
    },
    {
        "title": "Typo on the new ticket form",
        "description": "",
        "priority": "low",
        "submitterName": "Ana Lima",
        "submitterEmail": "ana@example.com",
    },
]


def load_env_file(path: Path) -> dict:
    env = {}
    if not path.exists():
        return env
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        env[key.strip()] = value.strip().strip('"')
    return env


def main() -> int:
    parser = argparse.ArgumentParser(description="Create demo tickets on a running helpdesk assistant.")
    parser.add_argument("--env", default=".env")
    parser.add_argument("--url", default="http://localhost:8000")
    parser.add_argument("--file", help="JSON file with a list of tickets to create instead of the demo set")
    args = parser.parse_args()

    env = load_env_file(Path(args.env))
    api_key = os.getenv("ASSISTANT_API_KEY") or env.get("ASSISTANT_API_KEY", "")
    if not api_key:
        print("ERROR: ASSISTANT_API_KEY is required. Export it or add it to the env file.")
        return 1

    tickets = DEMO_TICKETS
    if args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            tickets = json.load(f)

    headers = {"Content-Type": "application/json", "x-api-key": api_key}
    created = 0
    for payload in tickets:
        resp = requests.post(f"{args.url}/tickets", headers=headers, json=payload, timeout=30)
        if resp.status_code != 201:
            print(f"ERROR: /tickets failed for '{payload.get('title')}' (HTTP {resp.status_code})", file=sys.stderr)
            print(resp.text, file=sys.stderr)
            return 1
        ticket = resp.json().get("ticket", {})
        print(f"Created ticket #{ticket.get('id')}: {ticket.get('title')}")
        created += 1

    print(f"Created {created} tickets.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
