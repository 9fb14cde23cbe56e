#!/usr/bin/env python3
"""
NutriTrack - session and profile sync entry point

Restores the stored Supabase session, optionally signs in, and can push
profile fields, reporting what the AuthManager ends up holding.

Usage:
    python main.py                                   # Restore stored session
    python main.py --email a@b.com --password pw     # Sign in first
    python main.py --set age=41 --set bio="Runner"   # Save profile fields
    python main.py --logout
"""

import sys
import json
import asyncio
import logging
import argparse
from typing import Dict, List

import config
from core.auth_manager import AuthManager

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

# Suppress noisy third-party library logs (HTTP requests, etc.)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("hpack").setLevel(logging.WARNING)


def parse_assignments(assignments: List[str]) -> Dict:
    """
    Parse --set field=value pairs. Values are read as JSON when possible.

    Args:
        assignments: Strings like "age=41" or 'dietary_preferences=["vegan"]'.

    Returns:
        Field -> value mapping.
    """
    updates = {}
    for assignment in assignments:
        field_name, sep, raw_value = assignment.partition("=")
        if not sep or not field_name:
            raise argparse.ArgumentTypeError(f"Expected field=value, got: {assignment}")
        try:
            updates[field_name] = json.loads(raw_value)
        except ValueError:
            updates[field_name] = raw_value
    return updates


def print_snapshot(auth: AuthManager) -> None:
    snapshot = auth.snapshot()
    if snapshot.user is None:
        print("Not signed in")
        return
    print(f"Signed in as {snapshot.user.email or snapshot.user.user_id} ({snapshot.state})")
    print(json.dumps(snapshot.profile, indent=2, default=str) if snapshot.profile else "No profile yet")


async def run(args: argparse.Namespace) -> int:
    try:
        auth = await AuthManager.from_config()
    except ValueError as e:
        logger.error(str(e))
        return 1

    async with auth:
        if args.email:
            result = await auth.login(args.email, args.password or "")
            if not result["success"]:
                print(f"Sign in failed: {result['error']}")
                return 1
            await auth.wait_until_idle()

        if args.set:
            result = await auth.save_profile(parse_assignments(args.set))
            if not result["success"]:
                print(f"Profile save failed ({result['error_type']}): {result['error']}")
                return 1

        if args.logout:
            result = await auth.logout()
            if not result["success"]:
                print(f"Sign out failed: {result['error']}")
                return 1

        print_snapshot(auth)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="NutriTrack session and profile sync")
    parser.add_argument("--email", help="Sign in with this email")
    parser.add_argument("--password", help="Password for --email")
    parser.add_argument("--set", action="append", default=[], metavar="FIELD=VALUE",
                        help="Profile field to save (repeatable)")
    parser.add_argument("--logout", action="store_true", help="Sign out after other actions")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
