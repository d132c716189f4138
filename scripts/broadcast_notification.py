#!/usr/bin/env python3
"""
Send an announcement to all staff or all admins.

Usage:
    python scripts/broadcast_notification.py "Title" "Message"
    python scripts/broadcast_notification.py "Title" "Message" --target all_admins --link /admin/dashboard

Environment Variables:
    ADMIN_ACCESS_TOKEN: Access token of an admin account
    API_URL: Base API URL (default: http://localhost:8000)
"""

import argparse
import os
import sys

import dotenv
import requests

dotenv.load_dotenv()


def broadcast(title: str, message: str, target: str = "all_staff", link: str = "#") -> dict:
    """Post the announcement through the admin API."""
    token = os.getenv("ADMIN_ACCESS_TOKEN")
    if not token:
        print("Error: ADMIN_ACCESS_TOKEN environment variable not set", file=sys.stderr)
        sys.exit(1)

    api_url = os.getenv("API_URL", "http://localhost:8000")
    url = f"{api_url}/api/v1/admin/notifications"

    try:
        response = requests.post(
            url,
            json={"title": title, "message": message, "target": target, "link": link},
            headers={"Authorization": f"Bearer {token}"},
            timeout=30,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.HTTPError as e:
        print(f"HTTP Error: {e}", file=sys.stderr)
        print(f"Response: {e.response.text}", file=sys.stderr)
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"Request Error: {e}", file=sys.stderr)
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Broadcast a dashboard notification")
    parser.add_argument("title", help="Notification title")
    parser.add_argument("message", help="Notification message")
    parser.add_argument(
        "--target",
        default="all_staff",
        choices=["all_staff", "all_admins"],
        help="Recipients (default: all_staff)",
    )
    parser.add_argument("--link", default="#", help="Dashboard link opened on click")
    args = parser.parse_args()

    result = broadcast(args.title, args.message, args.target, args.link)
    print(f"✓ Delivered to {result['recipients']} recipient(s)")


if __name__ == "__main__":
    main()
