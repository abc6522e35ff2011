#!/usr/bin/env python3
"""Issue a WebSocket admission credential for mongo-notify.

Usage:
    TOKEN=secret python scripts/issue_token.py
    python scripts/issue_token.py --secret s3cret --url ws://gateway:8080/ws
    python scripts/issue_token.py --time 1700000000000 --json
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from urllib.parse import urlencode

from mongo_notify.auth import TIME_PARAM, TOKEN_PARAM, now_ms, sign_timestamp


def issue(secret: str, timestamp: int | None = None, url: str = "ws://localhost:8080/ws") -> dict:
    ts = str(now_ms() if timestamp is None else timestamp)
    token = sign_timestamp(secret.encode("utf-8"), ts)
    query = urlencode({TOKEN_PARAM: token, TIME_PARAM: ts})
    return {"time": ts, "token": token, "url": f"{url}?{query}"}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Issue a mongo-notify admission token")
    parser.add_argument("--secret", type=str, default=None, help="Shared secret (default: $TOKEN)")
    parser.add_argument("--time", type=int, default=None, help="Timestamp in ms (default: now)")
    parser.add_argument("--url", type=str, default="ws://localhost:8080/ws", help="Gateway URL")
    parser.add_argument("--json", action="store_true", help="Print a JSON object")
    args = parser.parse_args(argv)

    secret = args.secret or os.environ.get("TOKEN")
    if not secret:
        print("No secret given: pass --secret or set TOKEN", file=sys.stderr)
        return 1

    result = issue(secret, args.time, args.url)
    if args.json:
        print(json.dumps(result))
    else:
        print(f"time:  {result['time']}")
        print(f"token: {result['token']}")
        print(f"url:   {result['url']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
