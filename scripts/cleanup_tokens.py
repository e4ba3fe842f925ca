#!/usr/bin/env python3
"""Delete expired or revoked refresh tokens and long-idle sessions.

Meant for cron; nothing in the API process does this on its own.

Usage:
    python scripts/cleanup_tokens.py
"""
from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    from clinicauth.service.runtime import get_runtime

    runtime = get_runtime()
    try:
        result = runtime.auth.cleanup()
    finally:
        runtime.close()
    print(
        f"Removed {result['refresh_tokens']} refresh tokens and "
        f"{result['sessions']} stale sessions"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
