"""Shared test constants and builders."""

from datetime import datetime, timezone

ALICE = "user_alice"
BOB = "user_bob"
CAROL = "user_carol"

# Monday 09:00 UTC
START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def auth_headers(user_id: str) -> dict:
    return {"X-User-Id": user_id}
