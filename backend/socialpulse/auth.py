"""
Request identity and OAuth state.

Users are authenticated upstream; the resolved id arrives in the
``X-User-Id`` header. OAuth ``state`` values are random, single-use, bound
to the user that started the flow and expire after 15 minutes.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Header, HTTPException, status

STATE_TTL = timedelta(minutes=15)


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id.strip()


@dataclass
class _PendingState:
    user_id: str
    platform: str
    expires_at: datetime


class OAuthStateStore:
    """In-memory state store (single process; use a shared store when scaling out)."""

    def __init__(self, ttl: timedelta = STATE_TTL):
        self.ttl = ttl
        self._states: dict[str, _PendingState] = {}

    def _cleanup(self, now: datetime):
        expired = [key for key, pending in self._states.items() if pending.expires_at < now]
        for key in expired:
            del self._states[key]

    def issue(self, user_id: str, platform: str, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        self._cleanup(now)
        state = secrets.token_urlsafe(32)
        self._states[state] = _PendingState(user_id=user_id, platform=platform, expires_at=now + self.ttl)
        return state

    def consume(self, state: str | None, platform: str, now: datetime | None = None) -> str | None:
        """Return the bound user id and invalidate the state, or None if unknown/expired."""
        if not state:
            return None
        now = now or datetime.now(timezone.utc)
        pending = self._states.pop(state, None)
        if pending is None or pending.platform != platform or pending.expires_at < now:
            return None
        return pending.user_id

    def clear(self):
        self._states.clear()


oauth_states = OAuthStateStore()


def get_oauth_states() -> OAuthStateStore:
    return oauth_states
