"""Connection registry — the set of open sessions.

Learn: This is the only state shared between sessions, the broadcaster
and the heartbeat. Everything runs on one event loop, so the contract
is about iteration, not locking:

- for_each() walks a snapshot taken when it starts
- a session removed mid-walk is skipped (checked before each visit)
- a session added mid-walk is not in the snapshot, so it is not visited
- visit callbacks are synchronous, so nothing can suspend mid-walk

No ordering among sessions is guaranteed.
"""

import asyncio
from typing import TYPE_CHECKING, Callable, Iterator

import structlog

if TYPE_CHECKING:
    from rowcast.realtime.session import Session

logger = structlog.get_logger()


class ConnectionRegistry:
    """Tracks every open Session."""

    def __init__(self) -> None:
        self._sessions: dict[str, "Session"] = {}

    def add(self, session: "Session") -> None:
        self._sessions[session.id] = session

    def remove(self, session: "Session") -> bool:
        """Remove a session. Returns False if it was not registered."""
        return self._sessions.pop(session.id, None) is not None

    def __contains__(self, session: "Session") -> bool:
        return self._sessions.get(session.id) is session

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator["Session"]:
        return iter(self.snapshot())

    def snapshot(self) -> tuple["Session", ...]:
        return tuple(self._sessions.values())

    def for_each(self, visit: Callable[["Session"], None]) -> int:
        """Call `visit` once per registered session. Returns visits made."""
        visited = 0
        for session in self.snapshot():
            if session not in self:
                continue
            try:
                visit(session)
            except Exception:
                logger.exception("rowcast.registry.visit_failed", session_id=session.id)
                continue
            visited += 1
        return visited

    async def close_all(self, code: int = 1001, reason: str = "Server shutting down") -> int:
        """Close every session (used on shutdown)."""
        sessions = self.snapshot()
        await asyncio.gather(
            *(s.close(code=code, reason=reason, flush=True) for s in sessions)
        )
        return len(sessions)
