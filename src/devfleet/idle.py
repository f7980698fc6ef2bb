"""
Optional idle eviction of agent sessions.

Off by default. When configured with a timeout, an agent session that has
shown the idle prompt continuously for longer than the timeout is killed.
The session is remembered as "killed idle" until the flag is cleared (on
the next attach), so callers can offer to resume it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .status_constants import AI_IDLE

logger = logging.getLogger(__name__)


@dataclass
class IdleState:
    idle_since: Optional[float] = None
    was_killed_idle: bool = False


class IdleEvictionPolicy:
    """Kill agent sessions idle for longer than a configured timeout."""

    def __init__(self, timeout_minutes: float, clock: Callable[[], float] = time.monotonic):
        if timeout_minutes <= 0:
            raise ValueError("timeout_minutes must be positive")
        self.timeout_seconds = timeout_minutes * 60
        self._clock = clock
        self._state: Dict[str, IdleState] = {}

    def was_killed_idle(self, session: str) -> bool:
        state = self._state.get(session)
        return state is not None and state.was_killed_idle

    def clear_was_killed_idle(self, session: str) -> None:
        state = self._state.setdefault(session, IdleState())
        state.was_killed_idle = False

    def update(self, session: str, ai_status: str, kill: Callable[[str], bool]) -> bool:
        """Record the latest status of a session and evict it if due.

        Args:
            session: main session name
            ai_status: activity status just probed
            kill: called with the session name to evict it

        Returns:
            True if the session was killed
        """
        state = self._state.setdefault(session, IdleState())
        if ai_status != AI_IDLE:
            state.idle_since = None
            return False

        now = self._clock()
        if state.idle_since is None:
            state.idle_since = now
            return False
        if now - state.idle_since <= self.timeout_seconds:
            return False

        logger.info("Session %s idle for %.0f min, killing", session, (now - state.idle_since) / 60)
        kill(session)
        state.idle_since = None
        state.was_killed_idle = True
        return True
