from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from worklog_auth.domain.state_machine import ActivityEvent, is_activity_event
from worklog_auth.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

IDLE_CHECK_INTERVAL_SEC = int(os.getenv("IDLE_CHECK_INTERVAL_SEC", "60"))


class ActivityTicker:
    """Idle clock for one session context.

    ``touch`` is an in-memory update; ``check`` compares under the same lock,
    so every touch applied before a tick is visible to that tick's
    comparison.
    """

    def __init__(
        self,
        session_id: str,
        manager: SessionManager,
        *,
        last_activity: datetime | None = None,
        interval_seconds: int = IDLE_CHECK_INTERVAL_SEC,
    ) -> None:
        self._session_id = session_id
        self._manager = manager
        self._lock = threading.Lock()
        self._last_activity = last_activity or manager.clock.now()
        self._interval_seconds = interval_seconds
        self._expired = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def last_activity(self) -> datetime:
        with self._lock:
            return self._last_activity

    @property
    def expired(self) -> bool:
        return self._expired

    def touch(self, event: ActivityEvent | str) -> bool:
        if not is_activity_event(event):
            return False
        with self._lock:
            self._last_activity = self._manager.clock.now()
        return True

    def check(self) -> bool:
        """Run one idle evaluation; True when this tick ended the session."""
        with self._lock:
            if self._expired:
                return False
            now = self._manager.clock.now()
            if not self._manager.is_idle(self._last_activity, now):
                return False
        # expire_idle is idempotent, a session already ended elsewhere stays as it is
        try:
            ended = self._manager.expire_idle(self._session_id)
        except SQLAlchemyError:
            logger.exception("idle expiry failed for session %s, retrying next tick", self._session_id)
            return False
        with self._lock:
            self._expired = True
        return ended

    async def run(
        self,
        stop: asyncio.Event,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        while not stop.is_set() and not self._expired:
            await sleep(self._interval_seconds)
            if stop.is_set():
                break
            if self.check():
                logger.info("idle timer ended session %s", self._session_id)


def ticker_for_session(manager: SessionManager, session_id: str) -> ActivityTicker:
    auth_session = manager.get_session(session_id)
    return ActivityTicker(session_id, manager, last_activity=auth_session.last_activity)
