"""In-memory session storage for RepCoach workflows.

One SessionStore holds the live sessions of one workflow (coach or
insights), keyed by session_id. Sessions are ephemeral: nothing is written
to disk, and a session disappears once it has been idle for longer than
`session_timeout` seconds.

Expiry uses two independent mechanisms:
- a one-shot timer scheduled when the session is created, which deletes the
  session only if it is idle at the moment the timer fires;
- a periodic sweep (started with `start()`) that deletes every idle session.
The sweep is what guarantees cleanup; the timer just reclaims sessions that
were abandoned right after creation a little sooner.

Idle time is measured from `Session.last_activity`, which `get()` and
`update()` refresh.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from exceptions.exceptions import ChannelClosedError, SessionExistsError
from ..models.session_models import Session


logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = 30 * 60  # seconds
DEFAULT_SWEEP_INTERVAL = 5 * 60  # seconds


class SessionStore:
    """Keyed in-memory session table with sliding idle expiry.

    Parameters
    ----------
    session_timeout:
        Idle time, in seconds, after which a session is expired.
    sweep_interval:
        Seconds between two periodic sweeps once `start()` was called.
    clock:
        Monotonic time source used for `last_activity`. Tests inject a fake.
    """

    def __init__(
        self,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_timeout = session_timeout
        self.sweep_interval = sweep_interval
        self._clock = clock

        self._sessions: Dict[str, Session] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(
        self,
        session_id: str,
        owner_id: int,
        seed: Optional[Mapping[str, Any]] = None,
    ) -> Session:
        """Create a new session and return it.

        The caller provides a fresh random id (uuid4); reusing an existing
        id is an error rather than an overwrite.
        """
        if session_id in self._sessions:
            raise SessionExistsError(session_id)

        session = Session(
            session_id=session_id,
            owner_id=owner_id,
            seed=dict(seed or {}),
            last_activity=self._clock(),
        )
        self._sessions[session_id] = session
        self._schedule_expiry(session_id)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        """Return the session (refreshing its activity) or None."""
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_activity = self._clock()
        return session

    def peek(self, session_id: str) -> Optional[Session]:
        """Return the session without counting the lookup as activity."""
        return self._sessions.get(session_id)

    def update(self, session_id: str, **changes: Any) -> None:
        """Assign fields on a session and refresh its activity.

        Unknown session ids are ignored: a generation finishing after the
        session expired must not fail because of it.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("[STORE] Ignoring update for unknown session %s", session_id)
            return

        for field, value in changes.items():
            if field not in Session.model_fields:
                raise ValueError(f"Unknown session field: {field}")
            setattr(session, field, value)
        session.last_activity = self._clock()

    def delete(self, session_id: str) -> None:
        """Remove a session, closing its bound channel if still open."""
        timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()

        session = self._sessions.pop(session_id, None)
        if session is None:
            return

        channel = session.channel
        session.channel = None
        if channel is not None and not channel.closed:
            try:
                channel.close()
            except ChannelClosedError:
                logger.debug("[STORE] Channel of session %s was already closed", session_id)
            except Exception:
                logger.exception("[STORE] Failed to close channel of session %s", session_id)

        logger.info("[STORE] Deleted session %s", session_id)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def idle_seconds(self, session: Session) -> float:
        return self._clock() - session.last_activity

    def sweep(self) -> List[str]:
        """Delete every session idle for longer than the timeout.

        Returns the ids that were removed.
        """
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if self.idle_seconds(session) > self.session_timeout
        ]
        for session_id in expired:
            try:
                self.delete(session_id)
            except Exception:
                logger.exception("[STORE] Failed to expire session %s", session_id)

        if expired:
            logger.info("[STORE] Swept %d idle session(s)", len(expired))
        return expired

    def _schedule_expiry(self, session_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (e.g. synchronous scripts); the sweep still applies.
            return
        self._timers[session_id] = loop.call_later(
            self.session_timeout, self._expire_if_idle, session_id
        )

    def _expire_if_idle(self, session_id: str) -> None:
        self._timers.pop(session_id, None)
        session = self._sessions.get(session_id)
        if session is None:
            return
        if self.idle_seconds(session) > self.session_timeout:
            logger.info("[STORE] Session %s expired after inactivity", session_id)
            self.delete(session_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.running:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop sweeping, cancel timers and drop every session."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        for session_id in list(self._sessions):
            self.delete(session_id)
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()
