"""Connection orchestrator: candidate selection and bounded failover.

State machine:
- Disconnected -> Connecting: ``connect()`` (or ``connect_to()``) when online
- Connecting -> Connected: CONNECTED event for the active attempt
- Connecting -> Connecting: attempt failed (ERROR, DISCONNECTED or timeout),
  failover picks the next candidate
- Connecting -> Disconnected: budget exhausted, no candidates left, user
  cancel, or a failure while failover is inactive
- Connected -> Disconnected: user disconnect or tunnel drop

Selection runs fresh on every connect request:
1. the live probe result or the cached scored list, re-ranked now
2. the last successful hostname, as a one-entry queue
3. cold start: fetch the feed, probe everything, rank the reachable ones

While failover is active, attempt errors are reported as progress and
never as errors; only the terminal failure carries the last error text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from smartconnect.connectivity import ConnectivityCheck
from smartconnect.errors import (
    AllCandidatesExhaustedError,
    NoConnectivityError,
    SmartConnectError,
    TunnelError,
    TunnelTimeoutError,
)
from smartconnect.events import EventBus
from smartconnect.models.candidate import Candidate
from smartconnect.models.session import (
    MAX_FAILOVER_ATTEMPTS,
    ConnectionState,
    EngineEvent,
    EventKind,
    SessionFailoverState,
    TunnelEvent,
    TunnelStatus,
)
from smartconnect.probe.prober import ProbeProfile
from smartconnect.services.candidate_service import CandidateRepository
from smartconnect.tunnel.base import TunnelClient, TunnelCredentials

logger = logging.getLogger(__name__)

NO_SERVERS_MESSAGE = "No servers available"
RETRY_MESSAGE = "Server unreachable. Finding a better server for you..."


class ConnectionOrchestrator:
    """Drives connect requests through selection, attempts and failover.

    Parameters
    ----------
    repository:
        Candidate source (live probe result, cache, feed) and its store.
    tunnel:
        External tunnel subsystem. The orchestrator registers itself as a
        listener for its status events.
    connectivity:
        Consulted before every connect sequence.
    events:
        Bus the orchestrator publishes state, progress and failure events to.
    credentials:
        Passed to the tunnel on every attempt.
    attempt_timeout_seconds:
        Time an attempt may take before it counts as failed.
    max_attempts:
        Failover budget per connect sequence.
    retry_probe_size:
        How many remaining candidates are re-probed before each retry.
    """

    def __init__(
        self,
        *,
        repository: CandidateRepository,
        tunnel: TunnelClient,
        connectivity: ConnectivityCheck,
        events: EventBus | None = None,
        credentials: TunnelCredentials | None = None,
        attempt_timeout_seconds: float = 15.0,
        max_attempts: int = MAX_FAILOVER_ATTEMPTS,
        retry_probe_size: int = 10,
    ) -> None:
        self._repository = repository
        self._store = repository.store
        self._tunnel = tunnel
        self._connectivity = connectivity
        self._events = events or EventBus()
        self._credentials = credentials or TunnelCredentials()
        self._attempt_timeout_seconds = attempt_timeout_seconds
        self._max_attempts = max_attempts
        self._retry_probe_size = retry_probe_size

        self._state = ConnectionState.DISCONNECTED
        self._session: SessionFailoverState | None = None
        self._active_hostname: str | None = None
        self._connected_hostname: str | None = None
        self._failover_active = False
        self._user_initiated_disconnect = False
        self._timer: asyncio.Task[None] | None = None
        self.last_failure: SmartConnectError | None = None

        tunnel.add_listener(self.handle_tunnel_event)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> SessionFailoverState | None:
        return self._session

    @property
    def active_hostname(self) -> str | None:
        return self._active_hostname

    @property
    def connected_hostname(self) -> str | None:
        return self._connected_hostname

    @property
    def failover_active(self) -> bool:
        return self._failover_active

    @property
    def user_initiated_disconnect(self) -> bool:
        return self._user_initiated_disconnect

    @property
    def is_busy(self) -> bool:
        """True while a connect sequence is running."""
        return self._session is not None

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "active_hostname": self._active_hostname,
            "connected_hostname": self._connected_hostname,
            "failover_active": self._failover_active,
            "session": self._session.summary() if self._session else None,
            "last_failure": self.last_failure.message if self.last_failure else None,
        }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start an automatic connect sequence with failover.

        Returns once the first attempt has been issued, or once the sequence
        has terminated (offline, nothing to try, or cancelled meanwhile).
        """
        session = self._begin_session(failover=True)
        if session is None:
            return

        if not await self._check_online(session):
            return

        try:
            queue = await self._select_queue(session)
        except Exception:
            logger.exception("Connect sequence failed during selection")
            if self._session is session:
                self._terminate(AllCandidatesExhaustedError())
            raise

        if self._session is not session:
            logger.info("Connect sequence cancelled during selection")
            return
        if not queue:
            self._terminate(AllCandidatesExhaustedError(NO_SERVERS_MESSAGE))
            return

        session.queue = queue
        await self._attempt(session, queue[0].hostname)

    async def connect_to(self, hostname: str) -> None:
        """Connect to one specific hostname without failover."""
        session = self._begin_session(failover=False)
        if session is None:
            return
        if not await self._check_online(session):
            return
        session.queue = [self._candidate_for(hostname)]
        await self._attempt(session, hostname)

    async def disconnect(self) -> None:
        """User-initiated disconnect or cancel; never retried."""
        self._user_initiated_disconnect = True
        self._cancel_timer()
        was_connecting = self._session is not None
        self._session = None
        self._active_hostname = None
        self._connected_hostname = None
        self._failover_active = False

        try:
            await self._tunnel.disconnect()
        except (OSError, TunnelError) as exc:
            logger.warning("Tunnel disconnect failed: %s", exc, extra={"error_reason": str(exc)})

        self._set_state(ConnectionState.DISCONNECTED)
        if was_connecting:
            self._publish(EventKind.PROGRESS, message="Cancelled")
        logger.info("Disconnected by user")

    # ------------------------------------------------------------------
    # Tunnel events
    # ------------------------------------------------------------------

    async def handle_tunnel_event(self, event: TunnelEvent) -> None:
        """React to a status event from the tunnel subsystem."""
        logger.debug(
            "Tunnel status %s (user_disconnect=%s)",
            event.status.value,
            self._user_initiated_disconnect,
            extra={"hostname": event.hostname},
        )

        if event.status == TunnelStatus.CONNECTING:
            if self._is_current(event):
                self._publish(EventKind.PROGRESS, hostname=self._active_hostname, message="Connecting...")
            return

        if event.status == TunnelStatus.CONNECTED:
            if self._session is None or not self._is_current(event):
                logger.debug("Ignoring stale CONNECTED event", extra={"hostname": event.hostname})
                return
            await self._on_connected()
            return

        # DISCONNECTED or ERROR
        if self._session is None:
            self._on_connection_lost(event)
            return
        if not self._is_current(event):
            logger.debug("Ignoring stale %s event", event.status.value, extra={"hostname": event.hostname})
            return

        if event.status == TunnelStatus.ERROR:
            reason = event.message or TunnelError.message
        else:
            reason = event.message or "Disconnected"
        await self._on_attempt_failed(self._session, self._active_hostname, reason)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _begin_session(self, *, failover: bool) -> SessionFailoverState | None:
        if self._session is not None or self._state != ConnectionState.DISCONNECTED:
            logger.info("Connect ignored: already %s", self._state.value, extra={"state": self._state.value})
            return None
        self._user_initiated_disconnect = False
        self.last_failure = None
        self._failover_active = failover
        self._session = SessionFailoverState()
        return self._session

    async def _check_online(self, session: SessionFailoverState) -> bool:
        online = await self._connectivity.is_online()
        if self._session is not session:
            return False
        if not online:
            self._terminate(NoConnectivityError())
            return False
        self._set_state(ConnectionState.CONNECTING)
        return True

    def _terminate(self, error: SmartConnectError, message: str | None = None) -> None:
        """End the connect sequence with a terminal failure."""
        self._cancel_timer()
        self._session = None
        self._active_hostname = None
        self._failover_active = False
        self.last_failure = error
        self._set_state(ConnectionState.DISCONNECTED)
        self._publish(
            EventKind.FAILED,
            message=message or error.message,
            error_type=type(error).__name__,
        )
        logger.error(
            "Connect sequence failed: %s",
            error.message,
            extra={"error_reason": message or error.message},
        )

    async def _on_connected(self) -> None:
        hostname = self._active_hostname
        if hostname is None:
            logger.debug("Ignoring CONNECTED with no active attempt")
            return
        self._cancel_timer()
        self._session = None
        self._active_hostname = None
        self._failover_active = False
        self._connected_hostname = hostname
        self._set_state(ConnectionState.CONNECTED, hostname=hostname)
        await self._store.record_success(hostname)
        logger.info("Connected", extra={"hostname": hostname, "state": ConnectionState.CONNECTED.value})

    def _on_connection_lost(self, event: TunnelEvent) -> None:
        """DISCONNECTED/ERROR outside a connect sequence."""
        if self._state != ConnectionState.CONNECTED:
            return
        if event.hostname is not None and event.hostname != self._connected_hostname:
            return
        hostname = self._connected_hostname
        self._connected_hostname = None
        self._set_state(ConnectionState.DISCONNECTED, hostname=hostname)
        if event.status == TunnelStatus.ERROR and not self._user_initiated_disconnect:
            message = event.message or TunnelError.message
            self.last_failure = TunnelError(message)
            self._publish(EventKind.ERROR, hostname=hostname, message=message)
        logger.info("Tunnel closed", extra={"hostname": hostname})

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def _select_queue(self, session: SessionFailoverState) -> list[Candidate]:
        scorer = self._repository.scorer()

        live = self._repository.current or self._store.load_scored() or []
        ranked = scorer.rank(live)
        if ranked:
            logger.info(
                "Selecting from %d ranked candidates",
                len(ranked),
                extra={"candidate_count": len(ranked), "hostname": ranked[0].hostname},
            )
            self._publish(EventKind.PROGRESS, message="Connecting to best server...")
            return ranked

        last_successful = self._store.success_history().last_successful
        if last_successful:
            logger.info("Falling back to last successful server", extra={"hostname": last_successful})
            self._publish(EventKind.PROGRESS, message="Reconnecting...")
            return [self._candidate_for(last_successful)]

        logger.info("Cold start: fetching and probing all candidates")
        self._publish(EventKind.PROGRESS, message="Finding fastest server...")
        candidates = await self._repository.fetch_candidates()
        if not candidates or self._session is not session:
            return []
        return await self._repository.probe_and_save(candidates, ProbeProfile.RAPID)

    def _candidate_for(self, hostname: str) -> Candidate:
        for source in (self._store.load_scored(), self._store.load_raw()):
            for candidate in source or []:
                if candidate.hostname == hostname:
                    return candidate
        return Candidate(hostname=hostname, ip="")

    async def _next_candidate(self, session: SessionFailoverState) -> str | None:
        """Re-probe remaining candidates in bounded subsets and pick the best."""
        while True:
            remaining = session.remaining()
            if not remaining:
                if not await self._reload_queue(session):
                    return None
                continue

            subset = remaining[: self._retry_probe_size]
            probed = await self._repository.prober.probe(subset, ProbeProfile.RAPID)
            if self._session is not session:
                return None

            for candidate in self._repository.scorer().rank(probed):
                if not session.is_excluded(candidate.hostname):
                    return candidate.hostname

            unreachable = {c.hostname for c in probed if not c.is_reachable}
            logger.info(
                "No reachable candidate in re-probe subset",
                extra={"candidate_count": len(unreachable)},
            )
            session.unreachable_this_session.update(c.hostname for c in subset)

    async def _reload_queue(self, session: SessionFailoverState) -> bool:
        """Extend an exhausted queue once from the store, or the feed."""
        if session.queue_reloaded:
            return False
        session.queue_reloaded = True

        candidates = self._store.load_scored() or self._store.load_raw()
        if not candidates:
            candidates = await self._repository.fetch_candidates()
            if self._session is not session:
                return False

        known = {c.hostname for c in session.queue}
        added = [c for c in candidates if c.hostname not in known and not session.is_excluded(c.hostname)]
        session.queue.extend(added)
        logger.info("Reloaded failover queue", extra={"candidate_count": len(added)})
        return bool(added)

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    async def _attempt(self, session: SessionFailoverState, hostname: str) -> None:
        session.attempted_hostnames.add(hostname)
        self._active_hostname = hostname
        self._cancel_timer()
        self._timer = asyncio.create_task(self._attempt_timeout(session, hostname))

        attempt = session.attempt_count + 1
        logger.info("Attempting connection", extra={"hostname": hostname, "attempt": attempt})
        if self._failover_active and session.attempt_count:
            message = f"Retry {attempt}/{self._max_attempts}: trying {hostname}"
        else:
            message = f"Connecting to {hostname}"
        self._publish(EventKind.PROGRESS, hostname=hostname, message=message)

        try:
            await self._tunnel.connect(hostname, self._credentials)
        except (OSError, TunnelError) as exc:
            await self._on_attempt_failed(session, hostname, str(exc) or TunnelError.message)

    async def _attempt_timeout(self, session: SessionFailoverState, hostname: str) -> None:
        await asyncio.sleep(self._attempt_timeout_seconds)
        if self._session is not session or self._active_hostname != hostname:
            return
        # From here on this task runs the failover step itself.
        self._timer = None
        logger.warning("Connection attempt timed out", extra={"hostname": hostname})
        try:
            await self._on_attempt_failed(session, hostname, TunnelTimeoutError.message, timed_out=True)
        except Exception:  # noqa: BLE001
            logger.exception("Failover after timeout failed", extra={"hostname": hostname})
            if self._session is session:
                self._terminate(AllCandidatesExhaustedError())

    async def _on_attempt_failed(
        self,
        session: SessionFailoverState,
        hostname: str | None,
        reason: str,
        *,
        timed_out: bool = False,
    ) -> None:
        if hostname is None or self._session is not session or self._active_hostname != hostname:
            return
        self._active_hostname = None
        self._cancel_timer()
        session.last_error = reason

        if timed_out:
            try:
                await self._tunnel.disconnect()
            except (OSError, TunnelError) as exc:
                logger.warning("Tunnel disconnect after timeout failed: %s", exc)

        if not self._failover_active:
            error = TunnelTimeoutError() if timed_out else TunnelError(reason)
            self._publish(EventKind.ERROR, hostname=hostname, message=reason)
            self._terminate(error, message=reason)
            return

        await self._store.purge(hostname)
        self._repository.forget(hostname)
        session.failed_this_session.add(hostname)
        session.attempt_count += 1
        logger.warning(
            "Connection attempt failed",
            extra={"hostname": hostname, "attempt": session.attempt_count, "error_reason": reason},
        )

        if self._session is not session:
            return
        if session.attempt_count >= self._max_attempts:
            self._terminate(
                AllCandidatesExhaustedError(
                    f"Connection failed after {session.attempt_count} attempts",
                    last_error=reason,
                ),
                message=reason,
            )
            return

        self._publish(EventKind.PROGRESS, hostname=hostname, message=RETRY_MESSAGE)
        next_hostname = await self._next_candidate(session)
        if self._session is not session:
            return
        if next_hostname is None:
            self._terminate(AllCandidatesExhaustedError(last_error=reason), message=reason)
            return
        await self._attempt(session, next_hostname)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_current(self, event: TunnelEvent) -> bool:
        if self._active_hostname is None:
            return False
        return event.hostname is None or event.hostname == self._active_hostname

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    def _set_state(self, state: ConnectionState, hostname: str | None = None) -> None:
        if state == self._state:
            return
        logger.debug("State %s -> %s", self._state.value, state.value, extra={"state": state.value})
        self._state = state
        self._publish(EventKind.STATE_CHANGED, hostname=hostname)

    def _publish(self, kind: EventKind, **fields: Any) -> None:
        self._events.publish(EngineEvent(kind=kind, state=self._state, **fields))
