"""QR pairing state machine.

idle -> generating -> pending -> {connected | expired | failed}. Terminal
states go back to idle only through ``start()`` or ``cancel()``.
"""
from __future__ import annotations

import logging
import uuid
from typing import Callable

from messageflow_sync.application.exceptions import (
    AppError,
    ProtocolError,
    SessionExpiredError,
    TransportError,
)
from messageflow_sync.application.ports.clock import ScheduledHandle, Scheduler
from messageflow_sync.application.ports.transport import PairingGateway
from messageflow_sync.domain.entities.pairing_session import PairingSession
from messageflow_sync.domain.value_objects.credential import Credential
from messageflow_sync.domain.value_objects.enums import PairingStatus

logger = logging.getLogger(__name__)

PairingListener = Callable[[PairingSession], None]

DEFAULT_MAX_ATTEMPTS = 60
DEFAULT_POLL_INTERVAL = 2.0


class PairingController:
    def __init__(
        self,
        gateway: PairingGateway,
        scheduler: Scheduler,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._gateway = gateway
        self._scheduler = scheduler
        self._max_attempts = max_attempts
        self._poll_interval = poll_interval
        self._session: PairingSession | None = None
        self._timer: ScheduledHandle | None = None
        self._listeners: list[PairingListener] = []

    @property
    def status(self) -> PairingStatus:
        if self._session is None:
            return PairingStatus.IDLE
        return self._session.status

    @property
    def session(self) -> PairingSession | None:
        return self._session.snapshot() if self._session else None

    @property
    def credential(self) -> Credential | None:
        if self._session is None or self._session.status != PairingStatus.CONNECTED:
            return None
        return self._session.credential

    @property
    def polling(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    def subscribe(self, listener: PairingListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def require_credential(self) -> Credential:
        """Return the credential or raise for the user-facing failure states."""
        if self._session is not None:
            if self._session.status == PairingStatus.CONNECTED and self._session.credential:
                return self._session.credential
            if self._session.status == PairingStatus.EXPIRED:
                raise SessionExpiredError("Pairing session expired, restart to get a new QR code")
        raise AppError(f"Device is not paired (status={self.status})")

    async def start(self) -> None:
        self.cancel()
        session = PairingSession(
            session_id=uuid.uuid4().hex,
            max_attempts=self._max_attempts,
            poll_interval=self._poll_interval,
        )
        self._session = session
        logger.info("Pairing started (local id %s)", session.session_id)
        self._notify(session)

        try:
            result = await self._gateway.start_pairing()
        except (TransportError, ProtocolError) as exc:
            if self._is_current(session, session.session_id):
                session.status = PairingStatus.FAILED
                session.error = exc.detail or "failed to start pairing session"
                logger.warning("Pairing start failed: %s", session.error)
                self._notify(session)
            return

        if not self._is_current(session, session.session_id):
            logger.debug("Discarding stale pairing start response %s", result.session_id)
            return

        session.session_id = result.session_id
        session.qr_payload = result.qr_payload
        session.timeout_seconds = result.timeout_seconds
        if result.poll_interval_hint and result.poll_interval_hint > 0:
            session.poll_interval = result.poll_interval_hint
        session.status = PairingStatus.PENDING
        logger.info("Pairing session %s pending, polling every %.1fs", session.session_id, session.poll_interval)
        self._notify(session)
        self._schedule_poll(session)

    async def poll(self) -> None:
        session = self._session
        if session is None or session.status != PairingStatus.PENDING:
            return
        self._stop_timer()

        session.poll_attempt_count += 1
        if session.attempts_exhausted:
            self._finish(session, PairingStatus.EXPIRED, "pairing session expired")
            return

        session_id = session.session_id
        try:
            result = await self._gateway.poll_pairing(session_id)
        except (TransportError, ProtocolError) as exc:
            if self._is_current(session, session_id):
                logger.warning(
                    "Pairing poll %d/%d failed: %s",
                    session.poll_attempt_count, session.max_attempts, exc.detail,
                )
                self._schedule_poll(session)
            return

        if not self._is_current(session, session_id) or session.status != PairingStatus.PENDING:
            logger.debug("Discarding stale pairing poll for %s", session_id)
            return

        if result.status == PairingStatus.CONNECTED:
            if result.credential is None:
                logger.warning("Session %s reported connected without a credential", session_id)
                self._schedule_poll(session)
                return
            session.credential = result.credential
            self._finish(session, PairingStatus.CONNECTED)
            return

        if result.status in (PairingStatus.EXPIRED, PairingStatus.FAILED):
            self._finish(session, result.status, result.error or f"pairing {result.status}")
            return

        if result.qr_payload and result.qr_payload != session.qr_payload:
            session.qr_payload = result.qr_payload
            logger.debug("QR payload refreshed for %s", session_id)
            self._notify(session)
        self._schedule_poll(session)

    def cancel(self) -> None:
        self._stop_timer()
        if self._session is None:
            return
        logger.info("Pairing session %s cancelled (was %s)", self._session.session_id, self._session.status)
        self._session = None
        self._notify(PairingSession(
            session_id="",
            max_attempts=self._max_attempts,
            poll_interval=self._poll_interval,
            status=PairingStatus.IDLE,
        ))

    def _is_current(self, session: PairingSession, session_id: str) -> bool:
        return self._session is session and session.session_id == session_id

    def _schedule_poll(self, session: PairingSession) -> None:
        self._stop_timer()
        self._timer = self._scheduler.call_later(
            session.poll_interval, self.poll, name=f"pairing-poll-{session.session_id}",
        )

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _finish(self, session: PairingSession, status: PairingStatus, error: str | None = None) -> None:
        self._stop_timer()
        session.status = status
        session.error = error
        logger.info(
            "Pairing session %s %s after %d poll(s)",
            session.session_id, status, session.poll_attempt_count,
        )
        self._notify(session)

    def _notify(self, session: PairingSession) -> None:
        snapshot = session.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Pairing listener failed")
