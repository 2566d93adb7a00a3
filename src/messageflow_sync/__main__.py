"""Entrypoint: python -m messageflow_sync

Pairs this client with the tenant's messaging account, then keeps the
conversation list in sync and logs push events until interrupted.
"""
from __future__ import annotations

import asyncio
import logging

from messageflow_sync.app import MessageFlowClient
from messageflow_sync.application.dto.events import SyncEvent
from messageflow_sync.config import settings
from messageflow_sync.domain.entities.pairing_session import PairingSession
from messageflow_sync.domain.value_objects.enums import PairingStatus

logger = logging.getLogger("messageflow_sync")


def _log_pairing(session: PairingSession) -> None:
    if session.status == PairingStatus.PENDING and session.qr_payload:
        logger.info("Scan this QR payload with the phone app:\n%s", session.qr_payload)
    elif session.status in (PairingStatus.EXPIRED, PairingStatus.FAILED):
        logger.warning("Pairing %s: %s", session.status, session.error or "-")


def _log_event(event: SyncEvent) -> None:
    logger.info("Event %s conversation=%s message=%s", event.type, event.conversation_id, event.message_id)


async def run_client() -> None:
    client = MessageFlowClient(settings)
    client.pairing.subscribe(_log_pairing)
    client.sync.subscribe(_log_event)
    try:
        await client.connect_device()
        status = await client.wait_for_pairing()
        if status != PairingStatus.CONNECTED:
            return
        logger.info("Synced %d conversation(s)", len(client.directory.conversations))
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await client.aclose()


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run_client())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
