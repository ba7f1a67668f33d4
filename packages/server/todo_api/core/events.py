"""
Change feed for the todos table, carried over Redis Pub/Sub and streamed as SSE.

Every committed insert, update or delete on ``todos`` is published once on a
single channel. Streams are not filtered per user: subscribers treat events as
a wake-up signal and refetch through the gateway, which only returns their rows.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncGenerator
from uuid import UUID

from fastapi import Request

from todo_api.core.auth import is_jwt_revoked
from todo_api.core.redis import CHANGES_CHANNEL, publish_change, subscribe_changes
from todo_shared.schemas import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)

# Configuration
REDIS_CHANGES_CHANNEL = CHANGES_CHANNEL
SSE_CHANGE_EVENT = "postgres_changes"
SSE_REVOKED_EVENT = "session.revoked"
HEARTBEAT_INTERVAL = 30  # seconds, sent by EventSourceResponse as ping comments
POLL_TIMEOUT = 1.0  # seconds
REVOCATION_CHECK_POLLS = 10


async def broadcast_change(change_type: ChangeType, record_id: UUID | None = None) -> ChangeEvent:
    """Publish a row change on the feed. Called after the change is committed."""
    event = ChangeEvent(
        event_type=change_type,
        record_id=str(record_id) if record_id else None,
        committed_at=datetime.now(timezone.utc),
    )
    await publish_change(event.model_dump_json())
    return event


async def change_stream(
    request: Request,
    jti: str | None = None,
) -> AsyncGenerator[dict, None]:
    """
    SSE generator for one session:
    - forwards every published change as a ``postgres_changes`` event
    - checks the session's revocation every few polls and ends the stream
      with ``session.revoked`` once the session was signed out
    - always releases the Pub/Sub subscription on exit
    """
    pubsub = await subscribe_changes()

    try:
        revocation_check_counter = 0
        while True:
            if await request.is_disconnected():
                break

            revocation_check_counter += 1
            if revocation_check_counter >= REVOCATION_CHECK_POLLS and jti:
                revocation_check_counter = 0
                if await is_jwt_revoked(jti):
                    yield {"event": SSE_REVOKED_EVENT, "data": '{"reason": "signed_out"}'}
                    break

            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=POLL_TIMEOUT
            )
            if message is None or message["type"] != "message":
                continue

            yield {"event": SSE_CHANGE_EVENT, "data": message["data"]}

    except asyncio.CancelledError:
        logger.info("Change stream cancelled for session %s", jti)
        raise
    finally:
        await pubsub.unsubscribe(REDIS_CHANGES_CHANNEL)
        await pubsub.aclose()
