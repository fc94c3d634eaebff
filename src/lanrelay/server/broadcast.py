from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from lanrelay.errors import BroadcastDeliveryFailure

if TYPE_CHECKING:
    from collections.abc import Iterable

    from lanrelay.server.models import BroadcastNotification
    from lanrelay.server.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

NOTIFY_EVENT = "notify-transfer"

# Seconds a single peer may take to accept a notification.
DELIVERY_TIMEOUT = 10.0


async def _deliver(
    registry: ConnectionRegistry,
    connection_id: str,
    message: dict,
    timeout: float,
) -> bool:
    conn = registry.get(connection_id)
    if conn is None:
        # Disconnected between target selection and delivery.
        return False
    try:
        await asyncio.wait_for(conn.send(message), timeout)
    except asyncio.TimeoutError:
        failure = BroadcastDeliveryFailure(
            connection_id, TimeoutError(f"not accepted within {timeout}s")
        )
        logger.warning("%s", failure)
        return False
    except Exception as exc:
        failure = BroadcastDeliveryFailure(connection_id, exc)
        logger.warning("%s", failure)
        return False
    return True


async def fan_out(
    registry: ConnectionRegistry,
    notification: BroadcastNotification,
    targets: Iterable[str],
    timeout: float = DELIVERY_TIMEOUT,
) -> int:
    """Push *notification* to every target independently.

    Returns the number of peers that accepted the event. A failing peer
    never blocks or aborts delivery to the others, and a peer that stops
    reading is given up on after *timeout* seconds.
    """
    message = {"event": NOTIFY_EVENT, "data": notification.model_dump()}
    results = await asyncio.gather(
        *(_deliver(registry, cid, message, timeout) for cid in targets)
    )
    delivered = sum(results)
    logger.debug("Broadcast %s to %d peer(s)", notification.name, delivered)
    return delivered
