"""
============================================================================
Token Feed Push Channel - WebSocket Endpoint
============================================================================

Reliability Level: L6 Critical
Side Effects: Registers subscribers with the realtime distributor

PROTOCOL:
    1. Client connects to /ws
    2. Server pushes {"type": "initial", "data": [...], "timestamp": ...}
    3. Server pushes "update" (delta) and "refresh" (full page) frames
    4. Client may send {"action": "subscribe" | "unsubscribe", ...};
       these are acknowledged in the log only
============================================================================
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from services.realtime_distributor import RealtimeDistributor

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def token_stream(websocket: WebSocket):
    """Serve one push-channel subscriber until it disconnects."""
    distributor: RealtimeDistributor = websocket.app.state.distributor

    await websocket.accept()
    session = await distributor.connect(websocket)

    try:
        while True:
            frame = await websocket.receive_json()
            action = frame.get("action") if isinstance(frame, dict) else None

            if action in ("subscribe", "unsubscribe"):
                logger.info(
                    f"[PUSH-WS] Client {action}d | "
                    f"subscriber_id={session.subscriber_id} | frame={frame}"
                )
            else:
                logger.debug(
                    f"[PUSH-WS] Ignoring client frame | "
                    f"subscriber_id={session.subscriber_id} | frame={frame}"
                )

    except WebSocketDisconnect:
        pass
    except ValueError as e:
        logger.warning(
            f"[PUSH-WS] Malformed client frame, closing | "
            f"subscriber_id={session.subscriber_id} | error={e}"
        )
    finally:
        distributor.disconnect(session)
