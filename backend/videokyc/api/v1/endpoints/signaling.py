"""
Signaling WebSocket Endpoint
Relays offer/answer/ICE messages between the two participants of a call.

    WS /api/v1/signaling/{call_id}?token=<jwt>

Every JSON message a participant sends is validated as a signal message
and broadcast to the other sockets on the same call; it is never echoed
back to the sender. Nothing is stored or replayed.
"""
import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from supabase import AsyncClient

from videokyc.api.v1.dependencies import (
    get_call_store,
    get_signaling_hub,
    get_supabase,
    resolve_user,
)
from videokyc.domain.interfaces.call_record_store import CallRecordStore, CallStoreError
from videokyc.domain.models.signal_message import parse_signal
from videokyc.infrastructure.signaling.memory_relay import InMemorySignalingHub

logger = logging.getLogger(__name__)
router = APIRouter(tags=["signaling"])

POLICY_VIOLATION = 1008


async def forward_signals(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Send every message published to this socket's hub subscription"""
    while True:
        message = await outbox.get()
        await websocket.send_json(message)


async def stop_forwarding(sender: asyncio.Task, call_id: str) -> None:
    """Cancel the forwarding task and collect a send failure if it had one"""
    sender.cancel()
    try:
        await sender
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.warning(f"Signaling send failed for call {call_id}: {e}", extra={"call_id": call_id})


@router.websocket("/signaling/{call_id}")
async def signaling_socket(
    websocket: WebSocket,
    call_id: str,
    token: str = Query(...),
    supabase: AsyncClient = Depends(get_supabase),
    store: CallRecordStore = Depends(get_call_store),
    hub: InMemorySignalingHub = Depends(get_signaling_hub),
):
    try:
        user = await resolve_user(token, supabase)
        record = await store.get_call(call_id)
    except (HTTPException, CallStoreError) as e:
        logger.warning(f"Rejected signaling socket for {call_id}: {e}")
        await websocket.close(code=POLICY_VIOLATION)
        return

    if record is None or not record.is_live:
        await websocket.close(code=POLICY_VIOLATION)
        return
    if not user.is_admin and user.id not in (record.requester_id, record.responder_id):
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()

    outbox: asyncio.Queue = asyncio.Queue()
    subscriber_id = hub.subscribe(call_id, outbox.put_nowait)
    logger.info(f"Signaling socket open for call {call_id} ({user.id})", extra={"call_id": call_id})

    sender = asyncio.create_task(forward_signals(websocket, outbox))

    try:
        while True:
            data = await websocket.receive_json()
            try:
                parse_signal(data)
            except ValueError as e:
                await websocket.send_json({"type": "error", "message": str(e)})
                continue
            hub.publish(call_id, data, sender_id=subscriber_id)
    except WebSocketDisconnect:
        logger.info(f"Signaling socket closed for call {call_id} ({user.id})", extra={"call_id": call_id})
    finally:
        await stop_forwarding(sender, call_id)
        hub.unsubscribe(call_id, subscriber_id)
