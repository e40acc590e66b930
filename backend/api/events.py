"""
Push Event API Endpoints
========================

Ingress for lockup push events and the scheduler.

Endpoints:
- POST /api/webhooks/lockups - Onchain activity webhook (broadcast + queue)
- POST /api/user/lockup/unlock - Client-side unlock confirmation
- POST /api/cron/sync - Run the full re-sync (bearer CRON_SECRET)
- GET /api/events/stream - Server-sent events of received push events
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from redis.exceptions import RedisError

from api.dependencies import get_app_settings, get_broadcaster, get_job_queue, get_services
from config.settings import Settings
from models.api.events import UnlockRequest, UnlockResponse, WebhookAck, WebhookPayload
from services.event_broadcaster import EventBroadcaster
from services.wiring import ServiceBundle
from utils.hash_utils import normalize_content_hash

logger = logging.getLogger(__name__)
router = APIRouter()

ACTIVITY_EVENT_TYPE = 'onchain.activity.detected'
HEARTBEAT_SECONDS = 30.0


# =============================================================================
# WEBHOOK
# =============================================================================

def classify_webhook(payload: WebhookPayload, settings: Settings) -> Optional[tuple]:
    """
    Map a webhook body to (broadcast_type, queue_event_type, data).

    Returns None for events this service does not handle. queue_event_type
    is None for events that are only broadcast (token transfers).
    """
    if ACTIVITY_EVENT_TYPE not in payload.eventTypes:
        return None

    contract = (payload.labels.contract_address or "").lower()
    event_name = payload.labels.event_name
    data = payload.data

    if contract == settings.lockup_contract.lower():
        if event_name == 'LockUpCreated':
            return 'lockup_created', 'LockUpCreated', {
                'lockUpId': data.get('lockUpId', data.get('lockup_id')),
                'token': data.get('token'),
                'receiver': data.get('receiver'),
                'amount': data.get('amount'),
                'unlockTime': data.get('unlockTime', data.get('unlock_time')),
                'title': data.get('title'),
            }
        if event_name == 'Unlock':
            return 'unlock', 'Unlock', {
                'lockUpId': data.get('lockUpId', data.get('lockup_id')),
                'token': data.get('token'),
                'receiver': data.get('receiver'),
            }

    if contract == settings.token_address.lower() and event_name == 'Transfer':
        return 'transfer', None, {
            'from': data.get('from'),
            'to': data.get('to'),
            'value': data.get('value'),
        }

    return None


@router.post("/webhooks/lockups", response_model=WebhookAck)
async def receive_lockup_webhook(
    payload: WebhookPayload,
    settings: Settings = Depends(get_app_settings),
    events: EventBroadcaster = Depends(get_broadcaster),
    job_queue=Depends(get_job_queue),
):
    """
    Broadcast the event to stream subscribers and queue it for the event
    worker. Always acknowledges handled events; the re-sync covers anything
    that fails to queue.
    """
    classified = classify_webhook(payload, settings)
    if classified is None:
        return WebhookAck(ignored=True)

    broadcast_type, queue_type, data = classified
    events.publish(broadcast_type, data)

    queued = False
    if queue_type is not None:
        if job_queue is None:
            logger.warning(f"No job queue, {queue_type} event not applied until next re-sync")
        else:
            try:
                await job_queue.enqueue_lockup_event(queue_type, data)
                queued = True
            except (RedisError, OSError) as e:
                logger.error(f"Failed to queue {queue_type} event: {e}")

    return WebhookAck(event_type=broadcast_type, queued=queued)


# =============================================================================
# UNLOCK CONFIRMATION
# =============================================================================

@router.post("/user/lockup/unlock", response_model=UnlockResponse)
async def confirm_unlock(body: UnlockRequest, services: ServiceBundle = Depends(get_services)):
    """Mark a lockup unlocked right after the client's withdrawal succeeds"""
    content_hash = None
    if body.castHash:
        content_hash = normalize_content_hash(body.castHash)
        if content_hash is None:
            raise HTTPException(status_code=400, detail="Invalid cast hash")

    updated = await services.orchestrator.apply_unlock(body.lockUpId, content_hash)
    if not updated:
        raise HTTPException(status_code=404, detail="Lockup not found or already unlocked")

    return UnlockResponse(success=True, lockup_id=body.lockUpId, cast_hash=content_hash)


# =============================================================================
# SCHEDULER
# =============================================================================

@router.post("/cron/sync")
async def run_sync(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
    services: ServiceBundle = Depends(get_services),
):
    """Full re-sync within the execution budget"""
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")

    result = await services.orchestrator.run_sync_with_budget()
    status_code = 200 if result.success else 500
    return JSONResponse(status_code=status_code, content=result.to_dict())


# =============================================================================
# EVENT STREAM
# =============================================================================

@router.get("/events/stream")
async def event_stream(request: Request, events: EventBroadcaster = Depends(get_broadcaster)):
    """SSE endpoint for live lockup events"""
    queue = events.subscribe()

    async def generate():
        try:
            yield f"data: {json.dumps({'type': 'connected'})}\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                    yield f"data: {json.dumps(event)}\n\n"
                except asyncio.TimeoutError:
                    yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
        finally:
            events.unsubscribe(queue)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )
