"""
Channel Webhook Endpoints

- POST /api/webhooks/channel     - ingest an event (persist, dedup, enqueue, ack)
- GET  /api/webhooks/status      - per-status counts for operators
- GET  /api/webhooks/dead-letter - dead-lettered events awaiting manual action
"""

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..models.webhook_event import WebhookEvent, WebhookEventStatus
from ..schemas.webhook import (
    ChannelWebhookPayload,
    DeadLetterList,
    WebhookEventResponse,
    WebhookStatusResponse,
)
from ..services.webhook_receiver import WebhookReceiver, job_id_for
from ..utils.dependencies import get_app_settings, get_worker_pool
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


@router.post("/channel")
@limiter.limit(get_rate_limit("webhook"))
def receive_channel_webhook(
    request: Request,
    payload: ChannelWebhookPayload,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    pool=Depends(get_worker_pool),
):
    """
    Fast path: store the event and ack. Processing happens on the worker pool.

    Redelivered event ids are acknowledged without being stored again.
    """
    if not settings.enable_webhooks:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    receiver = WebhookReceiver(db, settings.max_retries_for)
    result = receiver.receive(
        payload.event_id,
        payload.type,
        payload.model_dump(mode="json", by_alias=True, exclude_none=True),
    )

    if not result.deduplicated and pool is not None:
        pool.add(job_id_for(result.event_id), result.event_id)

    return {
        "received": True,
        "deduplicated": result.deduplicated,
        "eventId": result.event_id,
    }


@router.get("/status", response_model=WebhookStatusResponse)
@limiter.limit(get_rate_limit("webhook_admin"))
def webhook_status(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    pool=Depends(get_worker_pool),
):
    rows = db.query(WebhookEvent.status, func.count(WebhookEvent.id)).group_by(WebhookEvent.status).all()
    counts = {s.value: 0 for s in WebhookEventStatus}
    counts.update({row[0]: row[1] for row in rows})
    return WebhookStatusResponse(
        enabled=settings.enable_webhooks,
        counts=counts,
        queue_size=pool.queue_size if pool is not None else 0,
        features=settings.feature_flags(),
    )


@router.get("/dead-letter", response_model=DeadLetterList)
@limiter.limit(get_rate_limit("webhook_admin"))
def list_dead_letters(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    query = db.query(WebhookEvent).filter(WebhookEvent.status == WebhookEventStatus.DEAD_LETTER.value)
    total = query.count()
    events = query.order_by(WebhookEvent.processed_at.desc()).offset(offset).limit(limit).all()
    return DeadLetterList(
        total=total,
        items=[WebhookEventResponse.model_validate(e) for e in events],
    )
