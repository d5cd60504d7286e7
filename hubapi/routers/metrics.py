"""
Prometheus scrape endpoint.

Series worth alerting on:
- bookings_total{outcome="conflict"|"writer_lock"} climbing for one brand
- webhook_events_total{status="DEAD_LETTER"} above zero
- webhook_queue_size staying high between scrapes (workers stuck or too few)
"""

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from ..utils.metrics import format_prometheus_metrics, webhook_queue_size

router = APIRouter(prefix="/metrics", tags=["Metrics"])

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@router.get("", response_class=PlainTextResponse)
@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
def scrape(request: Request):
    # The pool only updates the gauge on enqueue and dequeue; read it fresh
    pool = getattr(request.app.state, "worker_pool", None)
    if pool is not None:
        webhook_queue_size.set(pool.queue_size)
    return PlainTextResponse(format_prometheus_metrics(), media_type=PROMETHEUS_CONTENT_TYPE)
