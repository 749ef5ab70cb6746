"""Prometheus scrape endpoint (text exposition format).

Not instrumented by MetricsMiddleware, so scrapes do not count as
traffic.  Restrict it to the monitoring network in deployment.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
