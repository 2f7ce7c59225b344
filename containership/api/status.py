from __future__ import annotations

import time

import psutil
from fastapi import APIRouter, Request

from containership.models.schemas import HealthResponse, MemoryUsage, RootResponse
from containership.observability.context import get_request_id
from containership.observability.logging import ServiceLogger


router = APIRouter(tags=["status"])

ROOT_MESSAGE = "This is for kubernetes deployment"


def process_uptime() -> float:
    """Seconds since this process started."""

    started = psutil.Process().create_time()
    return max(0.0, time.time() - started)


def memory_usage() -> MemoryUsage:
    info = psutil.Process().memory_info()
    return MemoryUsage(rss=info.rss, vms=info.vms)


@router.get("/", response_model=RootResponse)
async def root(request: Request) -> RootResponse:
    logger: ServiceLogger = request.app.state.logger
    request_id = get_request_id(request) or ""
    logger.info("Root endpoint accessed", request_id=request_id)
    return RootResponse(message=ROOT_MESSAGE, request_id=request_id)


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    logger: ServiceLogger = request.app.state.logger
    request_id = get_request_id(request) or ""
    payload = HealthResponse(uptime=process_uptime(), memory=memory_usage(), request_id=request_id)
    logger.info(
        "Health check accessed",
        request_id=request_id,
        uptime=payload.uptime,
        memory_rss=payload.memory.rss,
    )
    return payload
