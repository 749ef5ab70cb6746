"""Notification worker.

RUN:  python -m app.worker

Same image as the API, different command:

  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

The worker polls each registered queue in turn, hands the task payload
to its handler and logs the outcome.  A failing handler is logged and
skipped; the next task is processed normally.

Delivery to the user (email, SMS, push) belongs to the platform
notification service.  The handlers here format the message and hand
it over through the log stream, which that service tails.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.services.notifications import (
    ENROLLMENT_CONFIRMATION_QUEUE,
    WALLET_RECEIPT_QUEUE,
)
from app.services.task_queue import task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("app.worker")

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(ENROLLMENT_CONFIRMATION_QUEUE)
async def handle_enrollment_confirmation(payload: dict) -> None:
    group_id = payload.get("group_id")
    logger.info(
        "Enrollment confirmation user=%s course=%s enrollment=%s price=%s%s",
        payload["user_id"],
        payload["course_id"],
        payload["enrollment_id"],
        payload["final_price"],
        f" group={group_id}" if group_id else "",
        extra={"course_id": payload["course_id"], "group_id": group_id},
    )


@register_handler(WALLET_RECEIPT_QUEUE)
async def handle_wallet_receipt(payload: dict) -> None:
    logger.info(
        "Wallet receipt user=%s tx=%s amount=%s balance=%s ref=%s",
        payload["user_id"],
        payload["transaction_id"],
        payload["amount"],
        payload["new_balance"],
        payload.get("ref_id"),
        extra={"wallet_id": payload["wallet_id"]},
    )


async def process_one(queue_name: str, timeout: int = 1) -> bool:
    """Handle at most one task from ``queue_name``; True if one was taken."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False
    try:
        await HANDLERS[queue_name](task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    queues = list(HANDLERS)
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        for queue_name in queues:
            await process_one(queue_name)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
