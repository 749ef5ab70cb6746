"""Best-effort notifications.

Senders enqueue a task for the worker (``python -m app.worker``) and
return.  A failed enqueue is logged and counted but never raised: the
enrollment or payment that triggered it has already committed.
"""

from __future__ import annotations

import logging

from app.core.metrics import NOTIFICATION_DISPATCH_FAILURES
from app.services.task_queue import task_queue

logger = logging.getLogger(__name__)

ENROLLMENT_CONFIRMATION_QUEUE = "enrollment_confirmation"
WALLET_RECEIPT_QUEUE = "wallet_receipt"


async def dispatch(queue: str, payload: dict) -> bool:
    try:
        task = await task_queue.enqueue(queue, payload)
    except Exception:
        NOTIFICATION_DISPATCH_FAILURES.labels(queue_name=queue).inc()
        logger.exception("Notification enqueue failed queue=%s", queue)
        return False
    logger.debug("Notification queued queue=%s task=%s", queue, task.id)
    return True


async def send_enrollment_confirmation(
    *,
    user_id: str,
    course_id: str,
    enrollment_id: str,
    final_price: int,
    group_id: str | None = None,
) -> bool:
    return await dispatch(
        ENROLLMENT_CONFIRMATION_QUEUE,
        {
            "user_id": user_id,
            "course_id": course_id,
            "enrollment_id": enrollment_id,
            "final_price": final_price,
            "group_id": group_id,
        },
    )


async def send_wallet_receipt(
    *,
    user_id: str,
    wallet_id: str,
    transaction_id: str,
    amount: int,
    new_balance: int,
    ref_id: str | None = None,
) -> bool:
    return await dispatch(
        WALLET_RECEIPT_QUEUE,
        {
            "user_id": user_id,
            "wallet_id": wallet_id,
            "transaction_id": transaction_id,
            "amount": amount,
            "new_balance": new_balance,
            "ref_id": ref_id,
        },
    )
